"""
Domain layer for adaptive tool orchestration.

Contains the data model, ports and pure graph logic. Imports nothing from the
learning, application or infrastructure layers.
"""

from toolweave.domain.dag import compute_dag_ref, compute_layers, validate_dag
from toolweave.domain.events import Event, EventType
from toolweave.domain.exceptions import (
    ConfigurationError,
    CycleDetected,
    DependencyFailed,
    GraphSyncFailure,
    HierarchyCycleError,
    IncompatibleSnapshot,
    InvalidDAG,
    PermissionDenied,
    TaskTimeout,
    ToolExecutionError,
    TrainingConflict,
    UnknownDecision,
)
from toolweave.domain.graph_store import GraphStore
from toolweave.domain.hyperedges import HyperedgeCache, compute_hierarchy_levels
from toolweave.domain.interfaces import (
    ApproverInterface,
    DbClientInterface,
    EmbeddingModelInterface,
    EventStoreInterface,
    ToolExecutorInterface,
    VectorSearchInterface,
)
from toolweave.domain.models import (
    Capability,
    Decision,
    EdgeSource,
    EdgeType,
    ExecutionTrace,
    FailureReason,
    GraphEdge,
    GraphNode,
    Hyperedge,
    HyperedgeType,
    NodeKind,
    PermissionEscalationRequest,
    PermissionSet,
    RunResult,
    RunStatus,
    TaskResult,
    TaskStatus,
    Thresholds,
    TrainingExample,
    WorkflowDAG,
    WorkflowState,
    WorkflowTask,
)

__all__ = [
    # Models
    "Capability",
    "Decision",
    "EdgeSource",
    "EdgeType",
    "ExecutionTrace",
    "FailureReason",
    "GraphEdge",
    "GraphNode",
    "Hyperedge",
    "HyperedgeType",
    "NodeKind",
    "PermissionEscalationRequest",
    "PermissionSet",
    "RunResult",
    "RunStatus",
    "TaskResult",
    "TaskStatus",
    "Thresholds",
    "TrainingExample",
    "WorkflowDAG",
    "WorkflowState",
    "WorkflowTask",
    # Events
    "Event",
    "EventType",
    # Graph
    "GraphStore",
    "HyperedgeCache",
    "compute_hierarchy_levels",
    # DAG
    "compute_dag_ref",
    "compute_layers",
    "validate_dag",
    # Interfaces
    "ApproverInterface",
    "DbClientInterface",
    "EmbeddingModelInterface",
    "EventStoreInterface",
    "ToolExecutorInterface",
    "VectorSearchInterface",
    # Exceptions
    "CycleDetected",
    "DependencyFailed",
    "GraphSyncFailure",
    "HierarchyCycleError",
    "ConfigurationError",
    "IncompatibleSnapshot",
    "InvalidDAG",
    "PermissionDenied",
    "TaskTimeout",
    "ToolExecutionError",
    "TrainingConflict",
    "UnknownDecision",
]
