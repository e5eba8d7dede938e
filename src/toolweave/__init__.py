"""
toolweave: adaptive DAG tool orchestration.

Runs workflows of tool calls layer by layer with retries, permission
escalation and human approval checkpoints, and learns from every run which
tool tends to follow which.

Example:
    import asyncio
    from toolweave import InMemoryDbClient, MockToolExecutor, Runtime, WorkflowDAG, WorkflowTask

    dag = WorkflowDAG(
        tasks=(
            WorkflowTask(id="a", tool="read_file"),
            WorkflowTask(id="b", tool="summarise", depends_on=frozenset({"a"})),
        ),
        intent="summarise a file",
    )
    runtime = Runtime.build(MockToolExecutor(), InMemoryDbClient())
    result = asyncio.run(runtime.run(dag))
"""

# Application layer (orchestration)
from toolweave.application.event_dispatcher import EventDispatcher
from toolweave.application.executor import (
    ControlledExecutor,
    ExecutorConfig,
    HILConfig,
    RunHandle,
)
from toolweave.application.graph_engine import GraphRAGEngine
from toolweave.application.suggester import DAGSuggester, Suggestion

# Configuration and composition
from toolweave.config import ToolweaveConfig, load_config, load_workflow

# Domain exceptions
from toolweave.domain.exceptions import (
    CycleDetected,
    InvalidDAG,
    PermissionDenied,
    ToolExecutionError,
    UnknownDecision,
)

# Domain interfaces (for type hints and custom implementations)
from toolweave.domain.interfaces import (
    ApproverInterface,
    DbClientInterface,
    ToolExecutorInterface,
)

# Domain models (most commonly used)
from toolweave.domain.models import (
    Capability,
    PermissionSet,
    RunResult,
    RunStatus,
    TaskResult,
    TaskStatus,
    WorkflowDAG,
    WorkflowTask,
)

# Infrastructure (explicit import encouraged for dependency injection)
from toolweave.infrastructure.persistence import FilesystemDbClient, InMemoryDbClient
from toolweave.infrastructure.tools import MockToolExecutor

# Learning
from toolweave.learning.shgat import SHGAT, SHGATConfig
from toolweave.learning.thresholds import AdaptiveThresholdManager
from toolweave.runtime import Runtime

__version__ = "0.3.0"

__all__ = [
    # Version
    "__version__",
    # Domain models
    "Capability",
    "PermissionSet",
    "RunResult",
    "RunStatus",
    "TaskResult",
    "TaskStatus",
    "WorkflowDAG",
    "WorkflowTask",
    # Domain interfaces
    "ApproverInterface",
    "DbClientInterface",
    "ToolExecutorInterface",
    # Domain exceptions
    "CycleDetected",
    "InvalidDAG",
    "PermissionDenied",
    "ToolExecutionError",
    "UnknownDecision",
    # Application layer
    "ControlledExecutor",
    "DAGSuggester",
    "EventDispatcher",
    "ExecutorConfig",
    "GraphRAGEngine",
    "HILConfig",
    "RunHandle",
    "Suggestion",
    # Learning
    "SHGAT",
    "SHGATConfig",
    "AdaptiveThresholdManager",
    # Configuration and composition
    "Runtime",
    "ToolweaveConfig",
    "load_config",
    "load_workflow",
    # Infrastructure
    "InMemoryDbClient",
    "FilesystemDbClient",
    "MockToolExecutor",
]
