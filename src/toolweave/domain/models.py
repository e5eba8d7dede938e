"""
Domain models for adaptive tool orchestration.

Pure data structures shared by the executor, the graph engine and the
learning components. All models are immutable (frozen dataclasses) except
WorkflowState, which is owned exclusively by a single run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# =============================================================================
# PERMISSIONS
# =============================================================================


class PermissionSet(Enum):
    """Sandbox permission level a tool runs under, least privileged first."""

    MINIMAL = "minimal"
    READONLY = "readonly"
    FILESYSTEM = "filesystem"
    NETWORK_API = "network-api"
    MCP_STANDARD = "mcp-standard"
    TRUSTED = "trusted"

    @property
    def rank(self) -> int:
        return PERMISSION_LADDER.index(self)

    def covers(self, other: "PermissionSet") -> bool:
        """True if this level grants at least what ``other`` grants."""
        return self.rank >= other.rank


PERMISSION_LADDER: tuple[PermissionSet, ...] = (
    PermissionSet.MINIMAL,
    PermissionSet.READONLY,
    PermissionSet.FILESYSTEM,
    PermissionSet.NETWORK_API,
    PermissionSet.MCP_STANDARD,
    PermissionSet.TRUSTED,
)


# =============================================================================
# WORKFLOW DEFINITION
# =============================================================================


@dataclass(frozen=True)
class WorkflowTask:
    """
    One node of a workflow DAG.

    Immutable once planned. ``depends_on`` holds the ids of tasks that must
    reach a terminal status before this one may start.
    """

    id: str
    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    depends_on: frozenset[str] = frozenset()
    capability_id: str | None = None
    idempotent: bool = True  # Safe to retry after a timeout or tool error
    side_effects: bool = False  # Triggers critical_only approval checkpoints
    permission_set: PermissionSet = PermissionSet.MINIMAL


@dataclass(frozen=True)
class WorkflowDAG:
    """A planned workflow: tasks plus the intent they serve."""

    tasks: tuple[WorkflowTask, ...]
    intent: str = ""

    def task(self, task_id: str) -> WorkflowTask:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise KeyError(task_id)


# =============================================================================
# EXECUTION STATE
# =============================================================================


class TaskStatus(Enum):
    """Lifecycle status of a task within one run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.ERROR, TaskStatus.SKIPPED)


class FailureReason(Enum):
    """Why a task ended in error or was skipped."""

    TIMEOUT = "TIMEOUT"
    PERMISSION_DENIED = "PERMISSION_DENIED"  # No escalation path left
    PERMISSION_REJECTED = "PERMISSION_REJECTED"  # Escalation refused
    TOOL_ERROR = "TOOL_ERROR"
    DEPENDENCY_FAILED = "DEPENDENCY_FAILED"
    ABORTED = "ABORTED"


class RunStatus(Enum):
    """Status of a whole workflow run."""

    PLANNED = "planned"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class TaskResult:
    """Terminal record of one task execution."""

    task_id: str
    tool: str
    status: TaskStatus
    output: Any = None
    error: str | None = None
    reason: FailureReason | None = None
    attempts: int = 0
    execution_time_ms: float = 0.0
    layer_index: int = 0
    started_at: str | None = None  # ISO timestamp
    finished_at: str | None = None  # ISO timestamp


@dataclass(frozen=True)
class Decision:
    """Answer to a decision_required checkpoint."""

    checkpoint_id: str
    approved: bool
    feedback: str = ""


@dataclass
class WorkflowState:
    """
    Mutable per-run state.

    Owned exclusively by one run; results are appended in completion order.
    """

    workflow_id: str
    statuses: dict[str, TaskStatus] = field(default_factory=dict)
    results: dict[str, TaskResult] = field(default_factory=dict)
    completion_order: list[str] = field(default_factory=list)
    current_layer: int = -1
    decisions: list[Decision] = field(default_factory=list)

    def status_of(self, task_id: str) -> TaskStatus:
        return self.statuses.get(task_id, TaskStatus.PENDING)

    def mark_running(self, task_id: str) -> None:
        self.statuses[task_id] = TaskStatus.RUNNING

    def record(self, result: TaskResult) -> None:
        self.statuses[result.task_id] = result.status
        self.results[result.task_id] = result
        if result.task_id not in self.completion_order:
            self.completion_order.append(result.task_id)

    def ordered_results(self) -> tuple[TaskResult, ...]:
        return tuple(self.results[task_id] for task_id in self.completion_order)

    def failed_or_skipped(self, task_ids: frozenset[str]) -> set[str]:
        return {
            task_id
            for task_id in task_ids
            if self.status_of(task_id) in (TaskStatus.ERROR, TaskStatus.SKIPPED)
        }


@dataclass(frozen=True)
class ExecutionTrace:
    """Everything a finished run hands to learning and persistence."""

    workflow_id: str
    dag_ref: str
    intent: str
    status: RunStatus
    task_results: tuple[TaskResult, ...]
    started_at: str
    duration_ms: float
    decisions: tuple[Decision, ...] = ()
    dependencies: dict[str, tuple[str, ...]] = field(default_factory=dict)
    capabilities: dict[str, str] = field(default_factory=dict)  # task_id -> capability


@dataclass(frozen=True)
class RunResult:
    """Result of a workflow run. Always carries the full task trace."""

    workflow_id: str
    status: RunStatus
    results: tuple[TaskResult, ...]
    trace: ExecutionTrace
    abort_reason: str | None = None

    def result_for(self, task_id: str) -> TaskResult:
        for result in self.results:
            if result.task_id == task_id:
                return result
        raise KeyError(task_id)


@dataclass(frozen=True)
class PermissionEscalationRequest:
    """Request to run a capability under a broader permission set."""

    capability_id: str
    task_id: str
    current_set: PermissionSet
    requested_set: PermissionSet
    reason: str
    detected_operation: str
    confidence: float  # 0..1, how sure the ladder heuristic is


# =============================================================================
# GRAPH MODEL
# =============================================================================


class NodeKind(Enum):
    TOOL = "tool"
    CAPABILITY = "capability"


class EdgeType(Enum):
    """Relationship an edge encodes."""

    CONTAINS = "contains"  # Capability -> member tool/capability
    SEQUENCE = "sequence"  # Observed one-after-the-other
    DEPENDENCY = "dependency"  # Explicit data dependency in a DAG


class EdgeSource(Enum):
    """Provenance of an edge's confidence."""

    OBSERVED = "observed"
    INFERRED = "inferred"
    TEMPLATE = "template"
    HINT = "hint"
    MERGED = "merged"
    IMPORTED = "imported"


@dataclass(frozen=True)
class GraphNode:
    """A tool or capability vertex."""

    id: str
    kind: NodeKind = NodeKind.TOOL
    pagerank: float = 0.0
    degree: int = 0


@dataclass(frozen=True)
class GraphEdge:
    """
    Directed, typed edge. ``weight`` is a confidence, not a probability mass.

    Replaced as a whole record on update so readers never see a half-written
    edge.
    """

    source: str
    target: str
    weight: float
    observed_count: int = 1
    edge_type: EdgeType = EdgeType.SEQUENCE
    edge_source: EdgeSource = EdgeSource.INFERRED

    def __post_init__(self) -> None:
        if not 0.0 <= self.weight <= 1.0:
            raise ValueError(f"edge weight must be in [0, 1], got {self.weight}")
        if self.observed_count < 0:
            raise ValueError(
                f"observed_count must be >= 0, got {self.observed_count}"
            )

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)


class HyperedgeType(Enum):
    CAP_TO_TOOL = "cap_to_tool"  # Every member is a tool
    CAP_TO_CAP = "cap_to_cap"  # At least one member is a capability


@dataclass(frozen=True)
class Hyperedge:
    """Derived "contains" relation of a capability over its members."""

    capability_id: str
    members: frozenset[str]
    type: HyperedgeType

    @property
    def order(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class Capability:
    """A learned, reusable bundle of tools (and possibly sub-capabilities)."""

    id: str
    embedding: tuple[float, ...] = ()
    tools_used: tuple[str, ...] = ()
    children: tuple[str, ...] = ()
    success_rate: float = 1.0
    hierarchy_level: int = 0
    usage_count: int = 0
    idempotent: bool = True
    permission_set: PermissionSet = PermissionSet.MINIMAL

    def __post_init__(self) -> None:
        if not 0.0 <= self.success_rate <= 1.0:
            raise ValueError(
                f"success_rate must be in [0, 1], got {self.success_rate}"
            )
        if self.hierarchy_level < 0:
            raise ValueError("hierarchy_level must be >= 0")


# =============================================================================
# LEARNING
# =============================================================================


@dataclass(frozen=True)
class TrainingExample:
    """One supervised signal for the recommender."""

    intent_embedding: tuple[float, ...]
    context_tools: tuple[str, ...]
    candidate_id: str
    outcome: float  # 1.0 success, 0.0 failure

    def __post_init__(self) -> None:
        if not 0.0 <= self.outcome <= 1.0:
            raise ValueError(f"outcome must be in [0, 1], got {self.outcome}")


@dataclass(frozen=True)
class Thresholds:
    """Current adaptive thresholds."""

    suggestion_threshold: float
    explicit_threshold: float
