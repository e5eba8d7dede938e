"""
Domain exceptions for adaptive tool orchestration.

Task-level errors (timeouts, permission denials, tool failures) are contained
to their branch of the DAG by the executor; the rest signal invalid input or
a conflicting operation to the caller.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolweave.domain.models import PermissionSet


class TaskTimeout(Exception):
    """Raised when a tool call exceeds its per-task time budget."""

    def __init__(self, task_id: str, timeout: float):
        super().__init__(f"Task '{task_id}' timed out after {timeout}s")
        self.task_id = task_id
        self.timeout = timeout


class PermissionDenied(Exception):
    """
    Raised by a tool executor when the sandbox refuses an operation.

    The executor turns this into a permission escalation request instead of
    failing the task outright.
    """

    def __init__(
        self,
        message: str,
        operation: str = "",
        resource: str = "",
        permission_set: "PermissionSet | None" = None,
    ):
        """
        Args:
            message: Human-readable denial message
            operation: Operation that was refused (e.g. "net", "write")
            resource: Resource the operation targeted, if known
            permission_set: Permission set the tool was running under
        """
        super().__init__(message)
        self.operation = operation
        self.resource = resource
        self.permission_set = permission_set


class ToolExecutionError(Exception):
    """Raised when a tool call fails for a reason other than permissions."""

    def __init__(self, tool: str, message: str, recoverable: bool = True):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.message = message
        self.recoverable = recoverable


class DependencyFailed(Exception):
    """A task cannot run because an upstream task errored or was skipped."""

    def __init__(self, task_id: str, failed_dependencies: frozenset[str]):
        deps = ", ".join(sorted(failed_dependencies))
        super().__init__(f"Task '{task_id}' skipped: dependencies failed ({deps})")
        self.task_id = task_id
        self.failed_dependencies = failed_dependencies


class TrainingConflict(Exception):
    """The training lock is already held by another owner."""

    def __init__(self, owner: str, holder: str | None):
        super().__init__(f"Training lock requested by '{owner}' is held by '{holder}'")
        self.owner = owner
        self.holder = holder


class GraphSyncFailure(Exception):
    """Loading the graph from the database failed; the previous graph is kept."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class InvalidDAG(Exception):
    """The workflow DAG references unknown tasks or repeats task ids."""


class CycleDetected(InvalidDAG):
    """The workflow DAG contains a dependency cycle."""

    def __init__(self, path: tuple[str, ...]):
        super().__init__(f"Dependency cycle: {' -> '.join(path)}")
        self.path = path


class HierarchyCycleError(Exception):
    """Capability containment forms a cycle."""

    def __init__(self, capability_id: str, path: tuple[str, ...]):
        super().__init__(
            f"Capability hierarchy cycle at '{capability_id}': {' -> '.join(path)}"
        )
        self.capability_id = capability_id
        self.path = path


class IncompatibleSnapshot(Exception):
    """A recommender snapshot does not match the model's format or shapes."""


class UnknownDecision(Exception):
    """A decision was submitted for a checkpoint that is not pending."""

    def __init__(self, checkpoint_id: str):
        super().__init__(f"No pending decision for checkpoint '{checkpoint_id}'")
        self.checkpoint_id = checkpoint_id


class ConfigurationError(Exception):
    """Raised when a configuration or workflow file is missing or invalid."""
