"""
Domain interfaces (Ports) for adaptive tool orchestration.

These abstract base classes define the contracts that implementations must satisfy.
They have no external dependencies and represent the core domain boundaries.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np

    from toolweave.domain.events import Event, EventType
    from toolweave.domain.models import (
        Capability,
        Decision,
        ExecutionTrace,
        GraphEdge,
        PermissionEscalationRequest,
        PermissionSet,
        Thresholds,
    )


class ToolExecutorInterface(ABC):
    """
    Port for running a single tool call inside the sandbox.

    Note (Side Effects & Idempotency):
        The executor retries a call after a timeout or tool error only when
        the task is marked idempotent. Implementations with side effects must
        either be idempotent or be planned as non-idempotent tasks.
    """

    @abstractmethod
    async def execute(
        self,
        tool: str,
        args: dict[str, Any],
        permission_set: "PermissionSet",
    ) -> Any:
        """
        Run one tool call.

        Args:
            tool: Tool identifier
            args: Tool arguments
            permission_set: Sandbox permission level to run under

        Returns:
            The tool's output

        Raises:
            PermissionDenied: The sandbox refused an operation
            ToolExecutionError: The tool failed
        """


class EmbeddingModelInterface(ABC):
    """Port for turning text into a fixed-dimension vector."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length D of every vector this model returns."""

    @abstractmethod
    def encode(self, text: str) -> "np.ndarray":
        """
        Encode text. Must be deterministic for a given model version.

        Returns:
            Float vector of shape (D,)
        """


class VectorSearchInterface(ABC):
    """Port for nearest-neighbour search over capability embeddings."""

    @abstractmethod
    def search(self, embedding: "np.ndarray", k: int) -> list[tuple[str, float]]:
        """
        Find the k most similar capabilities.

        Returns:
            (capability_id, cosine similarity) pairs, most similar first
        """

    @abstractmethod
    def upsert(self, item_id: str, embedding: "np.ndarray") -> None:
        """Insert or replace the vector stored for item_id."""


class DbClientInterface(ABC):
    """
    Port for durable storage of the graph, capabilities and run history.

    All methods are coroutines; implementations may block internally but the
    executor only ever awaits them.
    """

    @abstractmethod
    async def load_edges(self) -> list["GraphEdge"]:
        """Return every persisted edge."""

    @abstractmethod
    async def save_edge(self, edge: "GraphEdge") -> None:
        """Insert or replace the edge keyed by (source, target)."""

    @abstractmethod
    async def load_capabilities(self) -> list["Capability"]:
        """Return every persisted capability."""

    @abstractmethod
    async def get_capability(self, capability_id: str) -> "Capability | None":
        """Return one capability or None."""

    @abstractmethod
    async def save_capability(self, capability: "Capability") -> None:
        """Insert or replace a capability keyed by id."""

    @abstractmethod
    async def save_trace(self, trace: "ExecutionTrace") -> None:
        """Persist the trace of a finished run."""

    @abstractmethod
    async def load_traces(self, limit: int | None = None) -> list["ExecutionTrace"]:
        """Return stored traces, most recent last."""

    @abstractmethod
    async def save_snapshot(self, name: str, snapshot: dict[str, Any]) -> None:
        """Persist an opaque, JSON-serializable model snapshot."""

    @abstractmethod
    async def load_snapshot(self, name: str) -> dict[str, Any] | None:
        """Return a previously saved snapshot or None."""

    @abstractmethod
    async def save_thresholds(self, context_hash: str, thresholds: "Thresholds") -> None:
        """Persist adaptive thresholds for a context."""

    @abstractmethod
    async def load_thresholds(self, context_hash: str) -> "Thresholds | None":
        """Return thresholds stored for a context or None."""


class ApproverInterface(ABC):
    """
    Port for answering decision_required checkpoints.

    Used for permission escalation requests and human-in-the-loop layer
    checkpoints. Callers may instead answer through the run handle.
    """

    @abstractmethod
    async def decide_escalation(
        self, checkpoint_id: str, request: "PermissionEscalationRequest"
    ) -> "Decision":
        """Approve or reject a permission escalation."""

    @abstractmethod
    async def decide_checkpoint(self, checkpoint_id: str, summary: str) -> "Decision":
        """Approve or reject continuing past a layer checkpoint."""


class EventStoreInterface(ABC):
    """
    Port for persisting emitted events.

    Provides an append-only log queryable per workflow.
    """

    @abstractmethod
    def store_event(self, event: "Event") -> str:
        """
        Persist an event.

        Returns:
            The event_id of the stored event
        """

    @abstractmethod
    def get_events(
        self,
        workflow_id: str | None = None,
        event_type: "EventType | None" = None,
    ) -> list["Event"]:
        """
        Retrieve events, optionally filtered.

        Returns:
            Events ordered by insertion
        """
