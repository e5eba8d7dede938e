"""Shared pytest fixtures for toolweave tests."""

import numpy as np
import pytest

from toolweave.application.event_dispatcher import EventDispatcher
from toolweave.application.graph_engine import GraphRAGEngine
from toolweave.domain.events import Event
from toolweave.domain.models import (
    Capability,
    EdgeSource,
    EdgeType,
    GraphEdge,
    WorkflowDAG,
    WorkflowTask,
)
from toolweave.infrastructure.persistence.events import InMemoryEventStore
from toolweave.infrastructure.persistence.memory import InMemoryDbClient
from toolweave.infrastructure.tools import MockToolExecutor
from toolweave.learning.shgat import SHGATConfig

EMBEDDING_DIM = 16


def task(task_id: str, tool: str | None = None, deps: tuple[str, ...] = (), **kwargs) -> WorkflowTask:
    """Build a WorkflowTask; the tool defaults to the task id."""
    return WorkflowTask(
        id=task_id, tool=tool or task_id, depends_on=frozenset(deps), **kwargs
    )


def unit_vector(seed: int, dim: int = EMBEDDING_DIM) -> np.ndarray:
    """Deterministic random unit vector."""
    vector = np.random.default_rng(seed).standard_normal(dim)
    return vector / np.linalg.norm(vector)


class EventRecorder:
    """Subscriber that keeps every event it receives."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.event_type.value for event in self.events]

    def of_type(self, value: str) -> list[Event]:
        return [event for event in self.events if event.event_type.value == value]


@pytest.fixture
def diamond_dag() -> WorkflowDAG:
    """a -> (b, c) -> d."""
    return WorkflowDAG(
        tasks=(
            task("a"),
            task("b", deps=("a",)),
            task("c", deps=("a",)),
            task("d", deps=("b", "c")),
        ),
        intent="read then transform then write",
    )


@pytest.fixture
def sample_edges() -> list[GraphEdge]:
    return [
        GraphEdge("read_file", "parse_json", 0.9, 4, EdgeType.SEQUENCE, EdgeSource.OBSERVED),
        GraphEdge("parse_json", "write_file", 0.7, 2),
        GraphEdge("read_file", "grep", 0.4, 1),
        GraphEdge("fetch", "parse_json", 0.6, 1),
    ]


@pytest.fixture
def sample_capabilities() -> list[Capability]:
    return [
        Capability(
            id="cap:ingest",
            embedding=tuple(unit_vector(1)),
            tools_used=("read_file", "parse_json"),
        ),
        Capability(
            id="cap:publish",
            embedding=tuple(unit_vector(2)),
            tools_used=("write_file",),
            children=("cap:ingest",),
            hierarchy_level=1,
        ),
    ]


@pytest.fixture
def memory_db(sample_edges, sample_capabilities) -> InMemoryDbClient:
    """In-memory database preloaded with the sample graph."""
    return InMemoryDbClient(edges=sample_edges, capabilities=sample_capabilities)


@pytest.fixture
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def dispatcher(event_store, recorder) -> EventDispatcher:
    """Dispatcher that stores events and records them for assertions."""
    dispatcher = EventDispatcher(store=event_store)
    dispatcher.subscribe(recorder)
    return dispatcher


@pytest.fixture
def engine(memory_db, dispatcher) -> GraphRAGEngine:
    """Graph engine over the sample database (not yet synced)."""
    return GraphRAGEngine(memory_db, dispatcher=dispatcher)


@pytest.fixture
def small_shgat_config() -> SHGATConfig:
    return SHGATConfig(embedding_dim=EMBEDDING_DIM, hidden_dim=8, num_heads=2, seed=7)


@pytest.fixture
def mock_tools() -> MockToolExecutor:
    return MockToolExecutor()
