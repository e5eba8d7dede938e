"""Tests for event stores."""

import os

import pytest

from toolweave.domain.events import Event, EventType
from toolweave.infrastructure.persistence.events import (
    GRAPH_LOG,
    FilesystemEventStore,
    InMemoryEventStore,
)


def event(event_id: str, event_type: EventType, workflow_id: str = "wf-1", **payload) -> Event:
    return Event(
        event_id=event_id,
        event_type=event_type,
        workflow_id=workflow_id,
        payload=payload,
        created_at="2026-01-01T00:00:00+00:00",
    )


@pytest.fixture(params=["memory", "filesystem"])
def store(request, tmp_path):  # noqa: ANN001
    if request.param == "memory":
        return InMemoryEventStore()
    return FilesystemEventStore(tmp_path)


class TestEventStores:
    """Behaviour shared by both stores."""

    def test_store_returns_event_id(self, store) -> None:  # noqa: ANN001
        assert store.store_event(event("e1", EventType.WORKFLOW_START)) == "e1"

    def test_filter_by_workflow_and_type(self, store) -> None:  # noqa: ANN001
        store.store_event(event("e1", EventType.WORKFLOW_START))
        store.store_event(event("e2", EventType.TASK_START, task_id="a"))
        store.store_event(event("e3", EventType.TASK_START, workflow_id="wf-2", task_id="b"))

        assert [e.event_id for e in store.get_events("wf-1")] == ["e1", "e2"]
        assert [e.event_id for e in store.get_events(event_type=EventType.TASK_START)] == [
            "e2",
            "e3",
        ]
        assert store.get_events("wf-2", EventType.WORKFLOW_START) == []

    def test_payload_preserved(self, store) -> None:  # noqa: ANN001
        stored = event("e1", EventType.TASK_COMPLETE, task_id="a", execution_time_ms=3.5)
        store.store_event(stored)

        assert store.get_events("wf-1") == [stored]


class TestFilesystemEventStore:
    def test_one_jsonl_file_per_workflow(self, tmp_path) -> None:  # noqa: ANN001
        store = FilesystemEventStore(tmp_path)
        store.store_event(event("e1", EventType.WORKFLOW_START))
        store.store_event(event("e2", EventType.WORKFLOW_COMPLETE))

        path = tmp_path / "events" / "wf-1.jsonl"
        assert len(path.read_text().splitlines()) == 2

    def test_graph_events_go_to_graph_log(self, tmp_path) -> None:  # noqa: ANN001
        store = FilesystemEventStore(tmp_path)
        store.store_event(event("g1", EventType.GRAPH_SYNCED, workflow_id="", edge_count=3))

        assert (tmp_path / "events" / f"{GRAPH_LOG}.jsonl").exists()
        assert store.get_events(event_type=EventType.GRAPH_SYNCED)[0].payload == {"edge_count": 3}
        assert store.workflow_ids() == []

    def test_workflow_ids_oldest_first(self, tmp_path) -> None:  # noqa: ANN001
        store = FilesystemEventStore(tmp_path)
        store.store_event(event("e1", EventType.WORKFLOW_START, workflow_id="older"))
        store.store_event(event("e2", EventType.WORKFLOW_START, workflow_id="newer"))
        events_dir = tmp_path / "events"
        os.utime(events_dir / "older.jsonl", (1_000, 1_000))
        os.utime(events_dir / "newer.jsonl", (2_000, 2_000))

        assert store.workflow_ids() == ["older", "newer"]

    def test_events_survive_reopen(self, tmp_path) -> None:  # noqa: ANN001
        FilesystemEventStore(tmp_path).store_event(event("e1", EventType.WORKFLOW_START))

        assert [e.event_id for e in FilesystemEventStore(tmp_path).get_events("wf-1")] == ["e1"]

    def test_unknown_workflow(self, tmp_path) -> None:  # noqa: ANN001
        assert FilesystemEventStore(tmp_path).get_events("ghost") == []
