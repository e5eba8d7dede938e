"""Event store implementations."""

import json
import threading
from pathlib import Path

from toolweave.domain.events import Event, EventType
from toolweave.domain.interfaces import EventStoreInterface
from toolweave.infrastructure.persistence.codec import dict_to_event, event_to_dict

GRAPH_LOG = "_graph"  # File name for events that belong to no workflow


class InMemoryEventStore(EventStoreInterface):
    """In-memory implementation for testing."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def store_event(self, event: Event) -> str:
        self._events.append(event)
        return event.event_id

    def get_events(
        self,
        workflow_id: str | None = None,
        event_type: EventType | None = None,
    ) -> list[Event]:
        return [
            e
            for e in self._events
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (event_type is None or e.event_type == event_type)
        ]


class FilesystemEventStore(EventStoreInterface):
    """Filesystem implementation storing events as JSONL, one file per workflow."""

    def __init__(self, base_path: Path) -> None:
        self.base_path = Path(base_path)
        self.events_dir = self.base_path / "events"
        self.events_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_workflow_file(self, workflow_id: str) -> Path:
        return self.events_dir / f"{workflow_id or GRAPH_LOG}.jsonl"

    def store_event(self, event: Event) -> str:
        path = self._get_workflow_file(event.workflow_id)
        line = json.dumps(event_to_dict(event), default=str)
        with self._lock, open(path, "a") as f:
            f.write(line + "\n")
        return event.event_id

    def workflow_ids(self) -> list[str]:
        """Ids of recorded runs, least recently written first."""
        paths = [p for p in self.events_dir.glob("*.jsonl") if p.stem != GRAPH_LOG]
        return [p.stem for p in sorted(paths, key=lambda p: (p.stat().st_mtime, p.stem))]

    def get_events(
        self,
        workflow_id: str | None = None,
        event_type: EventType | None = None,
    ) -> list[Event]:
        if workflow_id is None:
            paths = sorted(self.events_dir.glob("*.jsonl"))
        else:
            paths = [self._get_workflow_file(workflow_id)]

        events: list[Event] = []
        for path in paths:
            if not path.exists():
                continue
            with open(path) as f:
                for line in f:
                    if not line.strip():
                        continue
                    event = dict_to_event(json.loads(line))
                    if event_type and event.event_type != event_type:
                        continue
                    events.append(event)
        return events
