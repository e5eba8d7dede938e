"""Event dispatch service.

One typed dispatcher per process instance. Subscribers register explicitly
and receive every event (or only the types they ask for) in emission order.
Events can additionally be appended to an event store for later inspection.
"""

import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from toolweave.domain.events import Event, EventType
from toolweave.domain.interfaces import EventStoreInterface

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], None]


class EventDispatcher:
    """Fan-out of events to subscribers and an optional store.

    A subscriber that raises is logged and does not affect the others or the
    emitter.
    """

    def __init__(self, store: EventStoreInterface | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._subscribers: list[tuple[EventHandler, frozenset[EventType] | None]] = []

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Iterable[EventType] | None = None,
    ) -> Callable[[], None]:
        """Register a handler.

        Returns:
            A callable that removes this subscription
        """
        entry = (handler, frozenset(event_types) if event_types is not None else None)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def emit(
        self,
        event_type: EventType,
        payload: dict[str, Any] | None = None,
        workflow_id: str = "",
    ) -> Event:
        event = Event(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            workflow_id=workflow_id,
            payload=payload or {},
            created_at=self._now(),
        )
        if self._store is not None:
            try:
                self._store.store_event(event)
            except OSError:
                logger.exception("Failed to store %s event", event_type.value)

        with self._lock:
            subscribers = list(self._subscribers)
        for handler, types in subscribers:
            if types is not None and event_type not in types:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event subscriber %r failed on %s", handler, event_type.value
                )
        return event

    def heartbeat(self, **payload: Any) -> Event:
        """Emit a liveness event for long-lived listeners."""
        return self.emit(EventType.HEARTBEAT, payload)
