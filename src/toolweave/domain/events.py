"""Typed events emitted by the graph engine and the executor."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Every event kind the system emits."""

    # Graph engine
    GRAPH_SYNCED = "graph_synced"
    EDGE_CREATED = "edge_created"
    EDGE_UPDATED = "edge_updated"
    METRICS_UPDATED = "metrics_updated"
    HEARTBEAT = "heartbeat"

    # Executor
    WORKFLOW_START = "workflow_start"
    LAYER_START = "layer_start"
    TASK_START = "task_start"
    TASK_COMPLETE = "task_complete"
    TASK_ERROR = "task_error"
    TASK_SKIPPED = "task_skipped"
    STATE_UPDATED = "state_updated"
    DECISION_REQUIRED = "decision_required"
    DECISION_RESOLVED = "decision_resolved"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_ABORTED = "workflow_aborted"
    WORKFLOW_EXECUTED = "workflow_executed"


@dataclass(frozen=True)
class Event:
    """Single emitted event.

    ``workflow_id`` is empty for graph-level events that belong to no run.
    """

    event_id: str
    event_type: EventType
    workflow_id: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""  # ISO 8601
