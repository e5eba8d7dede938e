"""JSON-compatible dict conversions for persisted domain records."""

from typing import Any

from toolweave.domain.events import Event, EventType
from toolweave.domain.models import (
    Capability,
    Decision,
    EdgeSource,
    EdgeType,
    ExecutionTrace,
    FailureReason,
    GraphEdge,
    PermissionSet,
    RunStatus,
    TaskResult,
    TaskStatus,
    Thresholds,
)


def edge_to_dict(edge: GraphEdge) -> dict[str, Any]:
    return {
        "source": edge.source,
        "target": edge.target,
        "weight": edge.weight,
        "observed_count": edge.observed_count,
        "edge_type": edge.edge_type.value,
        "edge_source": edge.edge_source.value,
    }


def dict_to_edge(data: dict[str, Any]) -> GraphEdge:
    return GraphEdge(
        source=data["source"],
        target=data["target"],
        weight=data["weight"],
        observed_count=data.get("observed_count", 1),
        edge_type=EdgeType(data.get("edge_type", EdgeType.SEQUENCE.value)),
        edge_source=EdgeSource(data.get("edge_source", EdgeSource.INFERRED.value)),
    )


def capability_to_dict(capability: Capability) -> dict[str, Any]:
    return {
        "id": capability.id,
        "embedding": list(capability.embedding),
        "tools_used": list(capability.tools_used),
        "children": list(capability.children),
        "success_rate": capability.success_rate,
        "hierarchy_level": capability.hierarchy_level,
        "usage_count": capability.usage_count,
        "idempotent": capability.idempotent,
        "permission_set": capability.permission_set.value,
    }


def dict_to_capability(data: dict[str, Any]) -> Capability:
    return Capability(
        id=data["id"],
        embedding=tuple(data.get("embedding", ())),
        tools_used=tuple(data.get("tools_used", ())),
        children=tuple(data.get("children", ())),
        success_rate=data.get("success_rate", 1.0),
        hierarchy_level=data.get("hierarchy_level", 0),
        usage_count=data.get("usage_count", 0),
        idempotent=data.get("idempotent", True),
        permission_set=PermissionSet(data.get("permission_set", "minimal")),
    )


def _result_to_dict(result: TaskResult) -> dict[str, Any]:
    return {
        "task_id": result.task_id,
        "tool": result.tool,
        "status": result.status.value,
        "output": result.output,
        "error": result.error,
        "reason": result.reason.value if result.reason else None,
        "attempts": result.attempts,
        "execution_time_ms": result.execution_time_ms,
        "layer_index": result.layer_index,
        "started_at": result.started_at,
        "finished_at": result.finished_at,
    }


def _dict_to_result(data: dict[str, Any]) -> TaskResult:
    return TaskResult(
        task_id=data["task_id"],
        tool=data["tool"],
        status=TaskStatus(data["status"]),
        output=data.get("output"),
        error=data.get("error"),
        reason=FailureReason(data["reason"]) if data.get("reason") else None,
        attempts=data.get("attempts", 0),
        execution_time_ms=data.get("execution_time_ms", 0.0),
        layer_index=data.get("layer_index", 0),
        started_at=data.get("started_at"),
        finished_at=data.get("finished_at"),
    )


def trace_to_dict(trace: ExecutionTrace) -> dict[str, Any]:
    return {
        "workflow_id": trace.workflow_id,
        "dag_ref": trace.dag_ref,
        "intent": trace.intent,
        "status": trace.status.value,
        "task_results": [_result_to_dict(r) for r in trace.task_results],
        "started_at": trace.started_at,
        "duration_ms": trace.duration_ms,
        "decisions": [
            {"checkpoint_id": d.checkpoint_id, "approved": d.approved, "feedback": d.feedback}
            for d in trace.decisions
        ],
        "dependencies": {k: list(v) for k, v in trace.dependencies.items()},
        "capabilities": dict(trace.capabilities),
    }


def dict_to_trace(data: dict[str, Any]) -> ExecutionTrace:
    return ExecutionTrace(
        workflow_id=data["workflow_id"],
        dag_ref=data["dag_ref"],
        intent=data.get("intent", ""),
        status=RunStatus(data["status"]),
        task_results=tuple(_dict_to_result(r) for r in data.get("task_results", [])),
        started_at=data.get("started_at", ""),
        duration_ms=data.get("duration_ms", 0.0),
        decisions=tuple(
            Decision(d["checkpoint_id"], d["approved"], d.get("feedback", ""))
            for d in data.get("decisions", [])
        ),
        dependencies={k: tuple(v) for k, v in data.get("dependencies", {}).items()},
        capabilities=dict(data.get("capabilities", {})),
    )


def thresholds_to_dict(thresholds: Thresholds) -> dict[str, float]:
    return {
        "suggestion_threshold": thresholds.suggestion_threshold,
        "explicit_threshold": thresholds.explicit_threshold,
    }


def dict_to_thresholds(data: dict[str, Any]) -> Thresholds:
    return Thresholds(
        suggestion_threshold=data["suggestion_threshold"],
        explicit_threshold=data["explicit_threshold"],
    )


def event_to_dict(event: Event) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "event_type": event.event_type.value,
        "workflow_id": event.workflow_id,
        "payload": event.payload,
        "created_at": event.created_at,
    }


def dict_to_event(data: dict[str, Any]) -> Event:
    return Event(
        event_id=data["event_id"],
        event_type=EventType(data["event_type"]),
        workflow_id=data.get("workflow_id", ""),
        payload=data.get("payload", {}),
        created_at=data.get("created_at", ""),
    )
