"""Permission ladder and escalation suggestions for denied tool calls."""

from toolweave.domain.exceptions import PermissionDenied
from toolweave.domain.models import (
    PERMISSION_LADDER,
    PermissionEscalationRequest,
    PermissionSet,
)

# Lowest level that grants each recognised sandbox operation
OPERATION_REQUIREMENTS: dict[str, PermissionSet] = {
    "read": PermissionSet.READONLY,
    "write": PermissionSet.FILESYSTEM,
    "fetch": PermissionSet.NETWORK_API,
    "net": PermissionSet.NETWORK_API,
    "env": PermissionSet.MCP_STANDARD,
    "run": PermissionSet.MCP_STANDARD,
    "mcp": PermissionSet.MCP_STANDARD,
    "ffi": PermissionSet.TRUSTED,
    "sys": PermissionSet.TRUSTED,
}

KNOWN_OPERATION_CONFIDENCE = 0.9
UNKNOWN_OPERATION_CONFIDENCE = 0.5


def next_level(current: PermissionSet) -> PermissionSet | None:
    """The next rung up the ladder, or None at the top."""
    if current.rank + 1 >= len(PERMISSION_LADDER):
        return None
    return PERMISSION_LADDER[current.rank + 1]


def detect_operation(error: PermissionDenied) -> str:
    """Operation named by the denial, falling back to keywords in its message."""
    if error.operation:
        return error.operation.lower()
    message = str(error).lower()
    for operation in OPERATION_REQUIREMENTS:
        if operation in message:
            return operation
    return "unknown"


def suggest_escalation(
    error: PermissionDenied,
    current: PermissionSet,
    task_id: str,
    capability_id: str,
) -> PermissionEscalationRequest | None:
    """Build an escalation request for a denial, or None when none can help.

    The requested level is the one the denied operation needs, or the next
    rung up when the operation is not recognised.
    """
    operation = detect_operation(error)
    required = OPERATION_REQUIREMENTS.get(operation)

    if required is not None and not current.covers(required):
        requested = required
        confidence = KNOWN_OPERATION_CONFIDENCE
    else:
        rung = next_level(current)
        if rung is None:
            return None
        requested = rung
        confidence = UNKNOWN_OPERATION_CONFIDENCE

    return PermissionEscalationRequest(
        capability_id=capability_id,
        task_id=task_id,
        current_set=current,
        requested_set=requested,
        reason=str(error),
        detected_operation=operation,
        confidence=confidence,
    )
