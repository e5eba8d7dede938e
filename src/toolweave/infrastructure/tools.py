"""
Mock tool executor for testing and dry runs without a sandbox.

Returns scripted outcomes per tool and enforces declared permission levels.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from toolweave.domain.exceptions import PermissionDenied
from toolweave.domain.interfaces import ToolExecutorInterface
from toolweave.domain.models import PermissionSet
from toolweave.domain.permissions import OPERATION_REQUIREMENTS


@dataclass(frozen=True)
class ToolCall:
    """One recorded call."""

    tool: str
    args: dict[str, Any] = field(default_factory=dict)
    permission_set: PermissionSet = PermissionSet.MINIMAL


def _operation_for(level: PermissionSet) -> str:
    for operation, required in OPERATION_REQUIREMENTS.items():
        if required is level:
            return operation
    return "unknown"


class MockToolExecutor(ToolExecutorInterface):
    """Scripted tool executor.

    Each tool has a queue of outcomes consumed one per call; the last outcome
    repeats once the queue is down to one. An outcome that is an exception is
    raised, a callable is called with the call's args, anything else is
    returned as the tool output. Tools without a script return a small echo
    dictionary.
    """

    def __init__(
        self,
        responses: dict[str, list[Any]] | None = None,
        delays: dict[str, float] | None = None,
        required_permissions: dict[str, PermissionSet] | None = None,
    ):
        """
        Args:
            responses: Outcome queue per tool
            delays: Seconds each call of a tool takes
            required_permissions: Lowest permission level each tool needs;
                calls below it raise PermissionDenied
        """
        self._responses = {tool: list(queue) for tool, queue in (responses or {}).items()}
        self._delays = dict(delays or {})
        self._required = dict(required_permissions or {})
        self.calls: list[ToolCall] = []
        self._active = 0
        self.max_active = 0

    async def execute(
        self,
        tool: str,
        args: dict[str, Any],
        permission_set: PermissionSet,
    ) -> Any:
        self.calls.append(ToolCall(tool, dict(args), permission_set))

        required = self._required.get(tool)
        if required is not None and not permission_set.covers(required):
            raise PermissionDenied(
                f"{tool} requires {required.value} permissions",
                operation=_operation_for(required),
                resource=tool,
                permission_set=permission_set,
            )

        self._active += 1
        self.max_active = max(self.max_active, self._active)
        try:
            delay = self._delays.get(tool, 0.0)
            if delay > 0:
                await asyncio.sleep(delay)
            outcome = self._next_outcome(tool, args)
        finally:
            self._active -= 1

        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            handler: Callable[[dict[str, Any]], Any] = outcome
            return handler(args)
        return outcome

    def _next_outcome(self, tool: str, args: dict[str, Any]) -> Any:
        queue = self._responses.get(tool)
        if not queue:
            return {"tool": tool, "args": dict(args)}
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    def call_count(self, tool: str | None = None) -> int:
        """Number of calls, optionally for one tool only."""
        if tool is None:
            return len(self.calls)
        return sum(1 for call in self.calls if call.tool == tool)
