"""
Approvers for decision_required checkpoints.

ConsoleApprover asks a human on the terminal; StaticApprover answers from a
fixed policy and is meant for tests and unattended runs.
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from toolweave.domain.interfaces import ApproverInterface
from toolweave.domain.models import Decision, PermissionEscalationRequest


class ConsoleApprover(ApproverInterface):
    """
    Blocks a checkpoint until a human answers on the console.

    Prompts run in a worker thread so the event loop, and with it every
    task that is not waiting on this checkpoint, keeps running.
    """

    def __init__(self, console: Console | None = None, prompt_title: str = "APPROVAL REQUIRED"):
        """
        Args:
            console: Rich console to print to (a new one by default)
            prompt_title: Title displayed above each request
        """
        self.console = console or Console()
        self.prompt_title = prompt_title

    def _ask(self, checkpoint_id: str, body: str) -> Decision:
        self.console.print(f"\n[bold yellow]═══ {self.prompt_title} ═══[/bold yellow]")
        self.console.print(f"[dim]Checkpoint: {checkpoint_id}[/dim]\n")
        self.console.print(Panel(body))

        answer = Prompt.ask("\n[bold]Approve?[/bold]", choices=["y", "n"], console=self.console)
        if answer == "y":
            return Decision(checkpoint_id, approved=True, feedback="Human approved")
        reason = Prompt.ask("[bold]Rejection reason[/bold]", console=self.console)
        return Decision(checkpoint_id, approved=False, feedback=f"Human rejected: {reason}")

    async def decide_escalation(
        self, checkpoint_id: str, request: PermissionEscalationRequest
    ) -> Decision:
        body = (
            f"Task [bold]{request.task_id}[/bold] ({request.capability_id}) was denied.\n"
            f"Reason: {request.reason}\n"
            f"Detected operation: {request.detected_operation}\n"
            f"Escalate {request.current_set.value} -> "
            f"[bold]{request.requested_set.value}[/bold] "
            f"(confidence {request.confidence:.0%})"
        )
        return await asyncio.to_thread(self._ask, checkpoint_id, body)

    async def decide_checkpoint(self, checkpoint_id: str, summary: str) -> Decision:
        return await asyncio.to_thread(self._ask, checkpoint_id, summary)


class StaticApprover(ApproverInterface):
    """Answers every checkpoint from a fixed policy and records what it saw."""

    def __init__(
        self,
        approve_escalations: bool = True,
        approve_checkpoints: bool = True,
        feedback: str = "",
    ):
        self.approve_escalations = approve_escalations
        self.approve_checkpoints = approve_checkpoints
        self.feedback = feedback
        self.escalations: list[PermissionEscalationRequest] = []
        self.checkpoints: list[str] = []

    async def decide_escalation(
        self, checkpoint_id: str, request: PermissionEscalationRequest
    ) -> Decision:
        self.escalations.append(request)
        return Decision(checkpoint_id, self.approve_escalations, self.feedback)

    async def decide_checkpoint(self, checkpoint_id: str, summary: str) -> Decision:
        self.checkpoints.append(checkpoint_id)
        return Decision(checkpoint_id, self.approve_checkpoints, self.feedback)
