"""
ControlledExecutor: runs a workflow DAG layer by layer.

Layers run strictly in order; tasks inside a layer run concurrently, at most
``max_concurrency`` tool calls at a time. A failing task only takes down the
tasks that depend on it. Two kinds of checkpoint suspend work until someone
decides:

- permission escalation (``perm-esc-<task_id>``): a tool call was denied by
  the sandbox; only that task waits, its siblings keep running.
- layer approval (``layer-<n>``): human-in-the-loop review after a layer;
  rejection aborts the run.

Each call to ``start`` creates an independent run with its own state and
RunHandle. Decisions and aborts go through the handle and must be issued
from the event loop that runs the workflow.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

import numpy as np

from toolweave.application.event_dispatcher import EventDispatcher
from toolweave.application.speculation import Speculator
from toolweave.domain.dag import compute_dag_ref, compute_layers
from toolweave.domain.events import EventType
from toolweave.domain.exceptions import (
    DependencyFailed,
    PermissionDenied,
    TaskTimeout,
    ToolExecutionError,
    UnknownDecision,
)
from toolweave.domain.hil import (
    ApprovalMode,
    build_checkpoint_summary,
    should_require_approval,
)
from toolweave.domain.interfaces import (
    ApproverInterface,
    DbClientInterface,
    ToolExecutorInterface,
)
from toolweave.domain.models import (
    Capability,
    Decision,
    ExecutionTrace,
    FailureReason,
    PermissionEscalationRequest,
    PermissionSet,
    RunResult,
    RunStatus,
    TaskResult,
    TaskStatus,
    WorkflowDAG,
    WorkflowState,
    WorkflowTask,
)
from toolweave.domain.permissions import suggest_escalation

logger = logging.getLogger(__name__)

CompletionHook = Callable[[ExecutionTrace, np.ndarray | None], Awaitable[Any]]


@dataclass(frozen=True)
class HILConfig:
    """Human-in-the-loop layer checkpoints."""

    enabled: bool = False
    approval_required: ApprovalMode = ApprovalMode.NEVER


@dataclass(frozen=True)
class ExecutorConfig:
    """Configuration for ControlledExecutor."""

    max_concurrency: int = 5
    task_timeout: float = 30.0  # seconds per tool call
    max_retries: int = 2  # extra attempts for idempotent tasks
    retry_backoff: float = 0.0  # seconds, doubled after each retry
    hil: HILConfig = field(default_factory=HILConfig)
    decision_timeout: float | None = None  # None waits for the caller indefinitely
    speculation: bool = False
    speculation_k: int = 3

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.task_timeout <= 0:
            raise ValueError("task_timeout must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunHandle:
    """Caller-facing handle of one workflow run."""

    def __init__(
        self,
        workflow_id: str,
        dag: WorkflowDAG,
        layers: tuple[tuple[WorkflowTask, ...], ...],
        max_concurrency: int,
        intent_embedding: np.ndarray | None = None,
    ) -> None:
        self.workflow_id = workflow_id
        self.dag = dag
        self.layers = layers
        self.intent_embedding = intent_embedding
        self.state = WorkflowState(workflow_id=workflow_id)
        self.status = RunStatus.PLANNED
        self.abort_reason: str | None = None
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._decisions: dict[str, asyncio.Future[Decision]] = {}
        self._decision_payloads: dict[str, dict[str, Any]] = {}
        self._inflight: set[asyncio.Task[Any]] = set()
        self._task: asyncio.Task[RunResult] | None = None

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    def pending_decisions(self) -> dict[str, dict[str, Any]]:
        """Open checkpoints and the payload sent with their decision_required event."""
        return {
            checkpoint_id: self._decision_payloads[checkpoint_id]
            for checkpoint_id, future in self._decisions.items()
            if not future.done()
        }

    def approve(self, checkpoint_id: str, feedback: str = "") -> None:
        self._resolve(Decision(checkpoint_id, approved=True, feedback=feedback))

    def reject(self, checkpoint_id: str, feedback: str = "") -> None:
        self._resolve(Decision(checkpoint_id, approved=False, feedback=feedback))

    def _resolve(self, decision: Decision) -> None:
        future = self._decisions.get(decision.checkpoint_id)
        if future is None or future.done():
            raise UnknownDecision(decision.checkpoint_id)
        future.set_result(decision)

    def abort(self, reason: str = "aborted by caller") -> None:
        """Stop the run: cancel in-flight calls and reject open checkpoints."""
        if self.aborted or self.status in (RunStatus.COMPLETED, RunStatus.ABORTED):
            return
        self.abort_reason = reason
        logger.info("Aborting workflow %s: %s", self.workflow_id, reason)
        for checkpoint_id, future in self._decisions.items():
            if not future.done():
                future.set_result(Decision(checkpoint_id, approved=False, feedback=reason))
        for task in list(self._inflight):
            task.cancel()

    async def result(self) -> RunResult:
        """Wait for the run to finish."""
        if self._task is None:
            raise RuntimeError(f"Workflow {self.workflow_id} was never started")
        return await self._task


class ControlledExecutor:
    """Layered DAG execution with retries, escalation and approval checkpoints."""

    def __init__(
        self,
        tool_executor: ToolExecutorInterface,
        dispatcher: EventDispatcher | None = None,
        config: ExecutorConfig | None = None,
        db: DbClientInterface | None = None,
        approver: ApproverInterface | None = None,
        speculator: Speculator | None = None,
        on_complete: CompletionHook | None = None,
    ) -> None:
        """
        Args:
            tool_executor: Runs individual tool calls
            dispatcher: Receives every run event
            config: Concurrency, timeout, retry and checkpoint settings
            db: Source of capability metadata; receives permission upgrades
            approver: Answers checkpoints automatically; callers may also
                answer through the RunHandle, whichever comes first wins
            speculator: Prefetches next-layer suggestions when speculation is on
            on_complete: Awaited with the trace of every finished run
        """
        self.tools = tool_executor
        self.dispatcher = dispatcher or EventDispatcher()
        self.config = config or ExecutorConfig()
        self.db = db
        self.approver = approver
        self.speculator = speculator
        self.on_complete = on_complete
        # Active runs only; a handle leaves once its run has finished
        self.runs: dict[str, RunHandle] = {}

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(
        self,
        dag: WorkflowDAG,
        workflow_id: str | None = None,
        intent_embedding: np.ndarray | None = None,
    ) -> RunHandle:
        """Validate the DAG and start running it in the current event loop.

        Raises:
            InvalidDAG / CycleDetected: If the DAG cannot be layered
        """
        layers = compute_layers(dag)
        handle = RunHandle(
            workflow_id=workflow_id or str(uuid.uuid4()),
            dag=dag,
            layers=layers,
            max_concurrency=self.config.max_concurrency,
            intent_embedding=intent_embedding,
        )
        self.runs[handle.workflow_id] = handle
        handle._task = asyncio.create_task(self._run(handle))
        return handle

    async def execute(
        self,
        dag: WorkflowDAG,
        workflow_id: str | None = None,
        intent_embedding: np.ndarray | None = None,
    ) -> RunResult:
        """Run a DAG to completion."""
        return await self.start(dag, workflow_id, intent_embedding).result()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _emit(self, handle: RunHandle, event_type: EventType, **payload: Any) -> None:
        self.dispatcher.emit(event_type, payload, workflow_id=handle.workflow_id)

    async def _run(self, handle: RunHandle) -> RunResult:
        try:
            return await self._drive(handle)
        finally:
            if self.runs.get(handle.workflow_id) is handle:
                del self.runs[handle.workflow_id]

    async def _drive(self, handle: RunHandle) -> RunResult:
        started_at = _now()
        started = time.perf_counter()
        dag_ref = compute_dag_ref(handle.dag)
        handle.status = RunStatus.RUNNING
        self._emit(
            handle,
            EventType.WORKFLOW_START,
            dag_ref=dag_ref,
            task_count=len(handle.dag.tasks),
            layer_count=len(handle.layers),
        )

        for layer_index, layer in enumerate(handle.layers):
            if handle.aborted:
                break
            handle.state.current_layer = layer_index
            self._emit(
                handle,
                EventType.LAYER_START,
                layer_index=layer_index,
                task_ids=[task.id for task in layer],
            )
            await self._speculate(handle, layer_index)

            tasks = [
                asyncio.create_task(self._execute_task(handle, task, layer_index))
                for task in layer
            ]
            handle._inflight.update(tasks)
            try:
                await asyncio.gather(*tasks, return_exceptions=True)
            finally:
                handle._inflight.difference_update(tasks)

            self._emit(
                handle,
                EventType.STATE_UPDATED,
                layer_index=layer_index,
                statuses={t.id: handle.state.status_of(t.id).value for t in layer},
            )

            if not handle.aborted and should_require_approval(
                self.config.hil.enabled, self.config.hil.approval_required, layer
            ):
                await self._layer_checkpoint(handle, layer_index)

        if handle.aborted:
            self._skip_remaining(handle)
            handle.status = RunStatus.ABORTED
        else:
            handle.status = RunStatus.COMPLETED
        if self.speculator is not None:
            self.speculator.discard(handle.workflow_id)

        duration_ms = (time.perf_counter() - started) * 1000
        results = handle.state.ordered_results()
        trace = ExecutionTrace(
            workflow_id=handle.workflow_id,
            dag_ref=dag_ref,
            intent=handle.dag.intent,
            status=handle.status,
            task_results=results,
            started_at=started_at,
            duration_ms=duration_ms,
            decisions=tuple(handle.state.decisions),
            dependencies={t.id: tuple(sorted(t.depends_on)) for t in handle.dag.tasks},
            capabilities={
                t.id: t.capability_id for t in handle.dag.tasks if t.capability_id
            },
        )
        counts = {
            status.value: sum(1 for r in results if r.status is status)
            for status in (TaskStatus.SUCCESS, TaskStatus.ERROR, TaskStatus.SKIPPED)
        }
        self._emit(
            handle,
            EventType.WORKFLOW_ABORTED if handle.aborted else EventType.WORKFLOW_COMPLETE,
            status=handle.status.value,
            duration_ms=duration_ms,
            reason=handle.abort_reason,
            **counts,
        )

        if self.on_complete is not None:
            try:
                await self.on_complete(trace, handle.intent_embedding)
            except Exception:
                logger.exception("Post-execution hook failed for %s", handle.workflow_id)
        self._emit(
            handle,
            EventType.WORKFLOW_EXECUTED,
            status=handle.status.value,
            dag_ref=dag_ref,
            task_count=len(results),
            duration_ms=duration_ms,
        )
        return RunResult(
            workflow_id=handle.workflow_id,
            status=handle.status,
            results=results,
            trace=trace,
            abort_reason=handle.abort_reason,
        )

    def _skip_remaining(self, handle: RunHandle) -> None:
        for task in handle.dag.tasks:
            if not handle.state.status_of(task.id).is_terminal:
                self._record(
                    handle,
                    task,
                    TaskStatus.SKIPPED,
                    reason=FailureReason.ABORTED,
                    error=handle.abort_reason,
                )

    async def _speculate(self, handle: RunHandle, layer_index: int) -> None:
        if (
            not self.config.speculation
            or self.speculator is None
            or handle.intent_embedding is None
        ):
            return
        layer = handle.layers[layer_index]
        await self.speculator.resolve(
            handle.workflow_id, layer_index, [task.tool for task in layer]
        )
        if layer_index + 1 < len(handle.layers):
            context = [
                r.tool for r in handle.state.ordered_results() if r.status is TaskStatus.SUCCESS
            ] + [task.tool for task in layer]
            self.speculator.prefetch(
                handle.workflow_id, layer_index + 1, handle.intent_embedding, context
            )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _record(
        self,
        handle: RunHandle,
        task: WorkflowTask,
        status: TaskStatus,
        *,
        output: Any = None,
        error: str | None = None,
        reason: FailureReason | None = None,
        attempts: int = 0,
        started_at: str | None = None,
        elapsed_ms: float = 0.0,
        layer_index: int | None = None,
    ) -> TaskResult:
        result = TaskResult(
            task_id=task.id,
            tool=task.tool,
            status=status,
            output=output,
            error=error,
            reason=reason,
            attempts=attempts,
            execution_time_ms=elapsed_ms,
            layer_index=handle.state.current_layer if layer_index is None else layer_index,
            started_at=started_at,
            finished_at=_now(),
        )
        handle.state.record(result)

        payload: dict[str, Any] = {"task_id": task.id, "tool": task.tool}
        if status is TaskStatus.SUCCESS:
            self._emit(
                handle,
                EventType.TASK_COMPLETE,
                execution_time_ms=elapsed_ms,
                attempts=attempts,
                **payload,
            )
        elif status is TaskStatus.ERROR:
            self._emit(
                handle,
                EventType.TASK_ERROR,
                reason=reason.value if reason else None,
                error=error,
                attempts=attempts,
                **payload,
            )
        else:
            self._emit(
                handle,
                EventType.TASK_SKIPPED,
                reason=reason.value if reason else None,
                **payload,
            )
        return result

    async def _capability(self, task: WorkflowTask) -> Capability | None:
        if self.db is None or task.capability_id is None:
            return None
        try:
            return await self.db.get_capability(task.capability_id)
        except Exception as exc:
            logger.warning(
                "Capability lookup for %s failed, using task settings: %s",
                task.capability_id,
                exc,
            )
            return None

    async def _execute_task(
        self, handle: RunHandle, task: WorkflowTask, layer_index: int
    ) -> None:
        failed = handle.state.failed_or_skipped(task.depends_on)
        if failed:
            skip = DependencyFailed(task.id, frozenset(failed))
            self._record(
                handle,
                task,
                TaskStatus.SKIPPED,
                error=str(skip),
                reason=FailureReason.DEPENDENCY_FAILED,
                layer_index=layer_index,
            )
            return

        started_at = _now()
        started = time.perf_counter()
        attempts = 0
        try:
            capability = await self._capability(task)
            permission_set = (
                capability.permission_set if capability else task.permission_set
            )
            idempotent = task.idempotent and (capability.idempotent if capability else True)
            escalated = False
            backoff = self.config.retry_backoff

            handle.state.mark_running(task.id)
            self._emit(
                handle,
                EventType.TASK_START,
                task_id=task.id,
                tool=task.tool,
                layer_index=layer_index,
            )

            while True:
                attempts += 1
                try:
                    async with handle._semaphore:
                        output = await asyncio.wait_for(
                            self.tools.execute(task.tool, dict(task.args), permission_set),
                            timeout=self.config.task_timeout,
                        )
                except TimeoutError:
                    error: Exception = TaskTimeout(task.id, self.config.task_timeout)
                    reason = FailureReason.TIMEOUT
                    retryable = True
                except PermissionDenied as denied:
                    if escalated:
                        self._fail(
                            handle,
                            task,
                            denied,
                            FailureReason.PERMISSION_DENIED,
                            attempts,
                            started_at,
                            started,
                            layer_index,
                        )
                        return
                    request = suggest_escalation(
                        denied, permission_set, task.id, task.capability_id or task.tool
                    )
                    if request is None:
                        self._fail(
                            handle,
                            task,
                            denied,
                            FailureReason.PERMISSION_DENIED,
                            attempts,
                            started_at,
                            started,
                            layer_index,
                        )
                        return
                    decision = await self._escalate(handle, request)
                    if not decision.approved:
                        self._fail(
                            handle,
                            task,
                            denied,
                            FailureReason.PERMISSION_REJECTED,
                            attempts,
                            started_at,
                            started,
                            layer_index,
                            detail=decision.feedback,
                        )
                        return
                    escalated = True
                    permission_set = request.requested_set
                    await self._upgrade_capability(capability, permission_set)
                    continue
                except ToolExecutionError as exc:
                    error = exc
                    reason = FailureReason.TOOL_ERROR
                    retryable = exc.recoverable
                except Exception as exc:
                    error = ToolExecutionError(task.tool, f"{type(exc).__name__}: {exc}")
                    reason = FailureReason.TOOL_ERROR
                    retryable = True
                else:
                    self._record(
                        handle,
                        task,
                        TaskStatus.SUCCESS,
                        output=output,
                        attempts=attempts,
                        started_at=started_at,
                        elapsed_ms=(time.perf_counter() - started) * 1000,
                        layer_index=layer_index,
                    )
                    return

                if retryable and idempotent and attempts <= self.config.max_retries:
                    logger.info(
                        "Retrying %s after %s (attempt %d/%d)",
                        task.id,
                        reason.value,
                        attempts,
                        self.config.max_retries + 1,
                    )
                    if backoff > 0:
                        await asyncio.sleep(backoff)
                        backoff *= 2
                    continue
                self._fail(
                    handle, task, error, reason, attempts, started_at, started, layer_index
                )
                return
        except asyncio.CancelledError:
            if not handle.aborted:
                raise
            self._record(
                handle,
                task,
                TaskStatus.SKIPPED,
                error=handle.abort_reason,
                reason=FailureReason.ABORTED,
                attempts=attempts,
                started_at=started_at,
                elapsed_ms=(time.perf_counter() - started) * 1000,
                layer_index=layer_index,
            )

    def _fail(
        self,
        handle: RunHandle,
        task: WorkflowTask,
        error: Exception,
        reason: FailureReason,
        attempts: int,
        started_at: str,
        started: float,
        layer_index: int,
        detail: str = "",
    ) -> None:
        message = f"{error} ({detail})" if detail else str(error)
        logger.warning("Task %s failed: %s [%s]", task.id, message, reason.value)
        self._record(
            handle,
            task,
            TaskStatus.ERROR,
            error=message,
            reason=reason,
            attempts=attempts,
            started_at=started_at,
            elapsed_ms=(time.perf_counter() - started) * 1000,
            layer_index=layer_index,
        )

    async def _upgrade_capability(
        self, capability: Capability | None, permission_set: PermissionSet
    ) -> None:
        if self.db is None or capability is None:
            return
        try:
            await self.db.save_capability(
                replace(capability, permission_set=permission_set)
            )
        except Exception as exc:
            logger.error(
                "Could not persist permission upgrade of %s: %s", capability.id, exc
            )
            return
        logger.info("Capability %s upgraded to %s", capability.id, permission_set.value)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def _escalate(
        self, handle: RunHandle, request: PermissionEscalationRequest
    ) -> Decision:
        checkpoint_id = f"perm-esc-{request.task_id}"
        payload = {
            "checkpoint_id": checkpoint_id,
            "decision_type": "permission_escalation",
            "task_id": request.task_id,
            "capability_id": request.capability_id,
            "current_set": request.current_set.value,
            "requested_set": request.requested_set.value,
            "reason": request.reason,
            "detected_operation": request.detected_operation,
            "confidence": request.confidence,
        }

        return await self._await_decision(
            handle,
            checkpoint_id,
            payload,
            lambda approver: approver.decide_escalation(checkpoint_id, request),
        )

    async def _layer_checkpoint(self, handle: RunHandle, layer_index: int) -> None:
        checkpoint_id = f"layer-{layer_index}"
        summary = build_checkpoint_summary(handle.state, layer_index, handle.layers)
        payload = {
            "checkpoint_id": checkpoint_id,
            "decision_type": "hil",
            "layer_index": layer_index,
            "summary": summary,
        }

        decision = await self._await_decision(
            handle,
            checkpoint_id,
            payload,
            lambda approver: approver.decide_checkpoint(checkpoint_id, summary),
        )
        if not decision.approved and not handle.aborted:
            handle.abort(
                f"Checkpoint {checkpoint_id} rejected"
                + (f": {decision.feedback}" if decision.feedback else "")
            )

    async def _await_decision(
        self,
        handle: RunHandle,
        checkpoint_id: str,
        payload: dict[str, Any],
        ask: Callable[[ApproverInterface], Awaitable[Decision]],
    ) -> Decision:
        if handle.aborted:
            return Decision(checkpoint_id, approved=False, feedback=handle.abort_reason or "")

        future: asyncio.Future[Decision] = asyncio.get_running_loop().create_future()
        handle._decisions[checkpoint_id] = future
        handle._decision_payloads[checkpoint_id] = payload
        handle.status = RunStatus.AWAITING_APPROVAL
        self._emit(handle, EventType.DECISION_REQUIRED, **payload)

        approver_task = None
        if self.approver is not None:
            approver_task = asyncio.create_task(
                self._ask_approver(future, checkpoint_id, self.approver, ask)
            )

        try:
            if self.config.decision_timeout is None:
                decision = await asyncio.shield(future)
            else:
                decision = await asyncio.wait_for(
                    asyncio.shield(future), timeout=self.config.decision_timeout
                )
        except TimeoutError:
            logger.warning("Decision %s timed out; treating as rejected", checkpoint_id)
            decision = Decision(checkpoint_id, approved=False, feedback="decision timed out")
        finally:
            if approver_task is not None and not approver_task.done():
                approver_task.cancel()
            if not future.done():
                future.cancel()
            handle._decisions.pop(checkpoint_id, None)
            handle._decision_payloads.pop(checkpoint_id, None)
            if not handle._decisions and not handle.aborted:
                handle.status = RunStatus.RUNNING

        handle.state.decisions.append(decision)
        self._emit(
            handle,
            EventType.DECISION_RESOLVED,
            checkpoint_id=checkpoint_id,
            approved=decision.approved,
            feedback=decision.feedback,
        )
        return decision

    async def _ask_approver(
        self,
        future: asyncio.Future[Decision],
        checkpoint_id: str,
        approver: ApproverInterface,
        ask: Callable[[ApproverInterface], Awaitable[Decision]],
    ) -> None:
        try:
            decision = await ask(approver)
        except Exception as exc:
            logger.error("Approver failed on %s: %s", checkpoint_id, exc)
            decision = Decision(checkpoint_id, approved=False, feedback=f"approver failed: {exc}")
        if not future.done():
            future.set_result(replace(decision, checkpoint_id=checkpoint_id))
