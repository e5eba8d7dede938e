"""
Training coordination: one owner at a time may update the recommender.

The coordinator is an explicit instance passed by reference to everything
that trains; there is no process-global lock. Per-execution reinforcement
that finds the lock taken parks its examples and returns immediately; they
are folded into the replay buffer by the next owner.
"""

import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from toolweave.domain.exceptions import IncompatibleSnapshot, TrainingConflict
from toolweave.domain.models import TrainingExample
from toolweave.learning.per_buffer import PERBuffer, anneal_beta, priority_from_td_error
from toolweave.learning.shgat import SHGAT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingReport:
    """Outcome of a reinforce or batch call."""

    trained: bool
    examples: int = 0
    deferred: int = 0
    epochs: int = 0
    mean_loss: float | None = None


class TrainingCoordinator:
    """Owner-tagged training lock plus the shared replay buffer."""

    def __init__(
        self,
        buffer: PERBuffer[TrainingExample] | None = None,
        beta_start: float = 0.4,
    ) -> None:
        self.buffer: PERBuffer[TrainingExample] = buffer or PERBuffer()
        self.beta_start = beta_start
        self._state_lock = threading.Lock()
        self._owner: str | None = None
        self._depth = 0
        self._pending: list[TrainingExample] = []
        self._pending_snapshot: tuple[dict[str, Any], int] | None = None

    # ------------------------------------------------------------------
    # Lock
    # ------------------------------------------------------------------

    def acquire(self, owner: str) -> bool:
        """Try to take the lock without waiting. Re-entrant for the holder."""
        with self._state_lock:
            if self._owner is None:
                self._owner = owner
                self._depth = 1
                return True
            if self._owner == owner:
                self._depth += 1
                return True
            return False

    def release(self, owner: str) -> None:
        """Release one level of the lock. A non-holder's release does nothing."""
        with self._state_lock:
            if self._owner != owner:
                logger.warning(
                    "Ignoring training lock release by '%s' (held by '%s')",
                    owner,
                    self._owner,
                )
                return
            self._depth -= 1
            if self._depth == 0:
                self._owner = None

    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def is_locked(self) -> bool:
        return self._owner is not None

    @contextmanager
    def held(self, owner: str) -> Iterator[None]:
        """Hold the lock for a block.

        Raises:
            TrainingConflict: If another owner holds the lock
        """
        if not self.acquire(owner):
            raise TrainingConflict(owner, self._owner)
        try:
            yield
        finally:
            self.release(owner)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _drain_pending(self, model: SHGAT) -> None:
        with self._state_lock:
            pending, self._pending = self._pending, []
            snapshot, self._pending_snapshot = self._pending_snapshot, None
        if snapshot is not None:
            params, updates_at_deferral = snapshot
            if model.update_count != updates_at_deferral:
                logger.info("Dropping deferred snapshot: model trained since it was parked")
            else:
                try:
                    model.import_params(params)
                except IncompatibleSnapshot as exc:
                    logger.warning("Ignoring deferred recommender snapshot: %s", exc)
        for example in pending:
            self.buffer.add(example)

    @property
    def has_pending_snapshot(self) -> bool:
        return self._pending_snapshot is not None

    def load_snapshot(
        self, model: SHGAT, snapshot: dict[str, Any], owner: str = "snapshot"
    ) -> bool:
        """Import recommender weights under the training lock.

        If the lock is held elsewhere the snapshot is parked and applied by
        the next owner, unless the model has been trained in the meantime.

        Returns:
            True if the weights were imported now

        Raises:
            IncompatibleSnapshot: If the snapshot does not fit the model
        """
        if not self.acquire(owner):
            logger.info("%s; deferring snapshot import", TrainingConflict(owner, self._owner))
            with self._state_lock:
                self._pending_snapshot = (snapshot, model.update_count)
            return False
        try:
            model.import_params(snapshot)
            return True
        finally:
            self.release(owner)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def reinforce(
        self, model: SHGAT, examples: Sequence[TrainingExample], owner: str
    ) -> TrainingReport:
        """Apply one update per example and remember them for replay.

        If the lock is held elsewhere the examples are deferred to the next
        batch and nothing is trained.
        """
        if not examples:
            return TrainingReport(trained=False)
        if not self.acquire(owner):
            conflict = TrainingConflict(owner, self._owner)
            logger.info("%s; deferring %d example(s)", conflict, len(examples))
            with self._state_lock:
                self._pending.extend(examples)
            return TrainingReport(trained=False, deferred=len(examples))

        try:
            self._drain_pending(model)
            losses = []
            for example in examples:
                losses.append(model.train_on_example(example))
                priority = priority_from_td_error(
                    model.td_error(example), self.buffer.epsilon
                )
                self.buffer.add(example, priority)
            return TrainingReport(
                trained=True,
                examples=len(examples),
                epochs=1,
                mean_loss=sum(losses) / len(losses),
            )
        finally:
            self.release(owner)

    def train_batch(
        self,
        model: SHGAT,
        epochs: int = 1,
        batch_size: int = 32,
        owner: str = "batch",
    ) -> TrainingReport:
        """Replay training over PER-sampled batches with annealed beta."""
        if not self.acquire(owner):
            logger.info("%s; skipping batch training", TrainingConflict(owner, self._owner))
            return TrainingReport(trained=False)

        try:
            self._drain_pending(model)
            losses: list[float] = []
            for epoch in range(epochs):
                beta = anneal_beta(epoch, epochs, self.beta_start)
                sample = self.buffer.sample(batch_size, beta)
                for example, weight in zip(sample.items, sample.weights, strict=True):
                    losses.append(model.train_on_example(example, weight=weight))
                self.buffer.update_priorities(
                    sample.indices, [model.td_error(example) for example in sample.items]
                )
                logger.debug(
                    "Epoch %d/%d: %d example(s), beta=%.3f",
                    epoch + 1,
                    epochs,
                    len(sample.items),
                    beta,
                )
            return TrainingReport(
                trained=True,
                examples=len(losses),
                epochs=epochs,
                mean_loss=sum(losses) / len(losses) if losses else None,
            )
        finally:
            self.release(owner)
