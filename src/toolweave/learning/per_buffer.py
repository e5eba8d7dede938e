"""
Prioritized experience replay buffer.

Items are sampled without replacement with probability proportional to
priority^alpha; importance-sampling weights (N * P(i))^-beta correct the bias
and are normalised by their maximum so they never exceed 1.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

import numpy as np

T = TypeVar("T")

COLD_START_PRIORITY = 0.5
MIN_PRIORITY = 0.01
MAX_PRIORITY = 1.0


@dataclass(frozen=True)
class PERSample(Generic[T]):
    """A sampled batch; ``indices`` are buffer positions for priority updates."""

    indices: tuple[int, ...]
    items: tuple[T, ...]
    weights: tuple[float, ...]


def anneal_beta(epoch: int, total_epochs: int, beta_start: float = 0.4) -> float:
    """Linear importance-sampling exponent schedule.

    beta_start at epoch 0, exactly 1.0 at epoch total_epochs - 1. A single
    epoch run uses full correction (1.0).
    """
    if total_epochs <= 1:
        return 1.0
    progress = min(max(epoch, 0), total_epochs - 1) / (total_epochs - 1)
    return min(1.0, beta_start + (1.0 - beta_start) * progress)


def priority_from_td_error(td_error: float, epsilon: float = 0.0) -> float:
    """Priority of an item given its latest TD error."""
    return float(np.clip(abs(td_error) + epsilon, MIN_PRIORITY, MAX_PRIORITY))


class PERBuffer(Generic[T]):
    """Bounded replay buffer; the oldest item is evicted when full."""

    def __init__(
        self,
        capacity: int = 50_000,
        alpha: float = 0.6,
        epsilon: float = 0.01,
        seed: int | None = None,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if alpha < 0:
            raise ValueError("alpha must be >= 0")
        self.capacity = capacity
        self.alpha = alpha
        self.epsilon = epsilon
        self._rng = np.random.default_rng(seed)
        self._items: list[T] = []
        self._priorities: list[float] = []
        self._max_priority = COLD_START_PRIORITY

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item: T, priority: float | None = None) -> None:
        """Append an item; without a priority it gets the highest seen so far."""
        if priority is None:
            priority = self._max_priority
        priority = float(np.clip(priority, MIN_PRIORITY, MAX_PRIORITY))
        if len(self._items) >= self.capacity:
            self._items.pop(0)
            self._priorities.pop(0)
        self._items.append(item)
        self._priorities.append(priority)
        self._max_priority = max(self._max_priority, priority)

    def sample(self, batch_size: int, beta: float = 0.4) -> PERSample[T]:
        """Draw up to ``batch_size`` distinct items.

        Asking for at least the whole buffer returns every item with weight
        exactly 1.0.
        """
        n = len(self._items)
        if n == 0 or batch_size <= 0:
            return PERSample((), (), ())
        if batch_size >= n:
            return PERSample(tuple(range(n)), tuple(self._items), (1.0,) * n)

        scaled = np.asarray(self._priorities) ** self.alpha
        probabilities = scaled / scaled.sum()
        indices = self._rng.choice(n, size=batch_size, replace=False, p=probabilities)
        raw = (n * probabilities[indices]) ** (-beta)
        weights = raw / raw.max()
        return PERSample(
            indices=tuple(int(i) for i in indices),
            items=tuple(self._items[int(i)] for i in indices),
            weights=tuple(float(w) for w in weights),
        )

    def update_priorities(
        self, indices: Sequence[int], td_errors: Sequence[float]
    ) -> None:
        """Set priorities from TD errors (|td| + epsilon, clamped)."""
        for index, td_error in zip(indices, td_errors, strict=True):
            priority = priority_from_td_error(td_error, self.epsilon)
            self._priorities[index] = priority
            self._max_priority = max(self._max_priority, priority)

    def priorities(self) -> tuple[float, ...]:
        return tuple(self._priorities)

    def items(self) -> tuple[T, ...]:
        return tuple(self._items)

    def clear(self) -> None:
        self._items.clear()
        self._priorities.clear()
        self._max_priority = COLD_START_PRIORITY
