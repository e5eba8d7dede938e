"""
Adaptive confidence thresholds.

Two thresholds split recommendation confidence into three bands: at or above
the suggestion threshold a step may be executed speculatively, at or above the
explicit threshold it is only suggested, below it the client must ask for it
explicitly. Each recorded outcome nudges both thresholds toward the value
that best separates accepted from rejected recommendations in a sliding
window; a single step never moves a threshold by more than the learning rate.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum

from toolweave.domain.interfaces import DbClientInterface
from toolweave.domain.models import Thresholds

logger = logging.getLogger(__name__)

CONTEXT_KEYS = ("workflow_type", "domain", "complexity")


class ConfidenceBand(str, Enum):
    SPECULATE = "speculate"
    SUGGEST = "suggest"
    EXPLICIT = "explicit"


class OutcomeMode(str, Enum):
    """How the recommendation was used when its outcome was observed."""

    SPECULATIVE = "speculative"
    SUGGESTION = "suggestion"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class ThresholdConfig:
    """Configuration for AdaptiveThresholdManager."""

    initial_suggestion_threshold: float = 0.70
    initial_explicit_threshold: float = 0.50
    learning_rate: float = 0.05
    min_threshold: float = 0.40
    max_threshold: float = 0.90
    window_size: int = 50
    min_samples: int = 1  # Outcomes needed before thresholds start moving

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_threshold <= self.max_threshold <= 1.0:
            raise ValueError("require 0 <= min_threshold <= max_threshold <= 1")
        for name in ("initial_suggestion_threshold", "initial_explicit_threshold"):
            value = getattr(self, name)
            if not self.min_threshold <= value <= self.max_threshold:
                raise ValueError(f"{name}={value} outside [min_threshold, max_threshold]")
        if not 0.0 < self.learning_rate <= 1.0:
            raise ValueError("learning_rate must be in (0, 1]")
        if self.window_size <= 0:
            raise ValueError("window_size must be > 0")


@dataclass(frozen=True)
class _Outcome:
    confidence: float
    accepted: bool
    mode: OutcomeMode


def context_hash(context: dict[str, str] | None = None) -> str:
    """Stable key for per-context thresholds, e.g. 'workflow_type:default|...'."""
    context = context or {}
    return "|".join(f"{key}:{context.get(key, 'default')}" for key in CONTEXT_KEYS)


class AdaptiveThresholdManager:
    """Learns suggestion and explicit thresholds from accept/reject outcomes."""

    def __init__(self, config: ThresholdConfig | None = None) -> None:
        self.config = config or ThresholdConfig()
        self._window: deque[_Outcome] = deque(maxlen=self.config.window_size)
        self._suggestion = self.config.initial_suggestion_threshold
        self._explicit = self.config.initial_explicit_threshold
        self._total = 0
        self._accepted = 0
        self._by_mode: dict[OutcomeMode, list[int]] = {m: [0, 0] for m in OutcomeMode}

    def get_thresholds(self) -> Thresholds:
        return Thresholds(
            suggestion_threshold=self._suggestion,
            explicit_threshold=self._explicit,
        )

    def classify(self, confidence: float) -> ConfidenceBand:
        if confidence >= self._suggestion:
            return ConfidenceBand.SPECULATE
        if confidence >= self._explicit:
            return ConfidenceBand.SUGGEST
        return ConfidenceBand.EXPLICIT

    def record_outcome(
        self,
        confidence: float,
        accepted: bool,
        mode: OutcomeMode = OutcomeMode.SUGGESTION,
    ) -> Thresholds:
        """Record whether a recommendation at ``confidence`` was accepted.

        Returns:
            Thresholds after the update
        """
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {confidence}")
        self._window.append(_Outcome(confidence, accepted, mode))
        self._total += 1
        self._accepted += int(accepted)
        self._by_mode[mode][0] += 1
        self._by_mode[mode][1] += int(accepted)

        if len(self._window) >= self.config.min_samples:
            lr = self.config.learning_rate
            suggestion_target = self._target(self._suggestion, false_positive_cost=2.0)
            explicit_target = self._target(self._explicit, false_negative_cost=2.0)
            self._suggestion = self._clamp(
                self._suggestion + lr * (suggestion_target - self._suggestion)
            )
            self._explicit = self._clamp(
                self._explicit + lr * (explicit_target - self._explicit)
            )
        return self.get_thresholds()

    def _target(
        self,
        current: float,
        false_positive_cost: float = 1.0,
        false_negative_cost: float = 1.0,
    ) -> float:
        """Threshold with the lowest weighted misclassification cost.

        A recommendation at or above the threshold counts as predicted
        accepted. Ties go to the candidate nearest the current value.
        """
        candidates = {self.config.min_threshold, self.config.max_threshold}
        candidates.update(
            self._clamp(o.confidence) for o in self._window
        )

        def cost(threshold: float) -> float:
            total = 0.0
            for outcome in self._window:
                predicted = outcome.confidence >= threshold
                if predicted and not outcome.accepted:
                    total += false_positive_cost
                elif not predicted and outcome.accepted:
                    total += false_negative_cost
            return total

        return min(sorted(candidates), key=lambda t: (cost(t), abs(t - current), t))

    def _clamp(self, value: float) -> float:
        return min(self.config.max_threshold, max(self.config.min_threshold, value))

    def get_metrics(self) -> dict[str, float | int]:
        speculative_total, speculative_hits = self._by_mode[OutcomeMode.SPECULATIVE]
        return {
            "suggestion_threshold": self._suggestion,
            "explicit_threshold": self._explicit,
            "total_outcomes": self._total,
            "accepted": self._accepted,
            "acceptance_rate": self._accepted / self._total if self._total else 0.0,
            "window_size": len(self._window),
            "speculative_executions": speculative_total,
            "speculative_hits": speculative_hits,
            "speculative_hit_rate": (
                speculative_hits / speculative_total if speculative_total else 0.0
            ),
        }

    def reset(self) -> None:
        self._window.clear()
        self._suggestion = self.config.initial_suggestion_threshold
        self._explicit = self.config.initial_explicit_threshold
        self._total = 0
        self._accepted = 0
        self._by_mode = {m: [0, 0] for m in OutcomeMode}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(
        self, db: DbClientInterface, context: dict[str, str] | None = None
    ) -> str:
        key = context_hash(context)
        await db.save_thresholds(key, self.get_thresholds())
        return key

    async def load(
        self, db: DbClientInterface, context: dict[str, str] | None = None
    ) -> bool:
        """Restore thresholds for a context; False if none were stored."""
        stored = await db.load_thresholds(context_hash(context))
        if stored is None:
            return False
        self._suggestion = self._clamp(stored.suggestion_threshold)
        self._explicit = self._clamp(stored.explicit_threshold)
        logger.debug("Loaded thresholds for %s: %s", context_hash(context), stored)
        return True
