"""Speculative prefetch of next-layer suggestions.

While a layer runs, the executor may ask for a ranking of likely next steps.
The ranking is cached per (workflow, layer) and compared with the tools the
next layer actually runs; hits and misses feed the adaptive thresholds.
Nothing here affects which tasks run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import numpy as np

from toolweave.application.suggester import DAGSuggester, Suggestion
from toolweave.learning.thresholds import OutcomeMode

logger = logging.getLogger(__name__)


class Speculator:
    """Cache of prefetched rankings with hit/miss accounting."""

    def __init__(self, suggester: DAGSuggester, k: int = 3) -> None:
        self.suggester = suggester
        self.k = k
        self._pending: dict[tuple[str, int], asyncio.Task[list[Suggestion]]] = {}
        self.hits = 0
        self.misses = 0

    def prefetch(
        self,
        workflow_id: str,
        layer_index: int,
        intent_embedding: Sequence[float] | np.ndarray,
        context_tools: Sequence[str],
    ) -> None:
        """Start computing the ranking for ``layer_index`` in the background."""
        key = (workflow_id, layer_index)
        if key in self._pending:
            return
        self._pending[key] = asyncio.create_task(
            asyncio.to_thread(
                self.suggester.suggest_next,
                intent_embedding,
                list(context_tools),
                self.k,
            )
        )

    async def resolve(
        self, workflow_id: str, layer_index: int, actual_tools: Sequence[str]
    ) -> list[Suggestion]:
        """Compare a prefetched ranking with what the layer really runs.

        Returns:
            The prefetched suggestions ([] when none was made or it failed)
        """
        task = self._pending.pop((workflow_id, layer_index), None)
        if task is None:
            return []
        try:
            suggestions = await task
        except Exception as exc:
            logger.debug("Speculation for %s layer %d failed: %s", workflow_id, layer_index, exc)
            return []

        actual = set(actual_tools)
        predicted = {s.candidate_id for s in suggestions}
        if predicted & actual:
            self.hits += 1
        else:
            self.misses += 1

        thresholds = self.suggester.thresholds
        if thresholds is not None:
            for suggestion in suggestions:
                if self.suggester.can_speculate(suggestion):
                    thresholds.record_outcome(
                        float(np.clip(suggestion.score, 0.0, 1.0)),
                        suggestion.candidate_id in actual,
                        OutcomeMode.SPECULATIVE,
                    )
        return suggestions

    def discard(self, workflow_id: str) -> None:
        """Drop every pending prefetch of a run."""
        for key in [key for key in self._pending if key[0] == workflow_id]:
            self._pending.pop(key).cancel()

    def get_metrics(self) -> dict[str, float | int]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
            "pending": len(self._pending),
        }
