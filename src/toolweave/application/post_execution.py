"""Post-execution learning: turns a finished run into graph and model updates.

Installed as the executor's completion hook. Every step is independent: a
failure in one is logged and the remaining steps still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

import numpy as np

from toolweave.application.graph_engine import GraphRAGEngine
from toolweave.domain.interfaces import DbClientInterface
from toolweave.domain.models import (
    EdgeSource,
    EdgeType,
    ExecutionTrace,
    FailureReason,
    TaskResult,
    TaskStatus,
    TrainingExample,
)
from toolweave.learning.coordinator import TrainingCoordinator, TrainingReport
from toolweave.learning.shgat import SHGAT

logger = logging.getLogger(__name__)

EDGE_TYPE_WEIGHTS: dict[EdgeType, float] = {
    EdgeType.DEPENDENCY: 1.0,
    EdgeType.CONTAINS: 0.8,
    EdgeType.SEQUENCE: 0.5,
}

EDGE_SOURCE_MODIFIERS: dict[EdgeSource, float] = {
    EdgeSource.OBSERVED: 1.0,
    EdgeSource.INFERRED: 0.7,
    EdgeSource.TEMPLATE: 0.5,
}

# Failures that say nothing about whether the tool was a good choice
UNINFORMATIVE_REASONS = frozenset(
    {FailureReason.DEPENDENCY_FAILED, FailureReason.ABORTED}
)


def edge_confidence(edge_type: EdgeType, edge_source: EdgeSource) -> float:
    return EDGE_TYPE_WEIGHTS[edge_type] * EDGE_SOURCE_MODIFIERS.get(edge_source, 1.0)


@dataclass(frozen=True)
class LearningConfig:
    observed_threshold: int = 3  # Observations before an edge counts as observed


@dataclass(frozen=True)
class LearningReport:
    edges_updated: int = 0
    examples: int = 0
    training: TrainingReport | None = None
    trace_saved: bool = False
    capabilities_updated: int = 0


class PostExecutionService:
    """Feeds execution traces back into the graph, the model and storage."""

    def __init__(
        self,
        graph: GraphRAGEngine,
        db: DbClientInterface,
        coordinator: TrainingCoordinator | None = None,
        model: SHGAT | None = None,
        config: LearningConfig | None = None,
    ) -> None:
        self.graph = graph
        self.db = db
        self.coordinator = coordinator
        self.model = model
        self.config = config or LearningConfig()

    async def __call__(
        self, trace: ExecutionTrace, intent_embedding: np.ndarray | None
    ) -> LearningReport:
        return await self.learn_from_trace(trace, intent_embedding)

    async def learn_from_trace(
        self, trace: ExecutionTrace, intent_embedding: np.ndarray | None = None
    ) -> LearningReport:
        edges = examples = capabilities = 0
        training = None
        saved = False

        try:
            edges = await self._update_edges(trace)
        except Exception:
            logger.exception("Edge learning failed for %s", trace.workflow_id)

        try:
            training_examples = self._training_examples(trace, intent_embedding)
            examples = len(training_examples)
            if training_examples and self.coordinator and self.model:
                training = self.coordinator.reinforce(
                    self.model, training_examples, owner=f"run:{trace.workflow_id}"
                )
        except Exception:
            logger.exception("Reinforcement failed for %s", trace.workflow_id)

        try:
            capabilities = await self._update_capabilities(trace)
        except Exception:
            logger.exception("Capability update failed for %s", trace.workflow_id)

        try:
            await self.db.save_trace(trace)
            saved = True
        except Exception:
            logger.exception("Saving trace failed for %s", trace.workflow_id)

        report = LearningReport(
            edges_updated=edges,
            examples=examples,
            training=training,
            trace_saved=saved,
            capabilities_updated=capabilities,
        )
        logger.debug("Learned from %s: %s", trace.workflow_id, report)
        return report

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _update_edges(self, trace: ExecutionTrace) -> int:
        """Dependency edges between successful tools; contains edges for capabilities."""
        by_id = {result.task_id: result for result in trace.task_results}
        updated = 0
        for result in trace.task_results:
            if result.status is not TaskStatus.SUCCESS:
                continue
            for dep_id in trace.dependencies.get(result.task_id, ()):
                dep = by_id.get(dep_id)
                if dep is None or dep.status is not TaskStatus.SUCCESS:
                    continue
                if dep.tool == result.tool:
                    continue
                await self._observe(dep.tool, result.tool, EdgeType.DEPENDENCY)
                updated += 1

            capability_id = trace.capabilities.get(result.task_id)
            if capability_id and capability_id != result.tool:
                await self._observe(capability_id, result.tool, EdgeType.CONTAINS)
                updated += 1
        return updated

    async def _observe(self, source: str, target: str, edge_type: EdgeType) -> None:
        existing = self.graph.get_edge(source, target)
        count = (existing.observed_count if existing else 0) + 1
        edge_source = (
            EdgeSource.OBSERVED
            if count >= self.config.observed_threshold
            else EdgeSource.INFERRED
        )
        await self.graph.record_edge(
            source,
            target,
            edge_confidence(edge_type, edge_source),
            count=1,
            edge_source=edge_source,
            edge_type=edge_type,
        )

    def _training_examples(
        self, trace: ExecutionTrace, intent_embedding: np.ndarray | None
    ) -> list[TrainingExample]:
        if intent_embedding is None:
            return []
        intent = tuple(float(x) for x in np.asarray(intent_embedding).ravel())
        by_id = {result.task_id: result for result in trace.task_results}
        examples = []
        for result in trace.task_results:
            if not self._informative(result):
                continue
            context = tuple(
                by_id[dep].tool
                for dep in trace.dependencies.get(result.task_id, ())
                if dep in by_id
            )
            examples.append(
                TrainingExample(
                    intent_embedding=intent,
                    context_tools=context,
                    candidate_id=trace.capabilities.get(result.task_id, result.tool),
                    outcome=1.0 if result.status is TaskStatus.SUCCESS else 0.0,
                )
            )
        return examples

    @staticmethod
    def _informative(result: TaskResult) -> bool:
        if result.status is TaskStatus.SUCCESS:
            return True
        return result.status is TaskStatus.ERROR and result.reason not in UNINFORMATIVE_REASONS

    async def _update_capabilities(self, trace: ExecutionTrace) -> int:
        """Usage count and running success rate of capabilities used by the run."""
        updated = 0
        for result in trace.task_results:
            capability_id = trace.capabilities.get(result.task_id)
            if capability_id is None or not self._informative(result):
                continue
            capability = await self.db.get_capability(capability_id)
            if capability is None:
                continue
            outcome = 1.0 if result.status is TaskStatus.SUCCESS else 0.0
            uses = capability.usage_count
            refreshed = replace(
                capability,
                usage_count=uses + 1,
                success_rate=(capability.success_rate * uses + outcome) / (uses + 1),
            )
            await self.db.save_capability(refreshed)
            self.graph.upsert_capability(refreshed)
            updated += 1
        return updated
