"""
DAGSuggester: ranks the next tool or capability to try.

Three signals are blended with configured weights: the confidence of graph
edges leaving the tools already used, the SHGAT success probability, and
embedding similarity to the intent. The suggester also accepts agent hints
and moves learned edges in and out of the process as plain records.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import jsonschema
import numpy as np

from toolweave.application.graph_engine import GraphRAGEngine
from toolweave.domain.interfaces import EmbeddingModelInterface, VectorSearchInterface
from toolweave.domain.models import EdgeSource, EdgeType, GraphEdge
from toolweave.learning.shgat import SHGAT, sigmoid
from toolweave.learning.thresholds import AdaptiveThresholdManager, ConfidenceBand
from toolweave.schemas import validate_pattern

logger = logging.getLogger(__name__)

DEFAULT_HINT_CONFIDENCE = 0.6


@dataclass(frozen=True)
class SuggesterWeights:
    graph: float = 0.4
    learned: float = 0.4
    similarity: float = 0.2

    def __post_init__(self) -> None:
        if min(self.graph, self.learned, self.similarity) < 0:
            raise ValueError("suggester weights must be >= 0")


@dataclass(frozen=True)
class Suggestion:
    """One ranked candidate with the signals that produced its score."""

    candidate_id: str
    score: float
    graph_score: float = 0.0
    learned_score: float = 0.0
    similarity_score: float = 0.0
    sources: tuple[str, ...] = ()


class PatternStrategy(str, Enum):
    MERGE = "merge"  # Average weights and sum counts with an existing edge
    REPLACE = "replace"  # Overwrite any existing edge


class DAGSuggester:
    """Blends graph, learned and similarity signals into a ranking."""

    def __init__(
        self,
        graph: GraphRAGEngine,
        model: SHGAT | None = None,
        vector_search: VectorSearchInterface | None = None,
        embedding_model: EmbeddingModelInterface | None = None,
        thresholds: AdaptiveThresholdManager | None = None,
        weights: SuggesterWeights | None = None,
        hint_confidence: float = DEFAULT_HINT_CONFIDENCE,
    ) -> None:
        self.graph = graph
        self.model = model
        self.vector_search = vector_search
        self.embedding_model = embedding_model
        self.thresholds = thresholds
        self.weights = weights or SuggesterWeights()
        self.hint_confidence = hint_confidence

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def suggest_next(
        self,
        intent_embedding: Sequence[float] | np.ndarray,
        context_tools: Sequence[str],
        k: int = 5,
    ) -> list[Suggestion]:
        """Top-k next steps, score descending, ties by id.

        Tools already in the context are never suggested.
        """
        if k <= 0:
            return []
        excluded = set(context_tools)

        graph_scores: dict[str, float] = {}
        for tool in context_tools:
            for edge in self.graph.store.out_edges(tool):
                if edge.target in excluded:
                    continue
                graph_scores[edge.target] = max(
                    graph_scores.get(edge.target, 0.0), edge.weight
                )

        similarity_scores: dict[str, float] = {}
        if self.vector_search is not None:
            for candidate_id, similarity in self.vector_search.search(
                np.asarray(intent_embedding, dtype=np.float64), k * 2
            ):
                if candidate_id not in excluded:
                    similarity_scores[candidate_id] = float(np.clip(similarity, 0.0, 1.0))

        learned_scores: dict[str, float] = {}
        if self.model is not None:
            pool = set(graph_scores) | set(similarity_scores) | set(self.model.node_ids)
            pool -= excluded
            for candidate_id, logit in self.model.score(
                intent_embedding, list(context_tools), pool
            ):
                learned_scores[candidate_id] = sigmoid(logit)

        suggestions = []
        for candidate_id in set(graph_scores) | set(similarity_scores) | set(learned_scores):
            graph_score = graph_scores.get(candidate_id, 0.0)
            learned_score = learned_scores.get(candidate_id, 0.0)
            similarity_score = similarity_scores.get(candidate_id, 0.0)
            sources = tuple(
                name
                for name, scores in (
                    ("graph", graph_scores),
                    ("learned", learned_scores),
                    ("similarity", similarity_scores),
                )
                if candidate_id in scores
            )
            suggestions.append(
                Suggestion(
                    candidate_id=candidate_id,
                    score=self.weights.graph * graph_score
                    + self.weights.learned * learned_score
                    + self.weights.similarity * similarity_score,
                    graph_score=graph_score,
                    learned_score=learned_score,
                    similarity_score=similarity_score,
                    sources=sources,
                )
            )

        suggestions.sort(key=lambda s: (-s.score, s.candidate_id))
        return suggestions[:k]

    def suggest_for_intent(
        self, intent: str, context_tools: Sequence[str], k: int = 5
    ) -> list[Suggestion]:
        """suggest_next for a natural-language intent."""
        if self.embedding_model is None:
            raise ValueError("suggest_for_intent requires an embedding model")
        return self.suggest_next(self.embedding_model.encode(intent), context_tools, k)

    def can_speculate(self, suggestion: Suggestion) -> bool:
        """True when the suggestion clears the adaptive speculation threshold."""
        if self.thresholds is None:
            return False
        return self.thresholds.classify(suggestion.score) is ConfidenceBand.SPECULATE

    # ------------------------------------------------------------------
    # Hints and pattern transfer
    # ------------------------------------------------------------------

    def register_agent_hint(
        self, from_tool: str, to_tool: str, confidence: float | None = None
    ) -> GraphEdge:
        """Record an agent's claim that to_tool usually follows from_tool."""
        return self.graph.add_edge(
            from_tool,
            to_tool,
            self.hint_confidence if confidence is None else confidence,
            count=1,
            edge_source=EdgeSource.HINT,
            edge_type=EdgeType.SEQUENCE,
        )

    def export_learned_patterns(self) -> list[dict[str, Any]]:
        """Every learned edge as a portable record, typed by ``edge_type``."""
        return [
            {
                "from": edge.source,
                "to": edge.target,
                "weight": edge.weight,
                "count": edge.observed_count,
                "source": edge.edge_source.value,
                "edge_type": edge.edge_type.value,
            }
            for edge in self.graph.get_edges()
        ]

    def import_learned_patterns(
        self,
        patterns: Iterable[dict[str, Any]],
        strategy: PatternStrategy | str = PatternStrategy.MERGE,
    ) -> int:
        """Load pattern records into the graph.

        With MERGE, a record matching an existing edge averages the two
        weights, sums the counts and marks the edge ``merged``. Otherwise the
        record is written as given. Invalid records are logged and skipped.

        Returns:
            Number of records imported
        """
        strategy = PatternStrategy(strategy)
        imported = 0
        for position, pattern in enumerate(patterns):
            try:
                validate_pattern(pattern)
            except jsonschema.ValidationError as exc:
                logger.warning("Skipping invalid pattern #%d: %s", position, exc.message)
                continue

            source, target = pattern["from"], pattern["to"]
            weight = float(pattern["weight"])
            count = int(pattern.get("count", 1))
            edge_type = EdgeType(pattern.get("edge_type", EdgeType.SEQUENCE.value))
            existing = self.graph.get_edge(source, target)

            if strategy is PatternStrategy.MERGE and existing is not None:
                edge = GraphEdge(
                    source=source,
                    target=target,
                    weight=(existing.weight + weight) / 2.0,
                    observed_count=existing.observed_count + count,
                    edge_type=existing.edge_type,
                    edge_source=EdgeSource.MERGED,
                )
            else:
                edge = GraphEdge(
                    source=source,
                    target=target,
                    weight=weight,
                    observed_count=count,
                    edge_type=edge_type,
                    edge_source=EdgeSource(pattern.get("source", EdgeSource.IMPORTED.value)),
                )
            self.graph.write_edge(edge)
            imported += 1

        logger.info("Imported %d learned pattern(s) (%s)", imported, strategy.value)
        return imported
