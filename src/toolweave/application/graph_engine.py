"""
GraphRAGEngine: the live tool/capability graph and its derived analytics.

Owns the process-wide GraphStore and HyperedgeCache, keeps them in step with
the database, records learned edges and serves PageRank, communities and
metrics. Graph events go out through the EventDispatcher.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from toolweave.application.event_dispatcher import EventDispatcher
from toolweave.domain import algorithms
from toolweave.domain.events import EventType
from toolweave.domain.exceptions import GraphSyncFailure, HierarchyCycleError
from toolweave.domain.graph_store import GraphStore
from toolweave.domain.hyperedges import HyperedgeCache, compute_hierarchy_levels
from toolweave.domain.interfaces import DbClientInterface
from toolweave.domain.models import (
    Capability,
    EdgeSource,
    EdgeType,
    GraphEdge,
    NodeKind,
)

logger = logging.getLogger(__name__)

METRIC_RANGES = ("hour", "day", "week", "month")
PAGERANK_TOP_N = 10


class ConfidencePolicy(str, Enum):
    """How a new observation combines with an existing edge's confidence."""

    REPLACE = "replace"  # Stored confidence becomes the latest value
    EMA = "ema"  # Exponential moving average with GraphEngineConfig.ema_alpha


@dataclass(frozen=True)
class GraphEngineConfig:
    confidence_policy: ConfidencePolicy = ConfidencePolicy.REPLACE
    ema_alpha: float = 0.3
    damping: float = algorithms.DAMPING
    strict_sync: bool = False  # Raise GraphSyncFailure instead of returning False

    def __post_init__(self) -> None:
        if not 0.0 < self.ema_alpha <= 1.0:
            raise ValueError("ema_alpha must be in (0, 1]")
        if not 0.0 < self.damping < 1.0:
            raise ValueError("damping must be in (0, 1)")


class GraphRAGEngine:
    """Live graph, synchronised from the database and updated by executions."""

    def __init__(
        self,
        db: DbClientInterface,
        dispatcher: EventDispatcher | None = None,
        config: GraphEngineConfig | None = None,
    ) -> None:
        self._db = db
        self._dispatcher = dispatcher or EventDispatcher()
        self.config = config or GraphEngineConfig()
        self._swap_lock = threading.RLock()
        self._store = GraphStore()
        self._hyperedges = HyperedgeCache()
        self._capabilities: dict[str, Capability] = {}
        self._pagerank: dict[str, float] = {}
        self._communities: dict[str, int] = {}
        self._analytics_stale = True
        self.last_sync_ms: float | None = None

    @property
    def store(self) -> GraphStore:
        return self._store

    @property
    def hyperedges(self) -> HyperedgeCache:
        return self._hyperedges

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync_from_database(self) -> bool:
        """Replace the in-memory graph with the database contents.

        Builds the new graph off to the side and swaps it in whole. On any
        database failure the previous graph stays in place.

        Returns:
            True if the graph was replaced

        Raises:
            GraphSyncFailure: Only when ``config.strict_sync`` is set
        """
        started = time.perf_counter()
        try:
            edges = await self._db.load_edges()
            capabilities = await self._db.load_capabilities()
        except Exception as exc:
            failure = GraphSyncFailure(f"Graph sync failed: {exc}", cause=exc)
            logger.error("%s; keeping previous graph", failure)
            if self.config.strict_sync:
                raise failure from exc
            return False

        store = GraphStore.from_records(edges, (cap.id for cap in capabilities))
        hyperedges = HyperedgeCache()
        hyperedges.rebuild(capabilities)

        with self._swap_lock:
            self._store = store
            self._hyperedges = hyperedges
            self._capabilities = {cap.id: cap for cap in capabilities}
            self._recompute()

        try:
            levels = compute_hierarchy_levels(capabilities)
        except HierarchyCycleError as exc:
            logger.warning("Capability hierarchy not computed: %s", exc)
            levels = {}
        mismatched = [
            cap.id for cap in capabilities if cap.id in levels and levels[cap.id] != cap.hierarchy_level
        ]
        if mismatched:
            logger.debug("Stored hierarchy levels out of date for %s", mismatched)

        self.last_sync_ms = (time.perf_counter() - started) * 1000
        self._dispatcher.emit(
            EventType.GRAPH_SYNCED,
            {
                "node_count": store.node_count,
                "edge_count": store.edge_count,
                "sync_duration_ms": self.last_sync_ms,
            },
        )
        logger.info(
            "Graph synced: %d nodes, %d edges in %.1fms",
            store.node_count,
            store.edge_count,
            self.last_sync_ms,
        )
        return True

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(
        self,
        source: str,
        target: str,
        weight: float,
        count: int = 1,
        edge_source: EdgeSource = EdgeSource.INFERRED,
        edge_type: EdgeType = EdgeType.SEQUENCE,
    ) -> GraphEdge:
        """Create or update the edge source -> target.

        An existing edge's confidence is combined per the configured policy
        (replace by default) and ``count`` is added to its observed count.
        Emits edge_created or edge_updated.
        """
        with self._swap_lock:
            store = self._store
            existing = store.get_edge(source, target)
            if existing is None:
                edge = GraphEdge(
                    source=source,
                    target=target,
                    weight=weight,
                    observed_count=count,
                    edge_type=edge_type,
                    edge_source=edge_source,
                )
            else:
                edge = GraphEdge(
                    source=source,
                    target=target,
                    weight=self._combine(existing.weight, weight),
                    observed_count=existing.observed_count + count,
                    edge_type=edge_type,
                    edge_source=edge_source,
                )
            store.put_edge(edge)
            self._analytics_stale = True

        self._emit_edge_event(existing, edge)
        return edge

    def write_edge(self, edge: GraphEdge) -> GraphEdge | None:
        """Write an edge record as is, without combining. Returns the old one.

        Emits edge_created or edge_updated like ``add_edge``.
        """
        with self._swap_lock:
            previous = self._store.put_edge(edge)
            self._analytics_stale = True

        self._emit_edge_event(previous, edge)
        return previous

    def _emit_edge_event(self, existing: GraphEdge | None, edge: GraphEdge) -> None:
        self._dispatcher.emit(
            EventType.EDGE_CREATED if existing is None else EventType.EDGE_UPDATED,
            {
                "from": edge.source,
                "to": edge.target,
                "old_confidence": existing.weight if existing is not None else None,
                "new_confidence": edge.weight,
                "observed_count": edge.observed_count,
                "edge_type": edge.edge_type.value,
                "edge_source": edge.edge_source.value,
            },
        )

    async def record_edge(
        self,
        source: str,
        target: str,
        weight: float,
        count: int = 1,
        edge_source: EdgeSource = EdgeSource.INFERRED,
        edge_type: EdgeType = EdgeType.SEQUENCE,
    ) -> GraphEdge:
        """add_edge followed by a write-through to the database."""
        edge = self.add_edge(source, target, weight, count, edge_source, edge_type)
        await self._db.save_edge(edge)
        return edge

    async def persist_all(self) -> int:
        """Write every in-memory edge to the database. Returns the count."""
        edges = self._store.edges()
        for edge in edges:
            await self._db.save_edge(edge)
        return len(edges)

    def _combine(self, old: float, new: float) -> float:
        if self.config.confidence_policy is ConfidencePolicy.EMA:
            alpha = self.config.ema_alpha
            return (1.0 - alpha) * old + alpha * new
        return new

    def get_edge(self, source: str, target: str) -> GraphEdge | None:
        return self._store.get_edge(source, target)

    def get_edges(self) -> list[GraphEdge]:
        return self._store.edges()

    def get_neighbors(self, node_id: str, direction: str = "out") -> list[str]:
        if direction == "out":
            return self._store.successors(node_id)
        if direction == "in":
            return self._store.predecessors(node_id)
        if direction == "both":
            return self._store.neighbors(node_id)
        raise ValueError(f"direction must be 'in', 'out' or 'both', got {direction!r}")

    def neighbourhood_of(self, node_id: str) -> list[str]:
        """Hyperedge co-members and graph neighbours of a node, for attention."""
        hyperedges = self._hyperedges
        found = set(self._store.neighbors(node_id))
        found |= hyperedges.members(node_id)
        for capability_id in hyperedges.containing(node_id):
            found.add(capability_id)
            found |= hyperedges.members(capability_id)
        found.discard(node_id)
        return sorted(found)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def get_capability(self, capability_id: str) -> Capability | None:
        return self._capabilities.get(capability_id)

    def capabilities(self) -> list[Capability]:
        return [self._capabilities[key] for key in sorted(self._capabilities)]

    def upsert_capability(self, capability: Capability) -> None:
        """Track a capability created or changed since the last sync."""
        with self._swap_lock:
            self._capabilities[capability.id] = capability
            self._store.add_node(capability.id, NodeKind.CAPABILITY)
            self._hyperedges.rebuild(self._capabilities.values())
            self._analytics_stale = True

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def _recompute(self) -> None:
        store = self._store
        self._pagerank = algorithms.pagerank(store, damping=self.config.damping)
        self._communities = algorithms.detect_communities(store)
        store.set_pagerank(self._pagerank)
        self._analytics_stale = False

    def _ensure_analytics(self) -> None:
        with self._swap_lock:
            if self._analytics_stale:
                self._recompute()

    def get_pagerank(self, node_id: str) -> float:
        self._ensure_analytics()
        return self._pagerank.get(node_id, 0.0)

    def get_community(self, node_id: str) -> int | None:
        self._ensure_analytics()
        return self._communities.get(node_id)

    def find_community_members(self, node_id: str) -> list[str]:
        """Other nodes in node_id's community."""
        community = self.get_community(node_id)
        if community is None:
            return []
        return sorted(
            other
            for other, label in self._communities.items()
            if label == community and other != node_id
        )

    def find_shortest_path(self, source: str, target: str) -> list[str] | None:
        return algorithms.shortest_path(self._store, source, target)

    def adamic_adar_between(self, a: str, b: str) -> float:
        return algorithms.adamic_adar(self._store, a, b)

    def get_stats(self) -> dict[str, Any]:
        self._ensure_analytics()
        store = self._store
        return {
            "node_count": store.node_count,
            "edge_count": store.edge_count,
            "community_count": len(set(self._communities.values())),
            "capability_count": len(self._capabilities),
            "hyperedges": self._hyperedges.summary(),
            "last_sync_ms": self.last_sync_ms,
        }

    def get_metrics(self, time_range: str = "day") -> dict[str, Any]:
        """Topology metrics; always reflect the current graph.

        Emits metrics_updated with the same payload.
        """
        if time_range not in METRIC_RANGES:
            raise ValueError(f"time_range must be one of {METRIC_RANGES}, got {time_range!r}")
        self._ensure_analytics()
        store = self._store
        metrics = {
            "range": time_range,
            "node_count": store.node_count,
            "edge_count": store.edge_count,
            "density": algorithms.density(store),
            "pagerank_top": [
                {"id": node_id, "score": score}
                for node_id, score in algorithms.top_ranked(self._pagerank, PAGERANK_TOP_N)
            ],
            "community_count": len(set(self._communities.values())),
            "hyperedges": self._hyperedges.summary(),
        }
        self._dispatcher.emit(EventType.METRICS_UPDATED, metrics)
        return metrics
