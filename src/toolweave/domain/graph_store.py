"""
In-memory directed graph of tools and capabilities.

Nodes and edges live in flat dictionaries keyed by id (an arena); adjacency
is kept as id sets so no record holds a reference to another. Every mutation
takes the store's lock, and edges are replaced as whole frozen records, so a
concurrent reader sees either the old or the new edge, never a mix.
"""

import threading
from collections.abc import Iterable
from dataclasses import replace

from toolweave.domain.models import GraphEdge, GraphNode, NodeKind


class GraphStore:
    """Single source of truth for graph topology during a process lifetime."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[tuple[str, str], GraphEdge] = {}
        self._out: dict[str, set[str]] = {}
        self._in: dict[str, set[str]] = {}

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_node(self, node_id: str, kind: NodeKind = NodeKind.TOOL) -> GraphNode:
        """Add a node if absent. A capability kind overrides an existing tool kind."""
        with self._lock:
            existing = self._nodes.get(node_id)
            if existing is None:
                existing = GraphNode(id=node_id, kind=kind)
                self._out[node_id] = set()
                self._in[node_id] = set()
            elif kind is NodeKind.CAPABILITY and existing.kind is not kind:
                existing = replace(existing, kind=kind)
            self._nodes[node_id] = existing
            return existing

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def node_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._nodes)

    def nodes(self) -> list[GraphNode]:
        with self._lock:
            return [self._nodes[node_id] for node_id in sorted(self._nodes)]

    def set_pagerank(self, scores: dict[str, float]) -> None:
        """Store PageRank scores and refresh degrees on every node."""
        with self._lock:
            for node_id, node in self._nodes.items():
                self._nodes[node_id] = replace(
                    node,
                    pagerank=scores.get(node_id, 0.0),
                    degree=len(self._out[node_id]) + len(self._in[node_id]),
                )

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def put_edge(self, edge: GraphEdge) -> GraphEdge | None:
        """Insert or replace an edge; returns the previous record, if any."""
        with self._lock:
            self.add_node(edge.source)
            self.add_node(edge.target)
            previous = self._edges.get(edge.key)
            self._edges[edge.key] = edge
            self._out[edge.source].add(edge.target)
            self._in[edge.target].add(edge.source)
            return previous

    def remove_edge(self, source: str, target: str) -> GraphEdge | None:
        with self._lock:
            edge = self._edges.pop((source, target), None)
            if edge is not None:
                self._out[source].discard(target)
                self._in[target].discard(source)
            return edge

    def get_edge(self, source: str, target: str) -> GraphEdge | None:
        return self._edges.get((source, target))

    def edges(self) -> list[GraphEdge]:
        with self._lock:
            return [self._edges[key] for key in sorted(self._edges)]

    def out_edges(self, node_id: str) -> list[GraphEdge]:
        with self._lock:
            return [
                self._edges[(node_id, target)]
                for target in sorted(self._out.get(node_id, ()))
            ]

    def in_edges(self, node_id: str) -> list[GraphEdge]:
        with self._lock:
            return [
                self._edges[(source, node_id)]
                for source in sorted(self._in.get(node_id, ()))
            ]

    def successors(self, node_id: str) -> list[str]:
        with self._lock:
            return sorted(self._out.get(node_id, ()))

    def predecessors(self, node_id: str) -> list[str]:
        with self._lock:
            return sorted(self._in.get(node_id, ()))

    def neighbors(self, node_id: str) -> list[str]:
        """Undirected neighbourhood."""
        with self._lock:
            return sorted(self._out.get(node_id, set()) | self._in.get(node_id, set()))

    # ------------------------------------------------------------------
    # Whole-graph
    # ------------------------------------------------------------------

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    @classmethod
    def from_records(
        cls,
        edges: Iterable[GraphEdge],
        capability_ids: Iterable[str] = (),
    ) -> "GraphStore":
        """Build a fresh store from persisted records."""
        store = cls()
        for capability_id in capability_ids:
            store.add_node(capability_id, NodeKind.CAPABILITY)
        for edge in edges:
            store.put_edge(edge)
        return store
