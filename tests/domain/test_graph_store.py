"""Tests for the in-memory GraphStore."""

from toolweave.domain.graph_store import GraphStore
from toolweave.domain.models import EdgeSource, GraphEdge, NodeKind


class TestNodes:
    """Tests for node bookkeeping."""

    def test_add_node_is_idempotent(self):
        store = GraphStore()
        store.add_node("read_file")
        store.add_node("read_file")
        assert store.node_count == 1

    def test_capability_kind_overrides_tool(self):
        """A node first seen as a tool becomes a capability when registered as one."""
        store = GraphStore()
        store.add_node("cap:x")
        store.add_node("cap:x", NodeKind.CAPABILITY)
        assert store.get_node("cap:x").kind is NodeKind.CAPABILITY

    def test_tool_kind_never_downgrades_capability(self):
        store = GraphStore()
        store.add_node("cap:x", NodeKind.CAPABILITY)
        store.add_node("cap:x")
        assert store.get_node("cap:x").kind is NodeKind.CAPABILITY

    def test_node_ids_sorted(self):
        store = GraphStore()
        for node_id in ("c", "a", "b"):
            store.add_node(node_id)
        assert store.node_ids() == ["a", "b", "c"]

    def test_set_pagerank_refreshes_degree(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        store.set_pagerank({"parse_json": 0.5})

        node = store.get_node("parse_json")
        assert node.pagerank == 0.5
        assert node.degree == 3
        assert store.get_node("grep").pagerank == 0.0


class TestEdges:
    """Tests for edge insertion and adjacency."""

    def test_put_edge_creates_endpoints(self):
        store = GraphStore()
        store.put_edge(GraphEdge("a", "b", 0.5))
        assert store.has_node("a")
        assert store.has_node("b")

    def test_put_edge_replaces_whole_record(self):
        store = GraphStore()
        first = GraphEdge("a", "b", 0.5)
        store.put_edge(first)
        previous = store.put_edge(GraphEdge("a", "b", 0.9, 3, edge_source=EdgeSource.OBSERVED))

        assert previous == first
        assert store.edge_count == 1
        assert store.get_edge("a", "b").weight == 0.9
        assert store.get_edge("a", "b").edge_source is EdgeSource.OBSERVED

    def test_adjacency(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        assert store.successors("read_file") == ["grep", "parse_json"]
        assert store.predecessors("parse_json") == ["fetch", "read_file"]
        assert store.neighbors("parse_json") == ["fetch", "read_file", "write_file"]
        assert [e.target for e in store.out_edges("read_file")] == ["grep", "parse_json"]
        assert [e.source for e in store.in_edges("write_file")] == ["parse_json"]

    def test_remove_edge(self):
        store = GraphStore()
        store.put_edge(GraphEdge("a", "b", 0.5))
        removed = store.remove_edge("a", "b")

        assert removed is not None
        assert store.get_edge("a", "b") is None
        assert store.successors("a") == []
        assert store.remove_edge("a", "b") is None

    def test_unknown_node_has_no_neighbours(self):
        assert GraphStore().successors("ghost") == []


class TestFromRecords:
    def test_capabilities_registered_as_capability_nodes(self, sample_edges):
        store = GraphStore.from_records(sample_edges, capability_ids=["cap:ingest"])
        assert store.get_node("cap:ingest").kind is NodeKind.CAPABILITY
        assert store.get_node("read_file").kind is NodeKind.TOOL
        assert store.node_count == 6
        assert store.edge_count == 4
