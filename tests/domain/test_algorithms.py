"""Tests for graph algorithms."""

import math

import pytest

from toolweave.domain.algorithms import (
    adamic_adar,
    density,
    detect_communities,
    pagerank,
    shortest_path,
    to_networkx,
    top_ranked,
)
from toolweave.domain.graph_store import GraphStore
from toolweave.domain.models import GraphEdge


def store_of(*edges: tuple[str, str, float]) -> GraphStore:
    return GraphStore.from_records(GraphEdge(s, t, w) for s, t, w in edges)


class TestPageRank:
    """Tests for weighted PageRank."""

    def test_empty_graph(self):
        assert pagerank(GraphStore()) == {}

    def test_no_edges_is_uniform(self):
        store = GraphStore()
        for node_id in ("a", "b", "c", "d"):
            store.add_node(node_id)
        assert pagerank(store) == {"a": 0.25, "b": 0.25, "c": 0.25, "d": 0.25}

    def test_scores_sum_to_one(self, sample_edges):
        scores = pagerank(GraphStore.from_records(sample_edges))
        assert sum(scores.values()) == pytest.approx(1.0)

    def test_targets_outrank_pure_sources(self, sample_edges):
        """Nodes with no incoming edges only get the teleport share."""
        scores = pagerank(GraphStore.from_records(sample_edges))
        assert scores["read_file"] == pytest.approx(scores["fetch"])
        assert scores["parse_json"] > scores["read_file"]

    def test_deterministic(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        assert pagerank(store) == pagerank(store)

    def test_heavier_edge_carries_more_rank(self):
        store = store_of(("hub", "strong", 0.9), ("hub", "weak", 0.1))
        scores = pagerank(store)
        assert scores["strong"] > scores["weak"]

    def test_top_ranked_breaks_ties_by_id(self):
        assert top_ranked({"b": 0.5, "a": 0.5, "c": 0.9}, limit=2) == [
            ("c", 0.9),
            ("a", 0.5),
        ]


class TestCommunities:
    """Tests for label propagation."""

    def test_components_become_communities(self):
        store = store_of(("a", "b", 0.9), ("c", "d", 0.8))
        assert detect_communities(store) == {"a": 0, "b": 0, "c": 1, "d": 1}

    def test_isolated_node_is_its_own_community(self):
        store = store_of(("a", "b", 0.9))
        store.add_node("z")
        communities = detect_communities(store)
        assert communities["z"] == 1
        assert communities["a"] == communities["b"] == 0

    def test_partition_is_stable_across_calls(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        assert detect_communities(store) == detect_communities(store)

    def test_empty_graph(self):
        assert detect_communities(GraphStore()) == {}


class TestPathsAndSimilarity:
    def test_density(self):
        assert density(store_of(("a", "b", 0.5))) == 0.5
        assert density(GraphStore()) == 0.0

    def test_shortest_path(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        assert shortest_path(store, "read_file", "write_file") == [
            "read_file",
            "parse_json",
            "write_file",
        ]

    def test_shortest_path_is_directed(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        assert shortest_path(store, "write_file", "read_file") is None
        assert shortest_path(store, "ghost", "read_file") is None

    def test_path_to_self(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        assert shortest_path(store, "grep", "grep") == ["grep"]

    def test_adamic_adar_counts_shared_neighbours(self, sample_edges):
        """read_file and fetch share parse_json, which has three neighbours."""
        store = GraphStore.from_records(sample_edges)
        assert adamic_adar(store, "read_file", "fetch") == pytest.approx(1 / math.log(3))
        assert adamic_adar(store, "grep", "write_file") == 0.0


class TestNetworkxView:
    def test_view_carries_nodes_and_weights(self, sample_edges):
        store = GraphStore.from_records(sample_edges)
        store.add_node("isolated")

        graph = to_networkx(store)

        assert graph.is_directed()
        assert sorted(graph.nodes) == store.node_ids()
        assert graph["read_file"]["parse_json"]["weight"] == 0.9
        assert not graph.has_edge("parse_json", "read_file")
