"""
Graph algorithms over a GraphStore: PageRank, communities, paths.

Each function runs networkx on a snapshot of the store (see ``to_networkx``)
built in sorted node order. Community detection runs with a fixed seed, so the same
graph always yields the same ranking and the same partition.
"""

import networkx as nx

from toolweave.domain.graph_store import GraphStore

DAMPING = 0.85
TOLERANCE = 1e-6
MAX_ITERATIONS = 100
COMMUNITY_SEED = 0


def to_networkx(store: GraphStore) -> nx.DiGraph:
    """Directed snapshot of the store with edge confidence as ``weight``."""
    graph = nx.DiGraph()
    graph.add_nodes_from(store.node_ids())
    for edge in sorted(store.edges(), key=lambda e: (e.source, e.target)):
        graph.add_edge(edge.source, edge.target, weight=edge.weight)
    return graph


def pagerank(
    store: GraphStore,
    damping: float = DAMPING,
    tolerance: float = TOLERANCE,
    max_iterations: int = MAX_ITERATIONS,
) -> dict[str, float]:
    """Weighted PageRank.

    Edge weights act as transition weights. Mass of nodes without outgoing
    weight is spread uniformly. A graph without edges gives every node 1/N.

    Returns:
        node_id -> score, scores summing to 1 (empty dict for an empty graph)
    """
    node_ids = store.node_ids()
    n = len(node_ids)
    if n == 0:
        return {}
    if store.edge_count == 0:
        return {node_id: 1.0 / n for node_id in node_ids}

    scores = nx.pagerank(
        to_networkx(store),
        alpha=damping,
        tol=tolerance,
        max_iter=max_iterations,
        weight="weight",
    )
    return {node_id: float(scores[node_id]) for node_id in node_ids}


def top_ranked(scores: dict[str, float], limit: int = 10) -> list[tuple[str, float]]:
    """Highest scores first, ties by id."""
    return sorted(scores.items(), key=lambda item: (-item[1], item[0]))[:limit]


def detect_communities(store: GraphStore, seed: int = COMMUNITY_SEED) -> dict[str, int]:
    """Weighted Louvain communities on the undirected view of the graph.

    Communities are numbered 0..k-1 in order of their smallest member id.
    """
    graph = to_networkx(store).to_undirected()
    graph.remove_edges_from(list(nx.selfloop_edges(graph)))
    if graph.number_of_nodes() == 0:
        return {}

    groups = nx.community.louvain_communities(graph, weight="weight", seed=seed)
    ordered = sorted((sorted(group) for group in groups), key=lambda group: group[0])
    return {node_id: i for i, group in enumerate(ordered) for node_id in group}


def density(store: GraphStore) -> float:
    """Directed density E / (N (N - 1)); 0 for fewer than two nodes."""
    n = store.node_count
    if n < 2:
        return 0.0
    return store.edge_count / (n * (n - 1))


def shortest_path(store: GraphStore, source: str, target: str) -> list[str] | None:
    """Fewest-hop directed path, or None when unreachable."""
    if not store.has_node(source) or not store.has_node(target):
        return None
    try:
        return nx.shortest_path(to_networkx(store), source, target)
    except nx.NetworkXNoPath:
        return None


def adamic_adar(store: GraphStore, a: str, b: str) -> float:
    """Adamic-Adar similarity over the undirected neighbourhoods of a and b."""
    if a == b or not store.has_node(a) or not store.has_node(b):
        return 0.0
    graph = to_networkx(store).to_undirected()
    graph.remove_edges_from(list(nx.selfloop_edges(graph)))
    _, _, score = next(nx.adamic_adar_index(graph, [(a, b)]))
    return float(score)
