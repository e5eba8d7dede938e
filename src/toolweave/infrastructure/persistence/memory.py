"""
In-memory database client.

Useful for testing and single-process runs where durability is not needed.
Records are stored as the frozen domain objects themselves.
"""

import copy
from typing import Any

from toolweave.domain.interfaces import DbClientInterface
from toolweave.domain.models import Capability, ExecutionTrace, GraphEdge, Thresholds


class InMemoryDbClient(DbClientInterface):
    """Dictionary-backed DbClient."""

    def __init__(
        self,
        edges: list[GraphEdge] | None = None,
        capabilities: list[Capability] | None = None,
    ) -> None:
        self._edges: dict[tuple[str, str], GraphEdge] = {
            edge.key: edge for edge in edges or []
        }
        self._capabilities: dict[str, Capability] = {
            cap.id: cap for cap in capabilities or []
        }
        self._traces: list[ExecutionTrace] = []
        self._snapshots: dict[str, dict[str, Any]] = {}
        self._thresholds: dict[str, Thresholds] = {}

    async def load_edges(self) -> list[GraphEdge]:
        return [self._edges[key] for key in sorted(self._edges)]

    async def save_edge(self, edge: GraphEdge) -> None:
        self._edges[edge.key] = edge

    async def load_capabilities(self) -> list[Capability]:
        return [self._capabilities[key] for key in sorted(self._capabilities)]

    async def get_capability(self, capability_id: str) -> Capability | None:
        return self._capabilities.get(capability_id)

    async def save_capability(self, capability: Capability) -> None:
        self._capabilities[capability.id] = capability

    async def save_trace(self, trace: ExecutionTrace) -> None:
        self._traces.append(trace)

    async def load_traces(self, limit: int | None = None) -> list[ExecutionTrace]:
        if limit is None:
            return list(self._traces)
        return self._traces[-limit:] if limit > 0 else []

    async def save_snapshot(self, name: str, snapshot: dict[str, Any]) -> None:
        self._snapshots[name] = copy.deepcopy(snapshot)

    async def load_snapshot(self, name: str) -> dict[str, Any] | None:
        snapshot = self._snapshots.get(name)
        return copy.deepcopy(snapshot) if snapshot is not None else None

    async def save_thresholds(self, context_hash: str, thresholds: Thresholds) -> None:
        self._thresholds[context_hash] = thresholds

    async def load_thresholds(self, context_hash: str) -> Thresholds | None:
        return self._thresholds.get(context_hash)
