"""
"Contains" index of capabilities over their member tools and capabilities.

The cache is derived data: it is rebuilt wholesale from capability records
and swapped in atomically, so lookups never observe a partial rebuild.
"""

import threading
from collections.abc import Iterable

from toolweave.domain.exceptions import HierarchyCycleError
from toolweave.domain.models import Capability, Hyperedge, HyperedgeType


class HyperedgeCache:
    """O(1) lookup of capability -> members and member -> capabilities."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_capability: dict[str, Hyperedge] = {}
        self._by_member: dict[str, frozenset[str]] = {}

    def rebuild(self, capabilities: Iterable[Capability]) -> int:
        """Replace the whole index from capability records.

        Capabilities with fewer than two members do not form a hyperedge.

        Returns:
            Number of hyperedges built
        """
        capabilities = list(capabilities)
        capability_ids = {cap.id for cap in capabilities}
        by_capability: dict[str, Hyperedge] = {}
        by_member: dict[str, set[str]] = {}

        for cap in capabilities:
            members = frozenset(cap.tools_used) | frozenset(cap.children)
            if len(members) < 2:
                continue
            edge_type = (
                HyperedgeType.CAP_TO_CAP
                if members & capability_ids
                else HyperedgeType.CAP_TO_TOOL
            )
            by_capability[cap.id] = Hyperedge(
                capability_id=cap.id, members=members, type=edge_type
            )
            for member in members:
                by_member.setdefault(member, set()).add(cap.id)

        frozen_members = {k: frozenset(v) for k, v in by_member.items()}
        with self._lock:
            self._by_capability = by_capability
            self._by_member = frozen_members
        return len(by_capability)

    def get(self, capability_id: str) -> Hyperedge | None:
        return self._by_capability.get(capability_id)

    def members(self, capability_id: str) -> frozenset[str]:
        edge = self._by_capability.get(capability_id)
        return edge.members if edge is not None else frozenset()

    def containing(self, member_id: str) -> frozenset[str]:
        """Capabilities whose hyperedge includes member_id."""
        return self._by_member.get(member_id, frozenset())

    def all(self) -> list[Hyperedge]:
        return [self._by_capability[key] for key in sorted(self._by_capability)]

    def summary(self) -> dict[str, int]:
        edges = list(self._by_capability.values())
        return {
            "total": len(edges),
            "cap_to_tool": sum(1 for e in edges if e.type is HyperedgeType.CAP_TO_TOOL),
            "cap_to_cap": sum(1 for e in edges if e.type is HyperedgeType.CAP_TO_CAP),
        }

    def __len__(self) -> int:
        return len(self._by_capability)


def compute_hierarchy_levels(capabilities: Iterable[Capability]) -> dict[str, int]:
    """Hierarchy level of each capability.

    Level 0 contains only tools; otherwise 1 + the highest child level.
    Children that are not known capabilities are treated as tools.

    Raises:
        HierarchyCycleError: If containment forms a cycle
    """
    by_id = {cap.id: cap for cap in capabilities}
    levels: dict[str, int] = {}

    def level_of(cap_id: str, path: tuple[str, ...]) -> int:
        if cap_id in levels:
            return levels[cap_id]
        if cap_id in path:
            raise HierarchyCycleError(cap_id, (*path[path.index(cap_id):], cap_id))
        children = [c for c in by_id[cap_id].children if c in by_id]
        level = (
            1 + max(level_of(child, (*path, cap_id)) for child in children)
            if children
            else 0
        )
        levels[cap_id] = level
        return level

    for cap_id in sorted(by_id):
        level_of(cap_id, ())
    return levels
