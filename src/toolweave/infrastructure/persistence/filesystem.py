"""
Filesystem database client.

Layout under ``base_dir``:

    graph.json                 edges and capabilities (rewritten atomically)
    thresholds.json            adaptive thresholds per context hash
    traces/<workflow_id>.json  one file per finished run
    snapshots/<name>.json      model snapshots

Writes go to a temporary file that is renamed over the target, so a crash
never leaves a half-written file behind.
"""

import asyncio
import json
import threading
from pathlib import Path
from typing import Any

from toolweave.domain.interfaces import DbClientInterface
from toolweave.domain.models import Capability, ExecutionTrace, GraphEdge, Thresholds
from toolweave.infrastructure.persistence.codec import (
    capability_to_dict,
    dict_to_capability,
    dict_to_edge,
    dict_to_thresholds,
    dict_to_trace,
    edge_to_dict,
    thresholds_to_dict,
    trace_to_dict,
)


def _write_atomic(path: Path, data: Any) -> None:
    """Write JSON using write-to-temp + rename."""
    temp_path = path.with_suffix(".tmp")
    with open(temp_path, "w") as f:
        json.dump(data, f, indent=2, default=str)
    temp_path.replace(path)  # Atomic on POSIX


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with open(path) as f:
        return json.load(f)


class FilesystemDbClient(DbClientInterface):
    """JSON-file DbClient. File I/O runs in a worker thread."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)
        self._graph_path = self._base_dir / "graph.json"
        self._thresholds_path = self._base_dir / "thresholds.json"
        self._traces_dir = self._base_dir / "traces"
        self._snapshots_dir = self._base_dir / "snapshots"
        self._lock = threading.Lock()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._traces_dir.mkdir(exist_ok=True)
        self._snapshots_dir.mkdir(exist_ok=True)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def _load_graph(self) -> dict[str, Any]:
        result: dict[str, Any] = _read_json(
            self._graph_path, {"version": "1.0", "edges": {}, "capabilities": {}}
        )
        return result

    def _mutate_graph(self, section: str, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            graph = self._load_graph()
            graph[section][key] = value
            _write_atomic(self._graph_path, graph)

    async def load_edges(self) -> list[GraphEdge]:
        graph = await asyncio.to_thread(self._load_graph)
        return [dict_to_edge(graph["edges"][key]) for key in sorted(graph["edges"])]

    async def save_edge(self, edge: GraphEdge) -> None:
        key = f"{edge.source}->{edge.target}"
        await asyncio.to_thread(self._mutate_graph, "edges", key, edge_to_dict(edge))

    async def load_capabilities(self) -> list[Capability]:
        graph = await asyncio.to_thread(self._load_graph)
        caps = graph["capabilities"]
        return [dict_to_capability(caps[key]) for key in sorted(caps)]

    async def get_capability(self, capability_id: str) -> Capability | None:
        graph = await asyncio.to_thread(self._load_graph)
        data = graph["capabilities"].get(capability_id)
        return dict_to_capability(data) if data is not None else None

    async def save_capability(self, capability: Capability) -> None:
        await asyncio.to_thread(
            self._mutate_graph,
            "capabilities",
            capability.id,
            capability_to_dict(capability),
        )

    # ------------------------------------------------------------------
    # Traces
    # ------------------------------------------------------------------

    async def save_trace(self, trace: ExecutionTrace) -> None:
        path = self._traces_dir / f"{trace.workflow_id}.json"
        await asyncio.to_thread(_write_atomic, path, trace_to_dict(trace))

    def _read_traces(self, limit: int | None) -> list[ExecutionTrace]:
        paths = sorted(self._traces_dir.glob("*.json"), key=lambda p: p.stat().st_mtime)
        traces = [dict_to_trace(_read_json(p, {})) for p in paths]
        traces.sort(key=lambda t: t.started_at)
        if limit is None:
            return traces
        return traces[-limit:] if limit > 0 else []

    async def load_traces(self, limit: int | None = None) -> list[ExecutionTrace]:
        return await asyncio.to_thread(self._read_traces, limit)

    # ------------------------------------------------------------------
    # Snapshots and thresholds
    # ------------------------------------------------------------------

    async def save_snapshot(self, name: str, snapshot: dict[str, Any]) -> None:
        await asyncio.to_thread(
            _write_atomic, self._snapshots_dir / f"{name}.json", snapshot
        )

    async def load_snapshot(self, name: str) -> dict[str, Any] | None:
        result: dict[str, Any] | None = await asyncio.to_thread(
            _read_json, self._snapshots_dir / f"{name}.json", None
        )
        return result

    def _put_thresholds(self, context_hash: str, thresholds: Thresholds) -> None:
        with self._lock:
            stored = _read_json(self._thresholds_path, {})
            stored[context_hash] = thresholds_to_dict(thresholds)
            _write_atomic(self._thresholds_path, stored)

    async def save_thresholds(self, context_hash: str, thresholds: Thresholds) -> None:
        await asyncio.to_thread(self._put_thresholds, context_hash, thresholds)

    async def load_thresholds(self, context_hash: str) -> Thresholds | None:
        stored = await asyncio.to_thread(_read_json, self._thresholds_path, {})
        data = stored.get(context_hash)
        return dict_to_thresholds(data) if data is not None else None
