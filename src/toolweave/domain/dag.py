"""
Workflow DAG validation, topological leveling and content addressing.

Layers are computed once per run: layer 0 holds every task without
dependencies, layer n every task whose deepest dependency sits in layer n-1.
Tasks inside one layer never depend on each other.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

import networkx as nx

from toolweave.domain.exceptions import CycleDetected, InvalidDAG
from toolweave.domain.models import PermissionSet, WorkflowDAG, WorkflowTask


def dependency_graph(dag: WorkflowDAG) -> nx.DiGraph:
    """Tasks in declaration order, with an edge from each dependency to its dependent."""
    graph = nx.DiGraph()
    graph.add_nodes_from(task.id for task in dag.tasks)
    for task in dag.tasks:
        graph.add_edges_from((dep, task.id) for dep in sorted(task.depends_on))
    return graph


def validate_dag(dag: WorkflowDAG) -> None:
    """Reject duplicate ids, unknown dependencies and self-dependencies.

    Raises:
        InvalidDAG: On duplicate or dangling references
        CycleDetected: If the dependencies form a cycle
    """
    ids: set[str] = set()
    for task in dag.tasks:
        if task.id in ids:
            raise InvalidDAG(f"Duplicate task id '{task.id}'")
        ids.add(task.id)

    for task in dag.tasks:
        if task.id in task.depends_on:
            raise CycleDetected((task.id, task.id))
        unknown = task.depends_on - ids
        if unknown:
            raise InvalidDAG(
                f"Task '{task.id}' depends on unknown task(s): {sorted(unknown)}"
            )

    try:
        cycle = nx.find_cycle(dependency_graph(dag))
    except nx.NetworkXNoCycle:
        return
    raise CycleDetected((*(source for source, _ in cycle), cycle[0][0]))


def compute_layers(dag: WorkflowDAG) -> tuple[tuple[WorkflowTask, ...], ...]:
    """Group tasks into dependency layers.

    Order within a layer follows the order tasks were declared in the DAG.

    Raises:
        InvalidDAG / CycleDetected: If the DAG is not valid
    """
    validate_dag(dag)

    level = {
        task_id: depth
        for depth, generation in enumerate(nx.topological_generations(dependency_graph(dag)))
        for task_id in generation
    }
    depth = max(level.values(), default=-1) + 1
    return tuple(
        tuple(task for task in dag.tasks if level[task.id] == n) for n in range(depth)
    )


def transitive_dependents(dag: WorkflowDAG, task_id: str) -> frozenset[str]:
    """All tasks that directly or indirectly depend on ``task_id``."""
    graph = dependency_graph(dag)
    if task_id not in graph:
        return frozenset()
    return frozenset(nx.descendants(graph, task_id))


# =============================================================================
# SERIALIZATION
# =============================================================================


def dag_to_dict(dag: WorkflowDAG) -> dict[str, Any]:
    """Serialize a DAG to the workflow file format."""
    return {
        "intent": dag.intent,
        "tasks": [
            {
                "id": task.id,
                "tool": task.tool,
                "args": task.args,
                "depends_on": sorted(task.depends_on),
                "capability_id": task.capability_id,
                "idempotent": task.idempotent,
                "side_effects": task.side_effects,
                "permission_set": task.permission_set.value,
            }
            for task in dag.tasks
        ],
    }


def dag_from_dict(data: dict[str, Any]) -> WorkflowDAG:
    """Build a DAG from the workflow file format (see workflow.schema.json)."""
    tasks = tuple(
        WorkflowTask(
            id=raw["id"],
            tool=raw["tool"],
            args=dict(raw.get("args", {})),
            depends_on=frozenset(raw.get("depends_on", ())),
            capability_id=raw.get("capability_id"),
            idempotent=raw.get("idempotent", True),
            side_effects=raw.get("side_effects", False),
            permission_set=PermissionSet(raw.get("permission_set", "minimal")),
        )
        for raw in data["tasks"]
    )
    return WorkflowDAG(tasks=tasks, intent=data.get("intent", ""))


def compute_dag_ref(dag: WorkflowDAG) -> str:
    """Compute content-addressed hash of a DAG's structure.

    Canonical JSON serialization (sorted keys, no whitespace) hashed with
    SHA-256, so the same plan always yields the same reference.
    """
    canonical = json.dumps(
        dag_to_dict(dag), sort_keys=True, separators=(",", ":"), default=str
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
