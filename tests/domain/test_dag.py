"""Tests for DAG validation, layering and content addressing."""

import pytest

from toolweave.domain.dag import (
    compute_dag_ref,
    compute_layers,
    dag_from_dict,
    dag_to_dict,
    transitive_dependents,
    validate_dag,
)
from toolweave.domain.exceptions import CycleDetected, InvalidDAG
from toolweave.domain.models import PermissionSet, WorkflowDAG, WorkflowTask


def make_dag(*specs: tuple[str, tuple[str, ...]]) -> WorkflowDAG:
    """Build a DAG from (task_id, depends_on) pairs; tool = task id."""
    return WorkflowDAG(
        tasks=tuple(
            WorkflowTask(id=task_id, tool=task_id, depends_on=frozenset(deps))
            for task_id, deps in specs
        )
    )


def layer_ids(layers) -> list[list[str]]:
    return [[task.id for task in layer] for layer in layers]


class TestValidateDag:
    """Tests for validate_dag."""

    def test_duplicate_ids_rejected(self):
        dag = make_dag(("a", ()), ("a", ()))
        with pytest.raises(InvalidDAG, match="Duplicate"):
            validate_dag(dag)

    def test_unknown_dependency_rejected(self):
        dag = make_dag(("a", ("ghost",)))
        with pytest.raises(InvalidDAG, match="unknown"):
            validate_dag(dag)

    def test_self_dependency_is_a_cycle(self):
        dag = make_dag(("a", ("a",)))
        with pytest.raises(CycleDetected):
            validate_dag(dag)

    def test_cycle_detected_with_path(self):
        dag = make_dag(("a", ("c",)), ("b", ("a",)), ("c", ("b",)))
        with pytest.raises(CycleDetected) as exc_info:
            validate_dag(dag)
        path = exc_info.value.path
        assert path[0] == path[-1]
        assert set(path) == {"a", "b", "c"}

    def test_cycle_is_invalid_dag(self):
        """CycleDetected is a kind of InvalidDAG."""
        assert issubclass(CycleDetected, InvalidDAG)


class TestComputeLayers:
    """Tests for topological leveling."""

    def test_diamond(self, diamond_dag):
        assert layer_ids(compute_layers(diamond_dag)) == [["a"], ["b", "c"], ["d"]]

    def test_independent_tasks_share_layer_zero(self):
        dag = make_dag(("x", ()), ("y", ()), ("z", ()))
        assert layer_ids(compute_layers(dag)) == [["x", "y", "z"]]

    def test_layer_follows_deepest_dependency(self):
        """A task depending on layers 0 and 2 lands in layer 3."""
        dag = make_dag(("a", ()), ("b", ("a",)), ("c", ("b",)), ("d", ("a", "c")))
        assert layer_ids(compute_layers(dag)) == [["a"], ["b"], ["c"], ["d"]]

    def test_declaration_order_within_layer(self):
        dag = make_dag(("root", ()), ("z", ("root",)), ("m", ("root",)), ("a", ("root",)))
        assert layer_ids(compute_layers(dag))[1] == ["z", "m", "a"]

    def test_no_task_depends_on_its_own_layer(self, diamond_dag):
        for layer in compute_layers(diamond_dag):
            ids = {task.id for task in layer}
            for task in layer:
                assert not (task.depends_on & ids)

    def test_empty_dag(self):
        assert compute_layers(WorkflowDAG(tasks=())) == ()

    def test_cycle_raises(self):
        with pytest.raises(CycleDetected):
            compute_layers(make_dag(("a", ("b",)), ("b", ("a",))))


class TestTransitiveDependents:
    def test_dependents_of_root(self, diamond_dag):
        assert transitive_dependents(diamond_dag, "a") == frozenset({"b", "c", "d"})

    def test_leaf_has_none(self, diamond_dag):
        assert transitive_dependents(diamond_dag, "d") == frozenset()


class TestSerialization:
    """Tests for the workflow file format."""

    def test_from_dict_defaults(self):
        dag = dag_from_dict({"tasks": [{"id": "a", "tool": "read_file"}]})
        task = dag.tasks[0]
        assert dag.intent == ""
        assert task.args == {}
        assert task.permission_set is PermissionSet.MINIMAL

    def test_from_dict_reads_every_field(self):
        dag = dag_from_dict(
            {
                "intent": "sync",
                "tasks": [
                    {"id": "a", "tool": "fetch", "args": {"url": "x"}},
                    {
                        "id": "b",
                        "tool": "write_file",
                        "depends_on": ["a"],
                        "capability_id": "cap:save",
                        "idempotent": False,
                        "side_effects": True,
                        "permission_set": "filesystem",
                    },
                ],
            }
        )
        b = dag.task("b")
        assert b.depends_on == frozenset({"a"})
        assert b.capability_id == "cap:save"
        assert b.idempotent is False
        assert b.side_effects is True
        assert b.permission_set is PermissionSet.FILESYSTEM
        assert dag.task("a").args == {"url": "x"}

    def test_to_dict_sorts_dependencies(self, diamond_dag):
        data = dag_to_dict(diamond_dag)
        assert data["tasks"][3]["depends_on"] == ["b", "c"]


class TestDagRef:
    def test_same_plan_same_ref(self, diamond_dag):
        copy = dag_from_dict(dag_to_dict(diamond_dag))
        assert compute_dag_ref(copy) == compute_dag_ref(diamond_dag)

    def test_different_args_different_ref(self):
        a = WorkflowDAG(tasks=(WorkflowTask("a", "fetch", args={"url": "1"}),))
        b = WorkflowDAG(tasks=(WorkflowTask("a", "fetch", args={"url": "2"}),))
        assert compute_dag_ref(a) != compute_dag_ref(b)

    def test_ref_is_sha256_hex(self, diamond_dag):
        ref = compute_dag_ref(diamond_dag)
        assert len(ref) == 64
        int(ref, 16)
