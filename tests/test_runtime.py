"""Tests for the Runtime composition root."""

import asyncio

import numpy as np

from toolweave.config import ToolweaveConfig
from toolweave.domain.models import (
    Capability,
    EdgeSource,
    EdgeType,
    RunStatus,
    TrainingExample,
    WorkflowDAG,
    WorkflowTask,
)
from toolweave.infrastructure.persistence.events import InMemoryEventStore
from toolweave.infrastructure.persistence.memory import InMemoryDbClient
from toolweave.infrastructure.tools import MockToolExecutor
from toolweave.learning.shgat import SHGATConfig
from toolweave.runtime import SHGAT_SNAPSHOT, Runtime

DIM = 16


def small_config() -> ToolweaveConfig:
    return ToolweaveConfig(
        shgat=SHGATConfig(embedding_dim=DIM, hidden_dim=8, num_heads=2, seed=7)
    )


def ingest_dag() -> WorkflowDAG:
    return WorkflowDAG(
        tasks=(
            WorkflowTask("read", "read_file", capability_id="cap:ingest"),
            WorkflowTask("parse", "parse_json", depends_on=frozenset({"read"})),
            WorkflowTask("write", "write_file", depends_on=frozenset({"parse"})),
        ),
        intent="read parse and write a json file",
    )


def build(db: InMemoryDbClient | None = None, **kwargs) -> Runtime:
    return Runtime.build(
        MockToolExecutor(), db or InMemoryDbClient(), config=small_config(), **kwargs
    )


class TestRun:
    """Tests for a full run through the wired components."""

    def test_run_learns_edges_and_saves_trace(self):
        db = InMemoryDbClient(capabilities=[Capability(id="cap:ingest")])
        runtime = build(db)

        async def scenario():
            await runtime.start()
            return await runtime.run(ingest_dag(), workflow_id="wf-1")

        result = asyncio.run(scenario())

        assert result.status is RunStatus.COMPLETED
        edge = runtime.graph.get_edge("read_file", "parse_json")
        assert edge.edge_type is EdgeType.DEPENDENCY
        assert edge.edge_source is EdgeSource.INFERRED
        assert runtime.graph.get_edge("cap:ingest", "read_file").edge_type is EdgeType.CONTAINS
        assert [t.workflow_id for t in asyncio.run(db.load_traces())] == ["wf-1"]
        assert asyncio.run(db.get_capability("cap:ingest")).usage_count == 1

    def test_run_trains_the_recommender(self):
        runtime = build()

        async def scenario():
            await runtime.start()
            await runtime.run(ingest_dag())

        asyncio.run(scenario())

        training = runtime.metrics()["training"]
        assert training["buffer_size"] == 3
        assert training["model_updates"] > 0

    def test_tools_get_features_before_running(self):
        runtime = build()

        async def scenario():
            await runtime.start()
            await runtime.run(ingest_dag())

        asyncio.run(scenario())

        assert {"read_file", "parse_json", "write_file", "cap:ingest"} <= set(runtime.model.node_ids)
        assert len(runtime.vector_search) == 4

    def test_events_reach_the_store(self):
        store = InMemoryEventStore()
        runtime = build(event_store=store)

        async def scenario():
            await runtime.start()
            await runtime.run(ingest_dag(), workflow_id="wf-1")

        asyncio.run(scenario())

        types = [e.event_type.value for e in store.get_events("wf-1")]
        assert types[0] == "workflow_start"
        assert types[-1] == "workflow_executed"

    def test_no_intent_no_embedding(self):
        runtime = build()
        assert runtime.encode_intent("") is None
        assert runtime.encode_intent("read a file").shape == (DIM,)


class TestLifecycle:
    def test_snapshot_and_thresholds_survive_restart(self):
        db = InMemoryDbClient()
        first = build(db)

        async def train_and_stop():
            await first.start()
            await first.run(ingest_dag())
            first.thresholds.record_outcome(0.45, accepted=True)
            await first.shutdown()

        asyncio.run(train_and_stop())

        second = build(db)
        asyncio.run(second.start())

        exported = first.model.export_params()["params"]
        restored = second.model.export_params()["params"]
        for name, value in exported.items():
            np.testing.assert_allclose(restored[name], value)
        assert second.thresholds.get_thresholds() == first.thresholds.get_thresholds()

    def test_snapshot_waits_for_training_lock(self):
        """Weights are not replaced under a batch that holds the lock."""
        db = InMemoryDbClient()
        stored = build(db).model
        stored.train_on_example(
            TrainingExample(tuple(np.ones(DIM) / 4.0), (), "parse_json", 1.0)
        )
        asyncio.run(db.save_snapshot(SHGAT_SNAPSHOT, stored.export_params()))
        runtime = build(db)
        before = runtime.model.export_params()["params"]
        runtime.coordinator.acquire("batch")

        asyncio.run(runtime.start())

        assert runtime.model.export_params()["params"] == before
        assert runtime.coordinator.has_pending_snapshot
        runtime.coordinator.release("batch")
        runtime.train(epochs=1)
        assert runtime.model.export_params()["params"] == stored.export_params()["params"]

    def test_incompatible_snapshot_is_ignored(self):
        db = InMemoryDbClient()
        asyncio.run(db.save_snapshot(SHGAT_SNAPSHOT, {"format": "something-else"}))
        runtime = build(db)

        asyncio.run(runtime.start())

        assert runtime.model.update_count == 0

    def test_start_indexes_capabilities(self):
        embedding = tuple(np.ones(DIM) / 4.0)
        db = InMemoryDbClient(capabilities=[Capability(id="cap:x", embedding=embedding)])
        runtime = build(db)

        asyncio.run(runtime.start())

        assert runtime.model.has_node("cap:x")
        assert runtime.vector_search.search(np.ones(DIM), k=1)[0][0] == "cap:x"

    def test_train_replays_buffer(self):
        runtime = build()

        async def scenario():
            await runtime.start()
            await runtime.run(ingest_dag())

        asyncio.run(scenario())
        report = runtime.train(epochs=2, batch_size=2)

        assert report.trained
        assert report.epochs == 2

    def test_metrics_sections(self):
        runtime = build()
        asyncio.run(runtime.start())
        assert set(runtime.metrics()) == {"graph", "thresholds", "speculation", "training"}
