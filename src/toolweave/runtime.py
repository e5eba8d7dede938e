"""
Composition root: wires the ports, learning components and services together.

A Runtime owns one graph engine, one recommender and one executor. Call
``start()`` once to load persisted state and ``shutdown()`` to save it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from toolweave.application.event_dispatcher import EventDispatcher
from toolweave.application.executor import ControlledExecutor, RunHandle
from toolweave.application.graph_engine import GraphRAGEngine
from toolweave.application.post_execution import PostExecutionService
from toolweave.application.speculation import Speculator
from toolweave.application.suggester import DAGSuggester
from toolweave.config import ToolweaveConfig
from toolweave.domain.exceptions import IncompatibleSnapshot
from toolweave.domain.interfaces import (
    ApproverInterface,
    DbClientInterface,
    EmbeddingModelInterface,
    EventStoreInterface,
    ToolExecutorInterface,
    VectorSearchInterface,
)
from toolweave.domain.models import RunResult, WorkflowDAG
from toolweave.infrastructure.embeddings import HashEmbeddingModel
from toolweave.infrastructure.vector import InMemoryVectorSearch
from toolweave.learning.coordinator import TrainingCoordinator, TrainingReport
from toolweave.learning.per_buffer import PERBuffer
from toolweave.learning.shgat import SHGAT
from toolweave.learning.thresholds import AdaptiveThresholdManager

logger = logging.getLogger(__name__)

SHGAT_SNAPSHOT = "shgat"


@dataclass
class Runtime:
    """Every long-lived component of one orchestration process."""

    config: ToolweaveConfig
    db: DbClientInterface
    dispatcher: EventDispatcher
    graph: GraphRAGEngine
    model: SHGAT
    coordinator: TrainingCoordinator
    thresholds: AdaptiveThresholdManager
    embedding_model: EmbeddingModelInterface
    vector_search: VectorSearchInterface
    suggester: DAGSuggester
    speculator: Speculator
    learner: PostExecutionService
    executor: ControlledExecutor

    @classmethod
    def build(
        cls,
        tool_executor: ToolExecutorInterface,
        db: DbClientInterface,
        config: ToolweaveConfig | None = None,
        event_store: EventStoreInterface | None = None,
        approver: ApproverInterface | None = None,
        embedding_model: EmbeddingModelInterface | None = None,
        vector_search: VectorSearchInterface | None = None,
    ) -> "Runtime":
        """
        Args:
            tool_executor: Sandbox that runs tool calls
            db: Graph, capability, trace and snapshot storage
            config: Component settings (defaults if None)
            event_store: Receives every emitted event
            approver: Answers checkpoints without caller involvement
            embedding_model: Intent/text encoder (hashing model by default)
            vector_search: Capability similarity index (in-memory by default)
        """
        config = config or ToolweaveConfig()
        embedding_model = embedding_model or HashEmbeddingModel(config.shgat.embedding_dim)
        vector_search = vector_search or InMemoryVectorSearch()

        dispatcher = EventDispatcher(store=event_store)
        graph = GraphRAGEngine(db, dispatcher=dispatcher, config=config.graph)
        model = SHGAT(config.shgat, neighbourhood=graph.neighbourhood_of)
        training = config.training
        coordinator = TrainingCoordinator(
            PERBuffer(
                capacity=training.buffer_capacity,
                alpha=training.alpha,
                epsilon=training.epsilon,
                seed=training.seed,
            ),
            beta_start=training.beta_start,
        )
        thresholds = AdaptiveThresholdManager(config.thresholds)
        suggester = DAGSuggester(
            graph,
            model=model,
            vector_search=vector_search,
            embedding_model=embedding_model,
            thresholds=thresholds,
            weights=config.suggester.weights,
            hint_confidence=config.suggester.hint_confidence,
        )
        speculator = Speculator(suggester, k=config.executor.speculation_k)
        learner = PostExecutionService(
            graph, db, coordinator=coordinator, model=model, config=config.learning
        )
        executor = ControlledExecutor(
            tool_executor,
            dispatcher=dispatcher,
            config=config.executor,
            db=db,
            approver=approver,
            speculator=speculator,
            on_complete=learner,
        )
        return cls(
            config=config,
            db=db,
            dispatcher=dispatcher,
            graph=graph,
            model=model,
            coordinator=coordinator,
            thresholds=thresholds,
            embedding_model=embedding_model,
            vector_search=vector_search,
            suggester=suggester,
            speculator=speculator,
            learner=learner,
            executor=executor,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the graph, thresholds and recommender snapshot."""
        await self.graph.sync_from_database()
        await self.thresholds.load(self.db)

        snapshot = await self.db.load_snapshot(SHGAT_SNAPSHOT)
        if snapshot is not None:
            try:
                self.coordinator.load_snapshot(self.model, snapshot)
            except IncompatibleSnapshot as exc:
                logger.warning("Ignoring stored recommender snapshot: %s", exc)

        for capability in self.graph.capabilities():
            self.index_node(capability.id, capability.embedding)

    async def shutdown(self) -> None:
        """Persist thresholds and the recommender snapshot."""
        await self.thresholds.save(self.db)
        await self.db.save_snapshot(SHGAT_SNAPSHOT, self.model.export_params())

    def index_node(self, node_id: str, embedding: tuple[float, ...] = ()) -> None:
        """Give a tool or capability a feature vector and a search entry."""
        dimension = self.model.config.embedding_dim
        if len(embedding) == dimension:
            vector = np.asarray(embedding, dtype=np.float64)
        else:
            vector = np.asarray(self.embedding_model.encode(node_id), dtype=np.float64)
            if vector.shape != (dimension,):
                logger.debug("No %d-d feature for %s", dimension, node_id)
                return
        self.model.register_node(node_id, vector)
        self.vector_search.upsert(node_id, vector)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def encode_intent(self, intent: str) -> np.ndarray | None:
        if not intent:
            return None
        return self.embedding_model.encode(intent)

    def start_run(self, dag: WorkflowDAG, workflow_id: str | None = None) -> RunHandle:
        """Start a run in the background; answer checkpoints through the handle."""
        for task in dag.tasks:
            for node_id in (task.tool, task.capability_id):
                if node_id and not self.model.has_node(node_id):
                    capability = self.graph.get_capability(node_id)
                    self.index_node(node_id, capability.embedding if capability else ())
        return self.executor.start(
            dag, workflow_id=workflow_id, intent_embedding=self.encode_intent(dag.intent)
        )

    async def run(self, dag: WorkflowDAG, workflow_id: str | None = None) -> RunResult:
        return await self.start_run(dag, workflow_id).result()

    def train(self, epochs: int = 1, batch_size: int = 32) -> TrainingReport:
        """Replay training over the buffered examples."""
        return self.coordinator.train_batch(self.model, epochs=epochs, batch_size=batch_size)

    def metrics(self) -> dict[str, Any]:
        return {
            "graph": self.graph.get_stats(),
            "thresholds": self.thresholds.get_metrics(),
            "speculation": self.speculator.get_metrics(),
            "training": {
                "buffer_size": len(self.coordinator.buffer),
                "pending": self.coordinator.pending_count,
                "model_updates": self.model.update_count,
            },
        }
