"""
Application layer: services that coordinate the domain and learning layers.

Depends only on ports; concrete adapters are injected by the caller.
"""

from toolweave.application.event_dispatcher import EventDispatcher
from toolweave.application.executor import (
    ControlledExecutor,
    ExecutorConfig,
    HILConfig,
    RunHandle,
)
from toolweave.application.graph_engine import (
    ConfidencePolicy,
    GraphEngineConfig,
    GraphRAGEngine,
)
from toolweave.application.post_execution import (
    LearningConfig,
    LearningReport,
    PostExecutionService,
)
from toolweave.application.speculation import Speculator
from toolweave.application.suggester import (
    DAGSuggester,
    PatternStrategy,
    Suggestion,
    SuggesterWeights,
)

__all__ = [
    "EventDispatcher",
    "ControlledExecutor",
    "ExecutorConfig",
    "HILConfig",
    "RunHandle",
    "ConfidencePolicy",
    "GraphEngineConfig",
    "GraphRAGEngine",
    "LearningConfig",
    "LearningReport",
    "PostExecutionService",
    "Speculator",
    "DAGSuggester",
    "PatternStrategy",
    "Suggestion",
    "SuggesterWeights",
]
