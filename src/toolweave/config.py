"""
Configuration and workflow file loading.

Both file formats are JSON documents validated against the schemas shipped
in toolweave.schemas. Every section of the configuration is optional; a
missing key keeps the dataclass default.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

from toolweave.application.executor import ExecutorConfig, HILConfig
from toolweave.application.graph_engine import ConfidencePolicy, GraphEngineConfig
from toolweave.application.post_execution import LearningConfig
from toolweave.application.suggester import DEFAULT_HINT_CONFIDENCE, SuggesterWeights
from toolweave.domain.dag import dag_from_dict, validate_dag
from toolweave.domain.exceptions import ConfigurationError
from toolweave.domain.hil import ApprovalMode
from toolweave.domain.models import WorkflowDAG
from toolweave.learning.shgat import SHGATConfig
from toolweave.learning.thresholds import ThresholdConfig
from toolweave.schemas import validate_config, validate_workflow


@dataclass(frozen=True)
class TrainingConfig:
    """Replay buffer and batch training settings."""

    buffer_capacity: int = 50_000
    alpha: float = 0.6
    epsilon: float = 0.01
    beta_start: float = 0.4
    seed: int | None = None


@dataclass(frozen=True)
class SuggesterConfig:
    weights: SuggesterWeights = field(default_factory=SuggesterWeights)
    hint_confidence: float = DEFAULT_HINT_CONFIDENCE


@dataclass(frozen=True)
class ToolweaveConfig:
    """All runtime settings, one dataclass per component."""

    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    graph: GraphEngineConfig = field(default_factory=GraphEngineConfig)
    shgat: SHGATConfig = field(default_factory=SHGATConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    suggester: SuggesterConfig = field(default_factory=SuggesterConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)


def _read_json(path: Path, kind: str) -> dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"{kind} file not found: {path}")
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected object in {path}, got {type(data).__name__}")
    return data


def config_from_dict(data: dict[str, Any]) -> ToolweaveConfig:
    """
    Build a ToolweaveConfig from the configuration file format.

    Raises:
        ConfigurationError: If the document fails schema validation or a
            component rejects a value
    """
    try:
        validate_config(data)
    except jsonschema.ValidationError as e:
        location = "/".join(str(part) for part in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid configuration at {location}: {e.message}") from e

    try:
        executor = dict(data.get("executor", {}))
        hil = executor.pop("hil", {})
        hil_config = HILConfig(
            enabled=hil.get("enabled", False),
            approval_required=ApprovalMode(hil.get("approval_required", "never")),
        )

        graph = dict(data.get("graph", {}))
        if "confidence_policy" in graph:
            graph["confidence_policy"] = ConfidencePolicy(graph["confidence_policy"])

        suggester = data.get("suggester", {})
        defaults = SuggesterWeights()
        weights = SuggesterWeights(
            graph=suggester.get("graph_weight", defaults.graph),
            learned=suggester.get("learned_weight", defaults.learned),
            similarity=suggester.get("similarity_weight", defaults.similarity),
        )

        return ToolweaveConfig(
            executor=ExecutorConfig(hil=hil_config, **executor),
            graph=GraphEngineConfig(**graph),
            shgat=SHGATConfig(**data.get("shgat", {})),
            thresholds=ThresholdConfig(**data.get("thresholds", {})),
            training=TrainingConfig(**data.get("training", {})),
            suggester=SuggesterConfig(
                weights=weights,
                hint_confidence=suggester.get("hint_confidence", DEFAULT_HINT_CONFIDENCE),
            ),
            learning=LearningConfig(**data.get("learning", {})),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(path: Path | str | None = None) -> ToolweaveConfig:
    """Load a configuration file; None gives the defaults."""
    if path is None:
        return ToolweaveConfig()
    return config_from_dict(_read_json(Path(path), "Configuration"))


def load_workflow(path: Path | str) -> WorkflowDAG:
    """
    Load and validate a workflow file.

    Raises:
        ConfigurationError: If the file is missing or fails schema validation
        InvalidDAG / CycleDetected: If the tasks do not form a DAG
    """
    data = _read_json(Path(path), "Workflow")
    try:
        validate_workflow(data)
    except jsonschema.ValidationError as e:
        raise ConfigurationError(f"Invalid workflow {path}: {e.message}") from e
    dag = dag_from_dict(data)
    validate_dag(dag)
    return dag
