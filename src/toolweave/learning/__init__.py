"""
Learning layer: the SHGAT recommender and everything that trains it.

Depends only on the domain layer.
"""

from toolweave.learning.coordinator import TrainingCoordinator, TrainingReport
from toolweave.learning.per_buffer import PERBuffer, PERSample, anneal_beta
from toolweave.learning.shgat import SHGAT, SHGATConfig
from toolweave.learning.thresholds import (
    AdaptiveThresholdManager,
    ConfidenceBand,
    OutcomeMode,
    ThresholdConfig,
    context_hash,
)

__all__ = [
    "SHGAT",
    "SHGATConfig",
    "PERBuffer",
    "PERSample",
    "anneal_beta",
    "TrainingCoordinator",
    "TrainingReport",
    "AdaptiveThresholdManager",
    "ConfidenceBand",
    "OutcomeMode",
    "ThresholdConfig",
    "context_hash",
]
