"""
Infrastructure layer: concrete adapters for the domain ports.
"""

from toolweave.infrastructure.approvers import ConsoleApprover, StaticApprover
from toolweave.infrastructure.embeddings import HashEmbeddingModel
from toolweave.infrastructure.persistence import (
    FilesystemDbClient,
    FilesystemEventStore,
    InMemoryDbClient,
    InMemoryEventStore,
)
from toolweave.infrastructure.tools import MockToolExecutor, ToolCall
from toolweave.infrastructure.vector import InMemoryVectorSearch

__all__ = [
    "ConsoleApprover",
    "StaticApprover",
    "HashEmbeddingModel",
    "FilesystemDbClient",
    "FilesystemEventStore",
    "InMemoryDbClient",
    "InMemoryEventStore",
    "MockToolExecutor",
    "ToolCall",
    "InMemoryVectorSearch",
]
