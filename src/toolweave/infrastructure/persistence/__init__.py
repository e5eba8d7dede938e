"""Persistence adapters."""

from toolweave.infrastructure.persistence.events import (
    FilesystemEventStore,
    InMemoryEventStore,
)
from toolweave.infrastructure.persistence.filesystem import FilesystemDbClient
from toolweave.infrastructure.persistence.memory import InMemoryDbClient

__all__ = [
    "FilesystemDbClient",
    "FilesystemEventStore",
    "InMemoryDbClient",
    "InMemoryEventStore",
]
