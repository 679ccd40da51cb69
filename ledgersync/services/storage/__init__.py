"""
Storage Services Package

Provides the abstract mapping store interface and concrete implementations.
SQL (SQLAlchemy async) for deployments, in-memory for tests and dry runs.
"""

from ledgersync.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    MappingStoreInterface,
    NotFoundError,
    StorageError,
)
from ledgersync.services.storage.memory import InMemoryMappingStore
from ledgersync.services.storage.sql import SqlMappingStore

__all__ = [
    # Interfaces
    "MappingStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryMappingStore",
    "SqlMappingStore",
]
