"""
Storage layer for the audit pipeline.

Provides the DocumentStore port and an in-memory reference store.
"""

from auditflow.store.base import (
    BatchWrite,
    ConflictError,
    DocumentStore,
    NotFoundError,
    QueryFilter,
    QueryOrder,
    StorageError,
)
from auditflow.store.memory import MemoryDocumentStore

__all__ = [
    "BatchWrite",
    "ConflictError",
    "DocumentStore",
    "MemoryDocumentStore",
    "NotFoundError",
    "QueryFilter",
    "QueryOrder",
    "StorageError",
]
