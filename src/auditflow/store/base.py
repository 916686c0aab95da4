"""
Document store port.

Defines the abstraction the audit pipeline persists through. Implementations
may wrap Firestore, MongoDB, PostgreSQL JSONB or anything else that offers
keyed documents grouped into collections.

Documents are plain JSON-safe dicts. Timestamps are stored as UTC ISO-8601
strings with microsecond precision so that string comparison is
chronological.

These are pure interfaces - no database drivers allowed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class StorageError(Exception):
    """Base exception for storage operations."""

    message: str
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class NotFoundError(StorageError):
    """Raised when a requested document is not found."""

    key: str = ""


@dataclass(eq=False)
class ConflictError(StorageError):
    """Raised on uniqueness conflicts."""

    key: str = ""


FILTER_OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "contains")


@dataclass
class QueryFilter:
    """Filter criteria for document queries."""

    field: str
    operator: str  # eq, ne, gt, gte, lt, lte, in, contains
    value: Any

    def __post_init__(self) -> None:
        if self.operator not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.operator}")


@dataclass
class QueryOrder:
    """Ordering specification for queries."""

    field: str
    ascending: bool = True


@dataclass
class BatchWrite:
    """
    A single write inside an atomic batch.

    ``fields`` set means a partial update of an existing document,
    otherwise ``document`` replaces whatever is stored under the key.
    """

    collection: str
    doc_id: str
    document: dict[str, Any] | None = None
    fields: dict[str, Any] | None = field(default=None)

    @property
    def is_update(self) -> bool:
        return self.fields is not None


class DocumentStore(ABC):
    """
    Abstract keyed document store.

    Collections are slash-separated paths, e.g. ``audit-logs`` or
    ``tenants/t-1/audit-logs``.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """
        Retrieve a document by ID.

        Returns:
            The document if found, None otherwise.
        """
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        """Create or replace a document."""
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """
        Merge fields into an existing document.

        Raises:
            NotFoundError: If the document doesn't exist.
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: list[QueryFilter] | None = None,
        order_by: list[QueryOrder] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Scan a collection with filter predicates, ordering and limit.

        Returns:
            Matching documents (copies).
        """
        ...

    @abstractmethod
    async def write_batch(self, writes: list[BatchWrite]) -> None:
        """
        Apply several writes atomically.

        Either every write is applied or none is.

        Raises:
            NotFoundError: If an update targets a missing document.
        """
        ...
