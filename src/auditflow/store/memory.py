"""
In-memory document store.

Reference implementation of the DocumentStore port used by tests and
local runs. Every document is deep-copied on the way in and out so callers
can never mutate stored state by accident.
"""

import copy
import threading
from collections import defaultdict
from typing import Any

from auditflow.store.base import (
    BatchWrite,
    DocumentStore,
    NotFoundError,
    QueryFilter,
    QueryOrder,
)


def _matches(document: dict[str, Any], flt: QueryFilter) -> bool:
    """Evaluate a single filter against a document."""
    value = document.get(flt.field)
    op = flt.operator

    if op == "eq":
        return value == flt.value
    if op == "ne":
        return value != flt.value
    if op == "in":
        return value in flt.value
    if op == "contains":
        if value is None:
            return False
        return flt.value in value

    # Range operators never match missing values
    if value is None:
        return False
    try:
        if op == "gt":
            return value > flt.value
        if op == "gte":
            return value >= flt.value
        if op == "lt":
            return value < flt.value
        if op == "lte":
            return value <= flt.value
    except TypeError:
        return False
    return False


class MemoryDocumentStore(DocumentStore):
    """
    Thread-safe dict-backed document store.

    Example:
        store = MemoryDocumentStore()
        await store.set("audit-logs", "audit-1", {"action": "auth.login"})
        docs = await store.query(
            "audit-logs",
            filters=[QueryFilter("action", "eq", "auth.login")],
        )
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._lock = threading.RLock()

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    async def set(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._collections[collection][doc_id] = copy.deepcopy(document)

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            self._apply_update(collection, doc_id, fields)

    async def query(
        self,
        collection: str,
        filters: list[QueryFilter] | None = None,
        order_by: list[QueryOrder] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            documents = [
                doc
                for doc in self._collections.get(collection, {}).values()
                if all(_matches(doc, f) for f in filters or [])
            ]
            # Stable sorts applied last-key-first give multi-key ordering
            for order in reversed(order_by or []):
                documents.sort(
                    key=lambda d, f=order.field: (d.get(f) is None, d.get(f)),
                    reverse=not order.ascending,
                )
            if limit is not None:
                documents = documents[:limit]
            return copy.deepcopy(documents)

    async def write_batch(self, writes: list[BatchWrite]) -> None:
        with self._lock:
            # Validate every update first so a failure leaves nothing applied
            for write in writes:
                if write.is_update and write.doc_id not in self._collections.get(
                    write.collection, {}
                ):
                    raise NotFoundError(
                        message=f"Document not found: {write.collection}/{write.doc_id}",
                        key=f"{write.collection}/{write.doc_id}",
                    )
            for write in writes:
                if write.is_update:
                    self._apply_update(write.collection, write.doc_id, write.fields or {})
                else:
                    self._collections[write.collection][write.doc_id] = copy.deepcopy(
                        write.document or {}
                    )

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _apply_update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        documents = self._collections.get(collection, {})
        if doc_id not in documents:
            raise NotFoundError(
                message=f"Document not found: {collection}/{doc_id}",
                key=f"{collection}/{doc_id}",
            )
        documents[doc_id].update(copy.deepcopy(fields))

    def collections(self) -> list[str]:
        """List collection paths that hold at least one document."""
        with self._lock:
            return sorted(name for name, docs in self._collections.items() if docs)

    def count(self, collection: str) -> int:
        """Number of documents in a collection."""
        with self._lock:
            return len(self._collections.get(collection, {}))
