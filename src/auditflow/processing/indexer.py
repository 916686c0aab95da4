"""
Search index over processed audit events.

Maps (resource, action) to the events recorded under it, in processing
order, and answers filtered free-text searches with bounded results.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from auditflow.models import AuditEvent, isoformat, parse_datetime


@dataclass
class SearchOptions:
    """Filters applied to a search."""

    action: str | None = None
    resource: str | None = None
    user_id: str | None = None
    tenant_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = 100  # None means unbounded

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"Search limit must be >= 0, got {self.limit}")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SearchOptions":
        data = data or {}
        return cls(
            action=data.get("action"),
            resource=data.get("resource"),
            user_id=data.get("user_id"),
            tenant_id=data.get("tenant_id"),
            start=parse_datetime(data.get("start")),
            end=parse_datetime(data.get("end")),
            limit=data.get("limit", 100),
        )


@dataclass(frozen=True)
class IndexEntry:
    """What the index keeps about an event."""

    id: str
    timestamp: datetime
    action: str
    resource: str
    user_id: str
    tenant_id: str | None
    metadata: dict[str, Any]
    searchable_text: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> "IndexEntry":
        summary = event.summary()
        return cls(
            id=event.id,
            timestamp=event.timestamp,
            action=event.action,
            resource=event.resource,
            user_id=event.user_id,
            tenant_id=event.tenant_id,
            metadata=summary["metadata"],
            searchable_text=str(summary["metadata"]).lower(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "action": self.action,
            "resource": self.resource,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "metadata": self.metadata,
        }

    def matches(self, term: str, options: SearchOptions) -> bool:
        if options.action and self.action != options.action:
            return False
        if options.resource and self.resource != options.resource:
            return False
        if options.user_id and self.user_id != options.user_id:
            return False
        if options.tenant_id and self.tenant_id != options.tenant_id:
            return False
        if options.start and self.timestamp < options.start:
            return False
        if options.end and self.timestamp > options.end:
            return False
        if term:
            return (
                term in self.searchable_text
                or term in self.action.lower()
                or term in self.resource.lower()
            )
        return True


class EventIndexer:
    """
    (resource, action) -> events index, deduplicated by event id.

    Example:
        indexer = EventIndexer()
        indexer.add(event)
        hits = indexer.search("contract", SearchOptions(user_id="u-1", limit=10))
    """

    def __init__(self) -> None:
        self._index: dict[tuple[str, str], list[IndexEntry]] = {}
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    def add(self, event: AuditEvent) -> bool:
        """Index an event. Returns False if it was already indexed."""
        entry = IndexEntry.from_event(event)
        with self._lock:
            if entry.id in self._ids:
                return False
            self._ids.add(entry.id)
            self._index.setdefault((event.resource, event.action), []).append(entry)
            return True

    def get(self, resource: str, action: str) -> list[IndexEntry]:
        """Entries under one key, in indexing order."""
        with self._lock:
            return list(self._index.get((resource, action), []))

    def search(self, query: str = "", options: SearchOptions | None = None) -> list[IndexEntry]:
        """Matching entries, newest first, truncated to options.limit."""
        options = options or SearchOptions()
        term = (query or "").strip().lower()

        with self._lock:
            if options.resource and options.action:
                candidates = list(self._index.get((options.resource, options.action), []))
            else:
                candidates = [e for entries in self._index.values() for e in entries]

        results = [e for e in candidates if e.matches(term, options)]
        results.sort(key=lambda e: e.timestamp, reverse=True)
        if options.limit is not None:
            results = results[: options.limit]
        return results

    def prune(self, older_than: datetime) -> int:
        """Drop entries older than a cutoff. Returns how many were removed."""
        removed = 0
        with self._lock:
            for key in list(self._index):
                kept = [e for e in self._index[key] if e.timestamp >= older_than]
                dropped = len(self._index[key]) - len(kept)
                if dropped:
                    removed += dropped
                    for entry in self._index[key]:
                        if entry.timestamp < older_than:
                            self._ids.discard(entry.id)
                if kept:
                    self._index[key] = kept
                else:
                    del self._index[key]
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
