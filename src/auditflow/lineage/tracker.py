"""
Data lineage tracking.

Records source -> target data-flow edges carried by audit events, keeps
them in an in-memory adjacency graph for path queries, and persists them
to the ``data-lineage`` collection.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Mapping

from auditflow.models import AuditEvent, LineageRecord, generate_id, utc_now
from auditflow.store.base import BatchWrite, DocumentStore, QueryFilter

logger = logging.getLogger(__name__)

LINEAGE_COLLECTION = "data-lineage"

# Downstream effects each action is expected to produce, per resource family.
LINEAGE_RULES: dict[str, dict[str, list[str]]] = {
    "document": {
        "document.upload": ["document.created"],
        "document.update": ["document.modified"],
        "document.delete": ["document.deleted"],
        "document.approve": ["document.approved", "workflow.advanced"],
    },
    "case": {
        "case.create": ["case.created"],
        "case.assign": ["case.assigned", "workflow.advanced"],
        "case.resolve": ["case.resolved", "workflow.completed"],
    },
    "cap": {
        "cap.create": ["cap.created"],
        "cap.approve": ["cap.approved", "workflow.advanced"],
        "cap.complete": ["cap.completed", "workflow.completed"],
    },
}


class LineageTracker:
    """
    Tracks data lineage edges attached to audit events.

    Example:
        tracker = LineageTracker(store)
        record = tracker.build_record({"source": "doc-1", "target": "report-7"})
        ...
        await tracker.record(event)          # event.data_lineage == record
        path = tracker.find_path("doc-1", "report-7")
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._clock = clock
        self._graph: dict[str, list[LineageRecord]] = defaultdict(list)
        self._known_ids: set[str] = set()
        self._lock = threading.Lock()

    def build_record(self, descriptor: Mapping[str, Any]) -> LineageRecord | None:
        """
        Turn a caller-supplied lineage descriptor into a record.

        Pure: nothing is stored until record() is called. Descriptors
        without a source or target are ignored.
        """
        source = descriptor.get("source")
        target = descriptor.get("target")
        if not source or not target:
            logger.warning(f"Ignoring lineage descriptor without source/target: {descriptor}")
            return None

        now = self._clock()
        return LineageRecord(
            id=generate_id("lineage", now, random_chars=16),
            timestamp=now,
            source=str(source),
            target=str(target),
            relationship=descriptor.get("relationship"),
            metadata=dict(descriptor.get("metadata") or {}),
            confidence=descriptor.get("confidence") or "high",
        )

    async def record(self, event: AuditEvent) -> LineageRecord | None:
        """Add an event's lineage edge to the graph and persist it."""
        lineage = event.data_lineage
        if lineage is None:
            return None

        self._add_to_graph(lineage)
        await self._store.set(LINEAGE_COLLECTION, lineage.id, lineage.to_dict())
        await self._confirm_downstream(lineage)
        logger.debug(f"Recorded lineage {lineage.source} -> {lineage.target} for {event.id}")
        return lineage

    async def _confirm_downstream(self, lineage: LineageRecord) -> None:
        """Upgrade stored edges leaving this edge's target to 'confirmed'."""
        related = await self._store.query(
            LINEAGE_COLLECTION,
            filters=[
                QueryFilter("source", "eq", lineage.target),
                QueryFilter("confidence", "eq", "high"),
            ],
        )
        if not related:
            return

        await self._store.write_batch(
            [
                BatchWrite(LINEAGE_COLLECTION, doc["id"], fields={"confidence": "confirmed"})
                for doc in related
            ]
        )
        with self._lock:
            confirmed = {doc["id"] for doc in related}
            for edge in self._graph.get(lineage.target, []):
                if edge.id in confirmed:
                    edge.confidence = "confirmed"

    def _add_to_graph(self, lineage: LineageRecord) -> None:
        with self._lock:
            if lineage.id in self._known_ids:
                return
            self._known_ids.add(lineage.id)
            self._graph[lineage.source].append(lineage)

    def edges_from(self, source: str) -> list[LineageRecord]:
        """Outgoing edges of a node."""
        with self._lock:
            return list(self._graph.get(source, []))

    def find_path(self, source: str, target: str, max_depth: int = 5) -> list[LineageRecord]:
        """
        Find a chain of edges leading from source to target.

        Depth-first, bounded by max_depth hops. Returns an empty list when
        no path exists (or source == target).
        """
        visited: set[str] = set()

        def walk(current: str, depth: int) -> list[LineageRecord] | None:
            if current == target:
                return []
            if depth >= max_depth or current in visited:
                return None
            visited.add(current)
            for edge in self.edges_from(current):
                rest = walk(edge.target, depth + 1)
                if rest is not None:
                    return [edge, *rest]
            return None

        return walk(source, 0) or []

    @staticmethod
    def expected_effects(action: str) -> list[str]:
        """Downstream lineage events an action is expected to produce."""
        family = action.split(".", 1)[0]
        return list(LINEAGE_RULES.get(family, {}).get(action, []))
