"""
Event processor.

Takes one built event through enrichment, indexing, statistics,
persistence, lineage and threat detection. Work happens on a copy so a
failed attempt leaves the queued original untouched for its retry.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from auditflow.core.errors import (
    PersistenceError,
    ProcessingTimeoutError,
    ResourceProcessingError,
)
from auditflow.lineage.tracker import LineageTracker
from auditflow.models import (
    AuditEvent,
    ThreatFinding,
    ThreatSeverity,
    event_collections,
    utc_now,
)
from auditflow.processing.indexer import EventIndexer
from auditflow.processing.resources import ResourceProcessorRegistry
from auditflow.processing.statistics import StatisticsAggregator
from auditflow.security.alerts import AlertManager
from auditflow.security.detector import ThreatDetector
from auditflow.store.base import BatchWrite, DocumentStore, StorageError

logger = logging.getLogger(__name__)


class EventProcessor:
    """
    Processes audit events one at a time.

    Example:
        processor = EventProcessor(store, indexer, statistics, detector, alerts)
        processed = await processor.process(event)
        assert processed.status == EventStatus.PROCESSED
    """

    def __init__(
        self,
        store: DocumentStore,
        indexer: EventIndexer,
        statistics: StatisticsAggregator,
        detector: ThreatDetector,
        alerts: AlertManager,
        lineage: LineageTracker | None = None,
        resources: ResourceProcessorRegistry | None = None,
        alert_min_severity: ThreatSeverity | str = ThreatSeverity.HIGH,
        timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._indexer = indexer
        self._statistics = statistics
        self._detector = detector
        self._alerts = alerts
        self._lineage = lineage
        self.resources = resources or ResourceProcessorRegistry()
        self.alert_min_severity = ThreatSeverity(alert_min_severity)
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    async def process(self, event: AuditEvent) -> AuditEvent:
        """
        Process a copy of an event within the time budget.

        Returns:
            The processed copy.

        Raises:
            ResourceProcessingError: If enrichment fails.
            PersistenceError: If a store write fails.
            ProcessingTimeoutError: If the budget is exceeded.
        """
        try:
            return await asyncio.wait_for(
                self._process(event.copy()), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ProcessingTimeoutError(
                f"Processing exceeded {self.timeout_seconds}s", event_id=event.id
            ) from e

    async def _process(self, event: AuditEvent) -> AuditEvent:
        try:
            event = self.resources.apply(event)
        except ResourceProcessingError as e:
            event.mark_error(str(e))
            raise

        self._indexer.add(event)
        self._statistics.record(event)
        event.mark_processed(self._clock())

        await self._persist(event)

        if self._lineage is not None and event.data_lineage is not None:
            try:
                await self._lineage.record(event)
            except StorageError as e:
                raise PersistenceError(f"Lineage write failed: {e}", event_id=event.id) from e

        findings = await self._attach_security_context(event)
        for finding in findings:
            if finding.severity.rank >= self.alert_min_severity.rank:
                await self._raise_alert(event, finding)

        logger.debug(f"Processed {event.id} ({event.action} on {event.resource})")
        return event

    async def _persist(self, event: AuditEvent) -> None:
        """Write the event to its global and scoped collections in one batch."""
        document = event.to_dict()
        writes = [
            BatchWrite(collection, event.id, document=document)
            for collection in event_collections(event.tenant_id, event.factory_id)
        ]
        try:
            await self._store.write_batch(writes)
        except StorageError as e:
            raise PersistenceError(f"Failed to persist event: {e}", event_id=event.id) from e

    async def _attach_security_context(self, event: AuditEvent) -> list[ThreatFinding]:
        findings, context = await self._detector.assess(event)
        event.security_context = context

        fields = {"security_context": context.to_dict()}
        writes = [
            BatchWrite(collection, event.id, fields=fields)
            for collection in event_collections(event.tenant_id, event.factory_id)
        ]
        try:
            await self._store.write_batch(writes)
        except StorageError as e:
            raise PersistenceError(
                f"Failed to store security context: {e}", event_id=event.id
            ) from e
        return findings

    async def _raise_alert(self, event: AuditEvent, finding: ThreatFinding) -> None:
        try:
            await self._alerts.raise_alert(event, finding)
        except StorageError as e:
            raise PersistenceError(f"Failed to store alert: {e}", event_id=event.id) from e
