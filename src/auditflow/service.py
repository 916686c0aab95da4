"""
Audit Log Service - Caller-facing API of the audit pipeline.

Provides:
- Event logging (queued, or immediate for high priority)
- Background draining with bounded retry and dead-lettering
- Search, statistics and security alert access
- Hash verification and export delegation
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from auditflow.core.config import AuditFlowConfig
from auditflow.core.context import ContextProvider
from auditflow.core.errors import ExportNotConfiguredError
from auditflow.events.builder import ActorDirectory, EventBuilder, StoreActorDirectory
from auditflow.events.hashing import verify_event_hash
from auditflow.lineage.tracker import LineageTracker
from auditflow.models import AuditEvent, EventPriority, SecurityAlert, utc_now
from auditflow.processing.indexer import EventIndexer, SearchOptions
from auditflow.processing.processor import EventProcessor
from auditflow.processing.queue import DEAD_LETTER_COLLECTION, IngestionQueue, QueueEntry
from auditflow.processing.statistics import StatisticsAggregator, Stats
from auditflow.security.alerts import AlertManager
from auditflow.security.detector import ThreatDetector
from auditflow.store.base import DocumentStore, StorageError

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditExporter(Protocol):
    """Renders gathered audit data into a report format (csv, pdf, ...)."""

    async def export(
        self,
        format: str,
        events: list[dict[str, Any]],
        statistics: Stats,
        alerts: list[SecurityAlert],
    ) -> Any: ...


# =============================================================================
# AUDIT LOG SERVICE
# =============================================================================


class AuditLogService:
    """
    Audit pipeline facade.

    Builds events at call sites, queues them, and drains the queue in the
    background through the event processor.

    Example:
        service = AuditLogService(MemoryDocumentStore())
        await service.start()

        with request_context(Actor("u-1", "ana@example.com", tenant_id="t-1")):
            await service.log_event("document.approve", {"resource": "document"})

        await service.stop()  # final drain
        print(service.get_statistics(window="1d").total_events)
    """

    def __init__(
        self,
        store: DocumentStore,
        config: AuditFlowConfig | None = None,
        *,
        actor_directory: ActorDirectory | None = None,
        context_provider: ContextProvider | None = None,
        exporter: AuditExporter | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or AuditFlowConfig()
        self._store = store
        self._clock = clock or utc_now
        self._exporter = exporter

        self.lineage = LineageTracker(store, self._clock)
        self.builder = EventBuilder(
            actor_directory or StoreActorDirectory(store),
            context_provider=context_provider,
            lineage_tracker=self.lineage,
            clock=self._clock,
        )
        self.queue = IngestionQueue.from_config(self.config.queue, self._clock)
        self.indexer = EventIndexer()
        self.statistics = StatisticsAggregator(
            retention_days=self.config.statistics.retention_days,
            clock=self._clock,
        )
        self.detector = ThreatDetector(store, self.config.detection, clock=self._clock)
        self.alerts = AlertManager(
            store,
            recent_limit=self.config.alerts.recent_limit,
            clock=self._clock,
        )
        self.processor = EventProcessor(
            store,
            self.indexer,
            self.statistics,
            self.detector,
            self.alerts,
            lineage=self.lineage,
            alert_min_severity=self.config.detection.alert_min_severity,
            timeout_seconds=self.config.queue.processing_timeout_seconds,
            clock=self._clock,
        )

        self._drain_lock = asyncio.Lock()
        self._drain_task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._dead_letters: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the background drain task."""
        if self._started:
            return

        if self.config.statistics.persist_snapshots:
            await self.statistics.load_snapshot(self._store)

        self._stopping.clear()
        self._drain_task = asyncio.create_task(self._drain_loop())
        self._started = True
        logger.info(
            f"AuditLogService started (drain every {self.config.queue.drain_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """
        Stop the drain task and process whatever is still due.

        A drain already in progress is allowed to finish.
        """
        if not self._started:
            return

        self._stopping.set()
        if self._drain_task:
            await self._drain_task
            self._drain_task = None

        await self.drain()

        if self.config.statistics.persist_snapshots:
            await self.statistics.save_snapshot(self._store)

        self._started = False
        logger.info(f"AuditLogService stopped ({len(self.queue)} events still pending)")

    async def _drain_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self.config.queue.drain_interval_seconds
                )
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.drain()
                self.compact()
            except Exception as e:
                logger.error(f"Audit drain failed: {e}")

    # =========================================================================
    # LOGGING
    # =========================================================================

    async def log_event(
        self,
        action: str,
        metadata: Mapping[str, Any] | None = None,
        priority: EventPriority | str = EventPriority.NORMAL,
    ) -> str:
        """
        Record an audit event.

        Normal-priority events are queued for the next drain and never
        report processing failures. High-priority events are processed
        before returning; a failure is raised to the caller and the event
        is queued for retry.

        Returns:
            The new event's id.

        Raises:
            BuildError: If the event cannot be built.
        """
        event = await self.builder.build(action, metadata, priority)

        if event.priority is EventPriority.HIGH:
            try:
                await self.processor.process(event)
            except Exception as e:
                await self._retry_or_dead_letter(QueueEntry(event=event), e)
                raise
        else:
            self.queue.enqueue(event)

        return event.id

    async def drain(self) -> int:
        """
        Process every due queued event once, in enqueue order.

        Returns:
            Number of events processed successfully.
        """
        async with self._drain_lock:
            entries = self.queue.take_due()
            processed = 0
            for i, entry in enumerate(entries):
                try:
                    await self.processor.process(entry.event)
                    processed += 1
                except asyncio.CancelledError:
                    # Reprocessing the interrupted event is idempotent
                    self.queue.restore(entries[i:])
                    raise
                except Exception as e:
                    await self._retry_or_dead_letter(entry, e)

        if entries:
            logger.debug(f"Drained {processed}/{len(entries)} audit events")
        return processed

    async def _retry_or_dead_letter(self, entry: QueueEntry, error: Exception) -> None:
        if self.queue.requeue(entry, f"{type(error).__name__}: {error}"):
            return

        document = entry.to_dead_letter(self._clock())
        try:
            await self._store.set(DEAD_LETTER_COLLECTION, entry.event.id, document)
            logger.info(
                f"Dead-lettered audit event {entry.event.id} after {entry.attempts} attempts"
            )
        except StorageError as e:
            logger.error(f"Failed to dead-letter audit event {entry.event.id}: {e}")
            with self._lock:
                self._dead_letters.append(document)

    def compact(self) -> int:
        """Apply statistics retention and prune the index to the same horizon."""
        removed = self.statistics.compact()
        cutoff = self.statistics.retention_cutoff()
        if cutoff is not None:
            self.indexer.prune(cutoff)
        return removed

    @property
    def pending_count(self) -> int:
        """Events waiting in the queue (including those backing off)."""
        return len(self.queue)

    @property
    def dead_letters(self) -> list[dict[str, Any]]:
        """Dead-lettered events that could not be written to the store."""
        with self._lock:
            return list(self._dead_letters)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def search(
        self,
        query: str = "",
        options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Event summaries matching a free-text query, newest first."""
        if not isinstance(options, SearchOptions):
            options = SearchOptions.from_dict(dict(options) if options else None)
        return [entry.to_dict() for entry in self.indexer.search(query, options)]

    def get_statistics(self, tenant_id: str | None = None, window: str = "30d") -> Stats:
        """Counters summed over a window (1d, 7d, 30d, 90d or all)."""
        return self.statistics.query(tenant_id=tenant_id, window=window)

    async def get_alerts(
        self,
        tenant_id: str | None = None,
        severity: str = "all",
    ) -> list[SecurityAlert]:
        return await self.alerts.query(tenant_id=tenant_id, severity=severity)

    async def acknowledge_alert(self, alert_id: str, by: str) -> SecurityAlert:
        """
        Acknowledge a security alert.

        Raises:
            AlertNotFoundError: If the alert does not exist.
        """
        return await self.alerts.acknowledge(alert_id, by)

    async def export_logs(
        self,
        format: str,
        query: str = "",
        options: SearchOptions | Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Gather matching events, statistics and alerts for an exporter.

        Raises:
            ExportNotConfiguredError: If the service has no exporter.
        """
        if self._exporter is None:
            raise ExportNotConfiguredError(f"No exporter configured for format '{format}'")

        if not isinstance(options, SearchOptions):
            options = SearchOptions.from_dict(dict(options) if options else None)
        events = self.search(query, options)
        statistics = self.get_statistics(tenant_id=options.tenant_id, window="all")
        alerts = await self.get_alerts(tenant_id=options.tenant_id)

        logger.info(f"Exporting {len(events)} audit events as {format}")
        return await self._exporter.export(format, events, statistics, alerts)

    def verify_event(self, event: AuditEvent | Mapping[str, Any]) -> bool:
        """Check an event (or its stored dict) against its integrity hash."""
        if not isinstance(event, AuditEvent):
            event = AuditEvent.from_dict(dict(event))
        return verify_event_hash(event)
