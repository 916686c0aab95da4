"""End-to-end tests for the audit log service."""

import asyncio

import pytest

from auditflow.core.config import AuditFlowConfig
from auditflow.core.context import Actor, request_context
from auditflow.core.errors import (
    AlertNotFoundError,
    BuildError,
    ExportNotConfiguredError,
    ProcessingTimeoutError,
    ResourceProcessingError,
)
from auditflow.models import AUDIT_LOGS_COLLECTION, AuditEvent, EventStatus
from auditflow.processing.queue import DEAD_LETTER_COLLECTION
from auditflow.processing.resources import ResourceKind
from auditflow.processing.statistics import STATISTICS_COLLECTION
from auditflow.security.alerts import ALERTS_COLLECTION
from auditflow.store.memory import MemoryDocumentStore

STAFF = Actor("u-1", "u1@example.com", tenant_id="t-1")


def boom(event):
    raise RuntimeError("processor exploded")


class SlowStore(MemoryDocumentStore):
    def __init__(self, delay: float = 1.0):
        super().__init__()
        self.delay = delay

    async def write_batch(self, writes):
        await asyncio.sleep(self.delay)
        await super().write_batch(writes)


class RecordingExporter:
    def __init__(self):
        self.calls = []

    async def export(self, format, events, statistics, alerts):
        self.calls.append((format, events, statistics, alerts))
        return b"report"


class TestQueueToStore:
    """Events flow from the queue into the store."""

    @pytest.mark.asyncio
    async def test_normal_event_is_queued_until_drain(self, make_service, store):
        service = make_service()
        with request_context(STAFF):
            event_id = await service.log_event("document.view", {"resource": "document"})

        assert service.pending_count == 1
        assert await store.get(AUDIT_LOGS_COLLECTION, event_id) is None

        assert await service.drain() == 1
        assert service.pending_count == 0

        doc = await store.get(AUDIT_LOGS_COLLECTION, event_id)
        assert doc["status"] == "processed"
        assert doc["processed_at"] is not None
        assert doc["enrichment"]["resource_kind"] == "document"
        assert doc["security_context"]["threat_level"] == "low"
        assert service.verify_event(doc) is True

    @pytest.mark.asyncio
    async def test_scoped_copies(self, make_service, store):
        service = make_service()
        with request_context(STAFF):
            event_id = await service.log_event(
                "document.view", {"resource": "document", "factory_id": "f-1"}
            )
        await service.drain()

        for collection in (
            AUDIT_LOGS_COLLECTION,
            "tenants/t-1/audit-logs",
            "factories/f-1/audit-logs",
        ):
            doc = await store.get(collection, event_id)
            assert doc["status"] == "processed"
            assert doc["security_context"] is not None

    @pytest.mark.asyncio
    async def test_drain_keeps_enqueue_order(self, make_service, clock):
        service = make_service()
        ids = []
        for i in range(5):
            ids.append(await service.log_event(f"step.{i}"))
            clock.advance(seconds=1)
        await service.drain()

        assert [e["id"] for e in reversed(service.search())] == ids

    @pytest.mark.asyncio
    async def test_builder_errors_reach_caller(self, make_service):
        service = make_service()
        with pytest.raises(BuildError):
            await service.log_event("")
        assert service.pending_count == 0

    @pytest.mark.asyncio
    async def test_caller_mutation_after_logging(self, make_service, store):
        service = make_service()
        details = {"field": "salary", "old": 100}
        event_id = await service.log_event("user.update", {"resource": "user", "details": details})

        details["old"] = 999
        await service.drain()

        doc = await store.get(AUDIT_LOGS_COLLECTION, event_id)
        assert doc["metadata"]["details"] == {"field": "salary", "old": 100}
        assert service.verify_event(doc) is True

    @pytest.mark.asyncio
    async def test_search_with_iso_bounds(self, make_service):
        service = make_service()
        await service.log_event("auth.login")
        await service.drain()

        assert len(service.search("", {"start": "2026-03-01T00:00:00+00:00"})) == 1
        assert service.search("", {"end": "2026-03-01T00:00:00Z"}) == []

    @pytest.mark.asyncio
    async def test_tampered_stored_event_fails_verification(self, make_service, store):
        service = make_service()
        event_id = await service.log_event("document.view")
        await service.drain()

        doc = await store.get(AUDIT_LOGS_COLLECTION, event_id)
        doc["user_id"] = "someone-else"
        assert service.verify_event(doc) is False
        assert service.verify_event(AuditEvent.from_dict(doc)) is False


class TestPriorityBypass:
    """High-priority events skip the queue."""

    @pytest.mark.asyncio
    async def test_processed_before_return(self, make_service, store):
        service = make_service()
        with request_context(STAFF):
            event_id = await service.log_event("auth.login", priority="high")

        assert service.pending_count == 0
        doc = await store.get(AUDIT_LOGS_COLLECTION, event_id)
        assert doc["status"] == "processed"

        # Not processed a second time by the drain
        assert await service.drain() == 0
        assert service.get_statistics(window="1d").total_events == 1

    @pytest.mark.asyncio
    async def test_failure_raised_and_requeued(self, make_service):
        service = make_service()
        service.processor.resources.register(ResourceKind.GENERIC, boom)

        with pytest.raises(ResourceProcessingError):
            await service.log_event("auth.login", priority="high")
        assert service.pending_count == 1

    @pytest.mark.asyncio
    async def test_timeout(self, make_service):
        config = AuditFlowConfig()
        config.queue.processing_timeout_seconds = 0.05
        service = make_service(config, store=SlowStore())

        with pytest.raises(ProcessingTimeoutError):
            await service.log_event("auth.login", priority="high")
        assert service.pending_count == 1


class TestRetry:
    """Bounded retry and dead-lettering."""

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, make_service, flaky_store, clock):
        store = flaky_store(failures=1)
        service = make_service(store=store)
        event_id = await service.log_event("document.view", {"resource": "document"})

        assert await service.drain() == 0
        assert service.pending_count == 1

        # Still backing off
        assert await service.drain() == 0

        clock.advance(seconds=1)
        assert await service.drain() == 1
        assert (await store.get(AUDIT_LOGS_COLLECTION, event_id))["status"] == "processed"
        # The failed attempt was not double counted
        assert service.get_statistics(window="1d").total_events == 1
        assert len(service.search()) == 1

    @pytest.mark.asyncio
    async def test_dead_letter_after_max_retries(self, make_service, store, clock):
        config = AuditFlowConfig()
        config.queue.max_retries = 1
        service = make_service(config)
        service.processor.resources.register(ResourceKind.GENERIC, boom)

        event_id = await service.log_event("report.generate")
        await service.drain()
        assert service.pending_count == 1

        clock.advance(seconds=1)
        await service.drain()
        assert service.pending_count == 0

        doc = await store.get(DEAD_LETTER_COLLECTION, event_id)
        assert doc["attempts"] == 2
        assert doc["status"] == "error"
        assert "processor exploded" in doc["last_error"]
        assert await store.get(AUDIT_LOGS_COLLECTION, event_id) is None

    @pytest.mark.asyncio
    async def test_dead_letter_kept_in_memory_when_store_fails(self, make_service, flaky_store):
        config = AuditFlowConfig()
        config.queue.max_retries = 0
        store = flaky_store(fail_collections=(DEAD_LETTER_COLLECTION,))
        service = make_service(config, store=store)
        service.processor.resources.register(ResourceKind.GENERIC, boom)

        event_id = await service.log_event("report.generate")
        await service.drain()

        assert [d["event"]["id"] for d in service.dead_letters] == [event_id]
        assert service.pending_count == 0


class TestThreatAlerts:
    """Detection results reach events and alerts."""

    @pytest.mark.asyncio
    async def test_failed_login_alert(self, make_service):
        config = AuditFlowConfig()
        config.detection.alert_min_severity = "medium"
        service = make_service(config)

        with request_context(STAFF):
            ids = [await service.log_event("auth.failed-login") for _ in range(5)]
        await service.drain()

        alerts = await service.get_alerts()
        assert [(a.type, a.severity.value) for a in alerts] == [("failed-login", "medium")]
        assert alerts[0].audit_event_id == ids[-1]
        assert alerts[0].user_id == "u-1"

    @pytest.mark.asyncio
    async def test_medium_finding_below_default_threshold(self, make_service, store):
        service = make_service()
        with request_context(STAFF):
            ids = [await service.log_event("auth.failed-login") for _ in range(5)]
        await service.drain()

        assert await service.get_alerts() == []
        doc = await store.get(AUDIT_LOGS_COLLECTION, ids[-1])
        assert doc["security_context"]["threat_level"] == "medium"
        assert doc["security_context"]["risk_factors"][0]["type"] == "failed-login"

    @pytest.mark.asyncio
    async def test_data_violation_alert(self, make_service, store):
        service = make_service()
        with request_context(STAFF):
            event_id = await service.log_event(
                "document.view",
                {"resource": "document", "confidentiality": "restricted"},
            )
        await service.drain()

        alerts = await service.get_alerts(tenant_id="t-1", severity="critical")
        assert len(alerts) == 1
        assert alerts[0].type == "data-violation"
        assert alerts[0].audit_event_id == event_id

        doc = await store.get("tenants/t-1/audit-logs", event_id)
        assert doc["security_context"]["threat_level"] == "critical"

    @pytest.mark.asyncio
    async def test_super_admin_not_flagged(self, make_service):
        service = make_service()
        with request_context(Actor("root-1", tenant_id="t-1")):
            await service.log_event(
                "admin.document.view",
                {"resource": "document", "confidentiality": "restricted"},
            )
        await service.drain()
        assert await service.get_alerts() == []

    @pytest.mark.asyncio
    async def test_acknowledge_alert(self, make_service, store):
        service = make_service()
        with request_context(STAFF):
            await service.log_event("admin.users.delete", priority="high")

        alert = (await service.get_alerts())[0]
        acked = await service.acknowledge_alert(alert.id, by="secops")
        assert acked.acknowledged is True
        assert (await store.get(ALERTS_COLLECTION, alert.id))["acknowledged_by"] == "secops"

        with pytest.raises(AlertNotFoundError):
            await service.acknowledge_alert("alert-unknown", by="secops")


class TestIdempotence:
    """Reprocessing an event changes nothing."""

    @pytest.mark.asyncio
    async def test_reprocess_same_event(self, make_service, store):
        service = make_service()
        with request_context(STAFF):
            event = await service.builder.build(
                "admin.settings.update", {"confidentiality": "restricted"}
            )

        await service.processor.process(event)
        await service.processor.process(event)

        assert service.get_statistics(window="all").total_events == 1
        assert len(service.search()) == 1
        assert store.count(AUDIT_LOGS_COLLECTION) == 1
        assert store.count(ALERTS_COLLECTION) == 2  # one per rule
        assert event.status == EventStatus.PENDING


class TestQueries:
    """Search, statistics and export through the service."""

    @pytest.mark.asyncio
    async def test_search(self, make_service):
        service = make_service()
        with request_context(STAFF):
            await service.log_event("document.view", {"resource": "document", "title": "Q3 audit"})
            await service.log_event("case.create", {"resource": "case"})
        await service.drain()

        results = service.search("q3", {"resource": "document"})
        assert [r["action"] for r in results] == ["document.view"]
        assert results[0]["metadata"]["title"] == "Q3 audit"
        assert service.search("", {"limit": 1})[0]["action"] in {"document.view", "case.create"}

    @pytest.mark.asyncio
    async def test_statistics_windows(self, make_service, clock):
        service = make_service()
        with request_context(STAFF):
            await service.log_event("auth.login")
            await service.drain()
            clock.advance(days=3)
            await service.log_event("auth.login")
            await service.drain()

        assert service.get_statistics(window="1d").total_events == 1
        assert service.get_statistics(window="7d").total_events == 2
        assert service.get_statistics(tenant_id="t-1", window="7d").by_user == {"u-1": 2}
        with pytest.raises(ValueError):
            service.get_statistics(window="forever")

    @pytest.mark.asyncio
    async def test_export_requires_exporter(self, make_service):
        with pytest.raises(ExportNotConfiguredError):
            await make_service().export_logs("csv")

    @pytest.mark.asyncio
    async def test_export_delegates(self, make_service):
        exporter = RecordingExporter()
        service = make_service(exporter=exporter)
        with request_context(STAFF):
            await service.log_event("admin.export", priority="high")

        assert await service.export_logs("pdf", options={"tenant_id": "t-1"}) == b"report"
        format, events, statistics, alerts = exporter.calls[0]
        assert format == "pdf"
        assert [e["action"] for e in events] == ["admin.export"]
        assert statistics.total_events == 1
        assert [a.type for a in alerts] == ["privilege-escalation"]

    @pytest.mark.asyncio
    async def test_lineage_recorded(self, make_service, store):
        service = make_service()
        await service.log_event(
            "document.approve",
            {"resource": "document", "data_lineage": {"source": "doc-1", "target": "report-1"}},
        )
        await service.drain()

        assert store.count("data-lineage") == 1
        assert [e.target for e in service.lineage.edges_from("doc-1")] == ["report-1"]


class TestLifecycle:
    """Service start/stop."""

    @pytest.mark.asyncio
    async def test_stop_during_drain_keeps_events(self, make_service):
        config = AuditFlowConfig()
        config.queue.drain_interval_seconds = 0.01
        slow = SlowStore(delay=0.05)
        service = make_service(config, store=slow)

        ids = [await service.log_event("document.view") for _ in range(3)]
        await service.start()
        await asyncio.sleep(0.03)  # first batch write in flight
        await service.stop()

        assert service.pending_count == 0
        assert service.dead_letters == []
        for event_id in ids:
            assert await slow.get(AUDIT_LOGS_COLLECTION, event_id) is not None

    @pytest.mark.asyncio
    async def test_cancelled_drain_restores_batch(self, make_service):
        slow = SlowStore(delay=0.5)
        service = make_service(store=slow)
        ids = [await service.log_event("document.view") for _ in range(3)]

        task = asyncio.create_task(service.drain())
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert [e.id for e in service.queue.pending()] == ids

        slow.delay = 0
        assert await service.drain() == 3
        assert slow.count(AUDIT_LOGS_COLLECTION) == 3
        assert service.get_statistics(window="1d").total_events == 3

    @pytest.mark.asyncio
    async def test_stop_drains(self, make_service, store):
        config = AuditFlowConfig()
        config.queue.drain_interval_seconds = 60
        service = make_service(config)

        await service.start()
        assert service.running
        event_id = await service.log_event("auth.logout")
        await service.stop()

        assert not service.running
        assert service.pending_count == 0
        assert await store.get(AUDIT_LOGS_COLLECTION, event_id) is not None

    @pytest.mark.asyncio
    async def test_background_drain(self, make_service, store):
        config = AuditFlowConfig()
        config.queue.drain_interval_seconds = 0.01
        service = make_service(config)

        await service.start()
        event_id = await service.log_event("auth.logout")
        for _ in range(100):
            if service.pending_count == 0:
                break
            await asyncio.sleep(0.01)
        await service.stop()

        assert await store.get(AUDIT_LOGS_COLLECTION, event_id) is not None

    @pytest.mark.asyncio
    async def test_snapshots(self, make_service, store):
        config = AuditFlowConfig()
        config.statistics.persist_snapshots = True
        service = make_service(config)

        await service.start()
        await service.log_event("auth.login")
        await service.stop()
        assert store.count(STATISTICS_COLLECTION) == 1

        restarted = make_service(config)
        await restarted.start()
        assert restarted.get_statistics(window="1d").total_events == 1
        await restarted.stop()

    @pytest.mark.asyncio
    async def test_compact(self, make_service, clock):
        service = make_service()
        await service.log_event("auth.login")
        await service.drain()

        clock.advance(days=401)
        assert service.compact() == 1
        assert service.search() == []
