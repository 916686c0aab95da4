"""Shared fixtures for auditflow tests."""

from datetime import datetime, timedelta, timezone

import pytest

from auditflow.core.config import AuditFlowConfig
from auditflow.events.builder import StaticActorDirectory
from auditflow.events.hashing import seal_event
from auditflow.models import AuditEvent, generate_id
from auditflow.service import AuditLogService
from auditflow.store.base import StorageError
from auditflow.store.memory import MemoryDocumentStore


class FakeClock:
    """Controllable clock; call it to read the current time."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FlakyStore(MemoryDocumentStore):
    """Memory store whose batch writes fail a set number of times."""

    def __init__(self, failures: int = 0, fail_collections: tuple[str, ...] = ()):
        super().__init__()
        self.failures = failures
        self.fail_collections = fail_collections

    async def write_batch(self, writes):
        if self.failures > 0:
            self.failures -= 1
            raise StorageError("simulated batch failure")
        await super().write_batch(writes)

    async def set(self, collection, doc_id, document):
        if collection in self.fail_collections:
            raise StorageError(f"simulated write failure on {collection}")
        await super().set(collection, doc_id, document)


@pytest.fixture
def clock():
    """Clock pinned to 2026-03-10 12:00 UTC."""
    return FakeClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def flaky_store():
    """Factory for stores that fail on demand."""
    return FlakyStore


@pytest.fixture
def directory():
    return StaticActorDirectory(
        {
            "u-1": "hr-staff",
            "u-2": "auditor",
            "root-1": "super-admin",
        }
    )


@pytest.fixture
def make_service(store, directory, clock):
    """Factory for services sharing the test store, directory and clock."""

    def _make(config: AuditFlowConfig | None = None, **kwargs) -> AuditLogService:
        kwargs.setdefault("actor_directory", directory)
        kwargs.setdefault("clock", clock)
        return AuditLogService(kwargs.pop("store", store), config, **kwargs)

    return _make


@pytest.fixture
def make_event(clock):
    """Factory for sealed events without going through the builder."""

    def _make(action: str = "document.view", **fields) -> AuditEvent:
        now = fields.pop("timestamp", clock())
        event = AuditEvent(
            id=fields.pop("id", generate_id("audit", now)),
            timestamp=now,
            action=action,
            resource=fields.pop("resource", "document"),
            user_id=fields.pop("user_id", "u-1"),
            user_email=fields.pop("user_email", "u1@example.com"),
            user_role=fields.pop("user_role", "hr-staff"),
            **fields,
        )
        return seal_event(event)

    return _make
