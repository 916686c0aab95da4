"""
Rolling audit statistics.

Daily counters keyed by UTC calendar date, kept globally and per tenant.
Recording is additive and idempotent per event id; queries sum the buckets
that fall inside a time window.
"""

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable

from auditflow.models import AuditEvent, utc_now
from auditflow.store.base import BatchWrite, DocumentStore

logger = logging.getLogger(__name__)

STATISTICS_COLLECTION = "audit-statistics"

# Window name -> days covered (None means unbounded)
TIME_WINDOWS: dict[str, int | None] = {
    "1d": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "all": None,
}

_COUNTERS = ("by_action", "by_resource", "by_user", "by_tenant")


def tenant_statistics_collection(tenant_id: str) -> str:
    return f"tenants/{tenant_id}/{STATISTICS_COLLECTION}"


def window_cutoff(window: str, now: datetime) -> datetime | None:
    """
    Earliest bucket midnight included in a window.

    Windows count whole UTC calendar days ending with today, so "1d" is
    today's bucket only and "7d" is today plus the six days before it.
    """
    if window not in TIME_WINDOWS:
        raise ValueError(
            f"Unknown statistics window: {window} (expected one of {', '.join(TIME_WINDOWS)})"
        )
    days = TIME_WINDOWS[window]
    if days is None:
        return None
    today = now.astimezone(timezone.utc).date()
    return _midnight((today - timedelta(days=days - 1)).isoformat())


def _midnight(day: str) -> datetime:
    return datetime.combine(date.fromisoformat(day), time.min, tzinfo=timezone.utc)


@dataclass
class DailyStatistics:
    """Counters for one UTC calendar date."""

    date: str  # YYYY-MM-DD
    total_events: int = 0
    by_action: Counter = field(default_factory=Counter)
    by_resource: Counter = field(default_factory=Counter)
    by_user: Counter = field(default_factory=Counter)
    by_tenant: Counter = field(default_factory=Counter)

    def add(self, event: AuditEvent) -> None:
        self.total_events += 1
        self.by_action[event.action] += 1
        self.by_resource[event.resource] += 1
        self.by_user[event.user_id] += 1
        if event.tenant_id:
            self.by_tenant[event.tenant_id] += 1

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"date": self.date, "total_events": self.total_events}
        for name in _COUNTERS:
            data[name] = dict(getattr(self, name))
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DailyStatistics":
        return cls(
            date=data["date"],
            total_events=int(data.get("total_events", 0)),
            by_action=Counter(data.get("by_action") or {}),
            by_resource=Counter(data.get("by_resource") or {}),
            by_user=Counter(data.get("by_user") or {}),
            by_tenant=Counter(data.get("by_tenant") or {}),
        )


@dataclass
class Stats:
    """Statistics summed over a window."""

    window: str
    tenant_id: str | None = None
    total_events: int = 0
    days: int = 0  # Buckets that contributed
    by_action: Counter = field(default_factory=Counter)
    by_resource: Counter = field(default_factory=Counter)
    by_user: Counter = field(default_factory=Counter)
    by_tenant: Counter = field(default_factory=Counter)

    def merge(self, bucket: DailyStatistics) -> None:
        self.total_events += bucket.total_events
        self.days += 1
        for name in _COUNTERS:
            getattr(self, name).update(getattr(bucket, name))

    def top(self, counter: str, n: int = 5) -> list[tuple[str, int]]:
        """Most frequent keys of one counter."""
        return getattr(self, counter).most_common(n)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "window": self.window,
            "tenant_id": self.tenant_id,
            "total_events": self.total_events,
            "days": self.days,
        }
        for name in _COUNTERS:
            data[name] = dict(getattr(self, name))
        return data


class StatisticsAggregator:
    """
    Thread-safe daily statistics.

    Example:
        stats = StatisticsAggregator(retention_days=400)
        stats.record(event)
        week = stats.query(tenant_id="t-1", window="7d")
        print(week.total_events, week.top("by_action"))
    """

    def __init__(
        self,
        retention_days: int = 400,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.retention_days = retention_days
        self._clock = clock
        self._global: dict[str, DailyStatistics] = {}
        self._tenants: dict[str, dict[str, DailyStatistics]] = {}
        self._counted: dict[str, str] = {}  # event id -> bucket date
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> bool:
        """
        Count an event into today's buckets.

        Returns:
            False if this event id was already counted.
        """
        day = self._clock().astimezone(timezone.utc).date().isoformat()
        with self._lock:
            if event.id in self._counted:
                return False
            self._counted[event.id] = day
            self._bucket(self._global, day).add(event)
            if event.tenant_id:
                tenant = self._tenants.setdefault(event.tenant_id, {})
                self._bucket(tenant, day).add(event)
        return True

    @staticmethod
    def _bucket(buckets: dict[str, DailyStatistics], day: str) -> DailyStatistics:
        if day not in buckets:
            buckets[day] = DailyStatistics(date=day)
        return buckets[day]

    def query(self, tenant_id: str | None = None, window: str = "30d") -> Stats:
        """
        Sum the buckets inside a window.

        Raises:
            ValueError: For an unknown window name.
        """
        cutoff = window_cutoff(window, self._clock())
        result = Stats(window=window, tenant_id=tenant_id)

        with self._lock:
            if tenant_id is None:
                buckets = list(self._global.values())
            else:
                buckets = list(self._tenants.get(tenant_id, {}).values())
            for bucket in sorted(buckets, key=lambda b: b.date):
                if cutoff is None or _midnight(bucket.date) >= cutoff:
                    result.merge(bucket)
        return result

    def get_bucket(self, day: str, tenant_id: str | None = None) -> DailyStatistics | None:
        with self._lock:
            buckets = self._global if tenant_id is None else self._tenants.get(tenant_id, {})
            return buckets.get(day)

    def retention_cutoff(self) -> datetime | None:
        """Oldest instant still retained, None when retention is disabled."""
        if self.retention_days <= 0:
            return None
        return self._clock() - timedelta(days=self.retention_days)

    def compact(self) -> int:
        """Drop buckets past the retention horizon. Returns buckets removed."""
        cutoff = self.retention_cutoff()
        if cutoff is None:
            return 0

        removed = 0
        with self._lock:
            for buckets in (self._global, *self._tenants.values()):
                for day in [d for d in buckets if _midnight(d) < cutoff]:
                    del buckets[day]
                    removed += 1
            self._tenants = {t: b for t, b in self._tenants.items() if b}
            self._counted = {
                event_id: day
                for event_id, day in self._counted.items()
                if _midnight(day) >= cutoff
            }

        if removed:
            logger.info(f"Compacted {removed} statistics buckets older than {cutoff.date()}")
        return removed

    # =========================================================================
    # SNAPSHOTS
    # =========================================================================

    async def save_snapshot(self, store: DocumentStore) -> int:
        """Write every bucket to the store. Returns documents written."""
        with self._lock:
            writes = [
                BatchWrite(STATISTICS_COLLECTION, day, document=bucket.to_dict())
                for day, bucket in self._global.items()
            ]
            for tenant_id, buckets in self._tenants.items():
                writes.extend(
                    BatchWrite(
                        tenant_statistics_collection(tenant_id), day, document=bucket.to_dict()
                    )
                    for day, bucket in buckets.items()
                )

        if writes:
            await store.write_batch(writes)
        logger.debug(f"Saved {len(writes)} statistics buckets")
        return len(writes)

    async def load_snapshot(self, store: DocumentStore) -> int:
        """
        Replace in-memory buckets with those stored.

        Per-event dedupe state is not part of a snapshot.
        """
        global_docs = await store.query(STATISTICS_COLLECTION)
        global_buckets = {d["date"]: DailyStatistics.from_dict(d) for d in global_docs}

        tenant_ids = {t for bucket in global_buckets.values() for t in bucket.by_tenant}
        tenant_buckets: dict[str, dict[str, DailyStatistics]] = {}
        for tenant_id in sorted(tenant_ids):
            docs = await store.query(tenant_statistics_collection(tenant_id))
            if docs:
                tenant_buckets[tenant_id] = {d["date"]: DailyStatistics.from_dict(d) for d in docs}

        with self._lock:
            self._global.update(global_buckets)
            for tenant_id, buckets in tenant_buckets.items():
                self._tenants.setdefault(tenant_id, {}).update(buckets)

        loaded = len(global_buckets) + sum(len(b) for b in tenant_buckets.values())
        logger.info(f"Loaded {loaded} statistics buckets")
        return loaded
