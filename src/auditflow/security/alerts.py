"""
Security alert management.

Persists alerts raised from severe findings, keeps a bounded list of the
most recent ones in memory, and supports acknowledgement.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable

from auditflow.core.errors import AlertNotFoundError
from auditflow.models import (
    AuditEvent,
    SecurityAlert,
    ThreatFinding,
    ThreatSeverity,
    utc_now,
)
from auditflow.store.base import DocumentStore, QueryFilter

logger = logging.getLogger(__name__)

ALERTS_COLLECTION = "security-alerts"


class AlertManager:
    """
    Raises, lists and acknowledges security alerts.

    Example:
        alerts = AlertManager(store)
        alert_id = await alerts.raise_alert(event, finding)
        await alerts.acknowledge(alert_id, by="secops@example.com")
    """

    def __init__(
        self,
        store: DocumentStore,
        recent_limit: int = 1000,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._clock = clock
        self._recent: deque[SecurityAlert] = deque(maxlen=recent_limit)
        self._lock = threading.Lock()

    async def raise_alert(self, event: AuditEvent, finding: ThreatFinding) -> str:
        """
        Persist an alert for an event's finding.

        An event raises at most one alert per rule; raising again returns
        the existing alert's id.
        """
        existing = await self._store.query(
            ALERTS_COLLECTION,
            filters=[
                QueryFilter("audit_event_id", "eq", event.id),
                QueryFilter("type", "eq", finding.type),
            ],
            limit=1,
        )
        if existing:
            return existing[0]["id"]

        alert = SecurityAlert.create(event, finding, self._clock())
        await self._store.set(ALERTS_COLLECTION, alert.id, alert.to_dict())
        with self._lock:
            self._recent.append(alert)

        logger.info(
            f"Security alert {alert.id}: {finding.type} ({finding.severity.value}) "
            f"for event {event.id} by {event.user_id}"
        )
        return alert.id

    async def query(
        self,
        tenant_id: str | None = None,
        severity: ThreatSeverity | str | None = None,
    ) -> list[SecurityAlert]:
        """Stored alerts, most severe first, then newest first."""
        filters = []
        if tenant_id:
            filters.append(QueryFilter("tenant_id", "eq", tenant_id))
        if severity and severity != "all":
            filters.append(QueryFilter("severity", "eq", ThreatSeverity(severity).value))

        docs = await self._store.query(ALERTS_COLLECTION, filters=filters)
        alerts = [SecurityAlert.from_dict(doc) for doc in docs]
        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        alerts.sort(key=lambda a: a.severity.rank, reverse=True)
        return alerts

    async def acknowledge(self, alert_id: str, by: str) -> SecurityAlert:
        """
        Mark an alert as handled.

        Raises:
            AlertNotFoundError: If no alert has this id.
        """
        doc = await self._store.get(ALERTS_COLLECTION, alert_id)
        if doc is None:
            raise AlertNotFoundError(alert_id)

        alert = SecurityAlert.from_dict(doc)
        alert.acknowledge(by, self._clock())
        await self._store.update(
            ALERTS_COLLECTION,
            alert_id,
            {
                "status": alert.status.value,
                "acknowledged": True,
                "acknowledged_by": alert.acknowledged_by,
                "acknowledged_at": alert.to_dict()["acknowledged_at"],
            },
        )

        with self._lock:
            for recent in self._recent:
                if recent.id == alert_id:
                    recent.acknowledge(by, alert.acknowledged_at)

        logger.info(f"Security alert {alert_id} acknowledged by {by}")
        return alert

    def recent(self, limit: int | None = None) -> list[SecurityAlert]:
        """In-memory alerts, newest first."""
        with self._lock:
            alerts = list(reversed(self._recent))
        return alerts[:limit] if limit else alerts
