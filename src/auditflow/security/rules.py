"""
Threat detection rules.

Each rule inspects one processed event, optionally against the actor's
recent history in the ``audit-logs`` collection, and returns at most one
finding.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Iterable

from auditflow.core.config import DetectionConfig
from auditflow.core.errors import DetectionError
from auditflow.models import (
    AUDIT_LOGS_COLLECTION,
    AuditEvent,
    ThreatFinding,
    ThreatSeverity,
    isoformat,
    utc_now,
)
from auditflow.store.base import DocumentStore, QueryFilter

FAILED_LOGIN_ACTION = "auth.failed-login"


class EventHistory:
    """Windowed look-back over an actor's persisted events."""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now):
        self._store = store
        self._clock = clock

    async def event_ids(
        self,
        user_id: str,
        window: timedelta,
        action: str | None = None,
    ) -> set[str]:
        """Ids of the user's events newer than now - window."""
        filters = [
            QueryFilter("user_id", "eq", user_id),
            QueryFilter("timestamp", "gte", isoformat(self._clock() - window)),
        ]
        if action is not None:
            filters.append(QueryFilter("action", "eq", action))
        docs = await self._store.query(AUDIT_LOGS_COLLECTION, filters=filters)
        return {doc["id"] for doc in docs}

    async def matching_ids(
        self,
        user_id: str,
        window: timedelta,
        keywords: Iterable[str],
    ) -> set[str]:
        """Ids of the user's recent events whose action contains any keyword."""
        keywords = tuple(keywords)
        filters = [
            QueryFilter("user_id", "eq", user_id),
            QueryFilter("timestamp", "gte", isoformat(self._clock() - window)),
        ]
        docs = await self._store.query(AUDIT_LOGS_COLLECTION, filters=filters)
        return {
            doc["id"]
            for doc in docs
            if any(keyword in str(doc.get("action", "")) for keyword in keywords)
        }


class ThreatRule(ABC):
    """Base class for detection rules."""

    name: str
    severity: ThreatSeverity
    description: str
    recommendation: str

    @abstractmethod
    async def evaluate(self, event: AuditEvent, history: EventHistory) -> ThreatFinding | None:
        """
        Check one event.

        Raises:
            DetectionError: If the rule cannot be evaluated for this event.
        """
        ...

    def finding(self) -> ThreatFinding:
        return ThreatFinding(
            type=self.name,
            severity=self.severity,
            description=self.description,
            recommendation=self.recommendation,
        )


class FailedLoginRule(ThreatRule):
    """Repeated failed logins by the same user (brute force)."""

    name = "failed-login"
    severity = ThreatSeverity.MEDIUM
    description = "Multiple failed login attempts detected"
    recommendation = "Consider implementing account lockout"

    def __init__(self, threshold: int = 5, window_minutes: int = 15):
        self.threshold = threshold
        self.window = timedelta(minutes=window_minutes)

    async def evaluate(self, event: AuditEvent, history: EventHistory) -> ThreatFinding | None:
        if event.action != FAILED_LOGIN_ACTION:
            return None
        if not event.user_id:
            raise DetectionError(self.name, f"event {event.id} has no user_id")

        ids = await history.event_ids(event.user_id, self.window, action=FAILED_LOGIN_ACTION)
        ids.add(event.id)
        if len(ids) >= self.threshold:
            return self.finding()
        return None


class UnusualAccessRule(ThreatRule):
    """Read/write volume well above normal for a single user."""

    name = "unusual-access"
    severity = ThreatSeverity.HIGH
    description = "Unusual data access pattern detected"
    recommendation = "Review user access patterns and permissions"

    keywords = ("read", "write")

    def __init__(self, threshold: int = 50, window_minutes: int = 60):
        self.threshold = threshold
        self.window = timedelta(minutes=window_minutes)

    async def evaluate(self, event: AuditEvent, history: EventHistory) -> ThreatFinding | None:
        if not any(keyword in event.action for keyword in self.keywords):
            return None

        ids = await history.matching_ids(event.user_id, self.window, self.keywords)
        ids.add(event.id)
        if len(ids) > self.threshold:
            return self.finding()
        return None


class DataViolationRule(ThreatRule):
    """Restricted data touched by a non-privileged role."""

    name = "data-violation"
    severity = ThreatSeverity.CRITICAL
    description = "Unauthorized access to restricted data"
    recommendation = "Immediate review of access controls required"

    def __init__(self, privileged_roles: Iterable[str] = ("super-admin",)):
        self.privileged_roles = frozenset(privileged_roles)

    async def evaluate(self, event: AuditEvent, history: EventHistory) -> ThreatFinding | None:
        if event.metadata.get("confidentiality") != "restricted":
            return None
        if event.user_role in self.privileged_roles:
            return None
        return self.finding()


class PrivilegeEscalationRule(ThreatRule):
    """Administrative action attempted by a non-privileged role."""

    name = "privilege-escalation"
    severity = ThreatSeverity.CRITICAL
    description = "Potential privilege escalation attempt"
    recommendation = "Investigate user permissions and recent changes"

    def __init__(self, privileged_roles: Iterable[str] = ("super-admin",)):
        self.privileged_roles = frozenset(privileged_roles)

    async def evaluate(self, event: AuditEvent, history: EventHistory) -> ThreatFinding | None:
        if "admin" not in event.action:
            return None
        if event.user_role in self.privileged_roles:
            return None
        return self.finding()


def default_rules(config: DetectionConfig | None = None) -> list[ThreatRule]:
    """The built-in rule set, tuned by detection config."""
    config = config or DetectionConfig()
    return [
        FailedLoginRule(config.failed_login_threshold, config.failed_login_window_minutes),
        UnusualAccessRule(config.unusual_access_threshold, config.unusual_access_window_minutes),
        DataViolationRule(config.privileged_roles),
        PrivilegeEscalationRule(config.privileged_roles),
    ]
