"""
Audit pipeline data models.

Provides:
- AuditEvent: A single notable system action, sealed by an integrity hash
- EventPriority / EventStatus: Queue routing and processing lifecycle
- ThreatSeverity / ThreatFinding / SecurityContext: Threat detection output
- SecurityAlert / AlertStatus: Actionable escalations of severe findings
- LineageRecord: A source -> target data-flow edge attached to an event

All models serialize to JSON-safe dicts with snake_case keys. Timestamps
are UTC ISO-8601 strings with microsecond precision.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


def utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    """Serialize a datetime in the canonical storage format."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Parse a stored timestamp back into an aware datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_id(prefix: str, now: datetime | None = None, random_chars: int = 32) -> str:
    """
    Generate a time-ordered identifier.

    Format: ``<prefix>-<12 hex digits of epoch ms>-<random hex>``. The
    fixed-width time component keeps ids sortable by creation time; the
    default 32 hex chars give a 128-bit random suffix.
    """
    millis = int((now or utc_now()).timestamp() * 1000)
    return f"{prefix}-{millis:012x}-{uuid4().hex[:random_chars]}"


# =============================================================================
# ENUMS
# =============================================================================


class EventPriority(str, Enum):
    """Routing priority of an audit event."""

    NORMAL = "normal"  # Queued, processed on the next drain
    HIGH = "high"  # Processed immediately, caller awaits the result


class EventStatus(str, Enum):
    """Processing lifecycle of an audit event."""

    PENDING = "pending"
    PROCESSED = "processed"
    ERROR = "error"


class ThreatSeverity(str, Enum):
    """Severity of a threat finding or alert (ordered)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, severities: "list[ThreatSeverity]") -> "ThreatSeverity":
        """Maximum severity, LOW for an empty list."""
        return max(severities, key=lambda s: s.rank, default=cls.LOW)


_SEVERITY_RANK = {
    ThreatSeverity.LOW: 1,
    ThreatSeverity.MEDIUM: 2,
    ThreatSeverity.HIGH: 3,
    ThreatSeverity.CRITICAL: 4,
}


class AlertStatus(str, Enum):
    """Lifecycle of a security alert."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"


# =============================================================================
# THREAT FINDINGS
# =============================================================================


@dataclass(frozen=True)
class ThreatFinding:
    """A single rule's output describing a detected suspicious pattern."""

    type: str  # Rule name, e.g. "failed-login"
    severity: ThreatSeverity
    description: str
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
            "recommendation": self.recommendation,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ThreatFinding":
        return cls(
            type=data["type"],
            severity=ThreatSeverity(data["severity"]),
            description=data.get("description", ""),
            recommendation=data.get("recommendation", ""),
        )


# General advice added on top of per-finding recommendations, keyed by the
# minimum threat level it applies to.
_LEVEL_RECOMMENDATIONS = (
    (ThreatSeverity.MEDIUM, "Enable additional logging and monitoring"),
    (ThreatSeverity.HIGH, "Review and update access controls"),
    (ThreatSeverity.CRITICAL, "Immediate security incident response required"),
)


@dataclass
class SecurityContext:
    """
    Summary of the detection pass run against an event.

    Visible to audit readers; only findings at or above the alert threshold
    also reach alert consumers.
    """

    threat_level: ThreatSeverity = ThreatSeverity.LOW
    risk_factors: list[ThreatFinding] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @classmethod
    def from_findings(cls, findings: list[ThreatFinding]) -> "SecurityContext":
        """Build the context: overall level plus de-duplicated advice."""
        if not findings:
            return cls()

        level = ThreatSeverity.highest([f.severity for f in findings])
        recommendations: list[str] = []
        for finding in findings:
            if finding.recommendation and finding.recommendation not in recommendations:
                recommendations.append(finding.recommendation)
        for minimum, advice in _LEVEL_RECOMMENDATIONS:
            if level.rank >= minimum.rank and advice not in recommendations:
                recommendations.append(advice)

        return cls(
            threat_level=level,
            risk_factors=list(findings),
            recommendations=recommendations,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "threat_level": self.threat_level.value,
            "risk_factors": [f.to_dict() for f in self.risk_factors],
            "recommendations": list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityContext":
        return cls(
            threat_level=ThreatSeverity(data.get("threat_level", "low")),
            risk_factors=[ThreatFinding.from_dict(f) for f in data.get("risk_factors", [])],
            recommendations=list(data.get("recommendations", [])),
        )


# =============================================================================
# DATA LINEAGE
# =============================================================================


@dataclass
class LineageRecord:
    """A source -> target data-flow edge."""

    id: str
    timestamp: datetime
    source: str
    target: str
    relationship: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    confidence: str = "high"  # high, confirmed, or caller-supplied

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "source": self.source,
            "target": self.target,
            "relationship": self.relationship,
            "metadata": copy.deepcopy(self.metadata),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineageRecord":
        return cls(
            id=data["id"],
            timestamp=parse_datetime(data["timestamp"]) or utc_now(),
            source=data["source"],
            target=data["target"],
            relationship=data.get("relationship"),
            metadata=dict(data.get("metadata") or {}),
            confidence=data.get("confidence", "high"),
        )


# =============================================================================
# AUDIT EVENT
# =============================================================================

# Fields fixed at build time and covered by the integrity hash. Processing
# fields (status, processed_at, error, security_context, enrichment) change
# after hashing and are not covered.
SEALED_FIELDS = (
    "id",
    "timestamp",
    "action",
    "resource",
    "user_id",
    "user_email",
    "user_role",
    "tenant_id",
    "factory_id",
    "metadata",
    "client_info",
    "session_info",
    "priority",
    "data_lineage",
)

# Fields that resource processors must never alter.
IDENTITY_FIELDS = ("id", "action", "hash", "user_id", "user_email", "user_role")

AUDIT_LOGS_COLLECTION = "audit-logs"


def event_collections(tenant_id: str | None, factory_id: str | None) -> list[str]:
    """Collections an event is written to: global, then tenant and factory scopes."""
    collections = [AUDIT_LOGS_COLLECTION]
    if tenant_id:
        collections.append(f"tenants/{tenant_id}/{AUDIT_LOGS_COLLECTION}")
    if factory_id:
        collections.append(f"factories/{factory_id}/{AUDIT_LOGS_COLLECTION}")
    return collections


@dataclass
class AuditEvent:
    """
    Record describing a single notable system action.

    Sealed fields are immutable once ``hash`` is set; the processor only
    touches the processing fields.
    """

    id: str
    timestamp: datetime
    action: str
    resource: str
    user_id: str
    user_email: str
    user_role: str
    tenant_id: str | None = None
    factory_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    client_info: dict[str, Any] = field(default_factory=dict)
    session_info: dict[str, Any] = field(default_factory=dict)
    priority: EventPriority = EventPriority.NORMAL
    data_lineage: LineageRecord | None = None

    # Integrity
    hash: str | None = None
    signature: str | None = None  # Reserved, never populated

    # Processing state
    status: EventStatus = EventStatus.PENDING
    processed_at: datetime | None = None
    error: str | None = None
    security_context: SecurityContext | None = None
    enrichment: dict[str, Any] = field(default_factory=dict)

    def mark_processed(self, at: datetime) -> None:
        """Mark the event as successfully processed."""
        self.status = EventStatus.PROCESSED
        self.processed_at = at
        self.error = None

    def mark_error(self, message: str) -> None:
        """Mark the event as failed."""
        self.status = EventStatus.ERROR
        self.error = message

    def copy(self) -> "AuditEvent":
        """Deep copy, used so processing never mutates the queued original."""
        return copy.deepcopy(self)

    def sealed_dict(self) -> dict[str, Any]:
        """The hashed subset of ``to_dict()``."""
        data = self.to_dict()
        return {key: data[key] for key in SEALED_FIELDS}

    def summary(self) -> dict[str, Any]:
        """Compact form returned by search."""
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "action": self.action,
            "resource": self.resource,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "metadata": copy.deepcopy(self.metadata),
        }

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for serialization.

        The output is JSON-safe and suitable for storage.
        """
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "action": self.action,
            "resource": self.resource,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "user_role": self.user_role,
            "tenant_id": self.tenant_id,
            "factory_id": self.factory_id,
            "metadata": copy.deepcopy(self.metadata),
            "client_info": dict(self.client_info),
            "session_info": dict(self.session_info),
            "priority": self.priority.value,
            "data_lineage": self.data_lineage.to_dict() if self.data_lineage else None,
            "hash": self.hash,
            "signature": self.signature,
            "status": self.status.value,
            "processed_at": isoformat(self.processed_at) if self.processed_at else None,
            "error": self.error,
            "security_context": (
                self.security_context.to_dict() if self.security_context else None
            ),
            "enrichment": copy.deepcopy(self.enrichment),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEvent":
        """Create from dictionary."""
        lineage = data.get("data_lineage")
        context = data.get("security_context")
        return cls(
            id=data["id"],
            timestamp=parse_datetime(data["timestamp"]) or utc_now(),
            action=data["action"],
            resource=data.get("resource", "unknown"),
            user_id=data.get("user_id", "system"),
            user_email=data.get("user_email", "system"),
            user_role=data.get("user_role", "unknown"),
            tenant_id=data.get("tenant_id"),
            factory_id=data.get("factory_id"),
            metadata=copy.deepcopy(data.get("metadata") or {}),
            client_info=dict(data.get("client_info") or {}),
            session_info=dict(data.get("session_info") or {}),
            priority=EventPriority(data.get("priority", "normal")),
            data_lineage=LineageRecord.from_dict(lineage) if lineage else None,
            hash=data.get("hash"),
            signature=data.get("signature"),
            status=EventStatus(data.get("status", "pending")),
            processed_at=parse_datetime(data.get("processed_at")),
            error=data.get("error"),
            security_context=SecurityContext.from_dict(context) if context else None,
            enrichment=copy.deepcopy(data.get("enrichment") or {}),
        )


# =============================================================================
# SECURITY ALERT
# =============================================================================


@dataclass
class SecurityAlert:
    """Persisted, actionable escalation derived from a severe finding."""

    id: str
    timestamp: datetime
    severity: ThreatSeverity
    type: str
    description: str
    recommendation: str
    audit_event_id: str
    user_id: str | None
    tenant_id: str | None
    status: AlertStatus = AlertStatus.ACTIVE
    acknowledged: bool = False
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None

    @classmethod
    def create(
        cls,
        event: AuditEvent,
        finding: ThreatFinding,
        now: datetime | None = None,
    ) -> "SecurityAlert":
        """Create a new active alert for an event's finding."""
        now = now or utc_now()
        return cls(
            id=generate_id("alert", now, random_chars=16),
            timestamp=now,
            severity=finding.severity,
            type=finding.type,
            description=finding.description,
            recommendation=finding.recommendation,
            audit_event_id=event.id,
            user_id=event.user_id,
            tenant_id=event.tenant_id,
        )

    def acknowledge(self, by: str, at: datetime | None = None) -> None:
        """Mark the alert as handled."""
        self.status = AlertStatus.ACKNOWLEDGED
        self.acknowledged = True
        self.acknowledged_by = by
        self.acknowledged_at = at or utc_now()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": isoformat(self.timestamp),
            "severity": self.severity.value,
            "type": self.type,
            "description": self.description,
            "recommendation": self.recommendation,
            "audit_event_id": self.audit_event_id,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "acknowledged": self.acknowledged,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": (
                isoformat(self.acknowledged_at) if self.acknowledged_at else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SecurityAlert":
        return cls(
            id=data["id"],
            timestamp=parse_datetime(data["timestamp"]) or utc_now(),
            severity=ThreatSeverity(data["severity"]),
            type=data["type"],
            description=data.get("description", ""),
            recommendation=data.get("recommendation", ""),
            audit_event_id=data["audit_event_id"],
            user_id=data.get("user_id"),
            tenant_id=data.get("tenant_id"),
            status=AlertStatus(data.get("status", "active")),
            acknowledged=bool(data.get("acknowledged", False)),
            acknowledged_by=data.get("acknowledged_by"),
            acknowledged_at=parse_datetime(data.get("acknowledged_at")),
        )
