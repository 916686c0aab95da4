"""
Security monitoring for processed audit events.

Provides:
- ThreatDetector: Runs detection rules and summarizes their findings
- Rules: failed-login, unusual-access, data-violation, privilege-escalation
- AlertManager: Persists and acknowledges security alerts
"""

from auditflow.security.alerts import ALERTS_COLLECTION, AlertManager
from auditflow.security.detector import ThreatDetector
from auditflow.security.rules import (
    DataViolationRule,
    EventHistory,
    FailedLoginRule,
    PrivilegeEscalationRule,
    ThreatRule,
    UnusualAccessRule,
    default_rules,
)

__all__ = [
    "ALERTS_COLLECTION",
    "AlertManager",
    "DataViolationRule",
    "EventHistory",
    "FailedLoginRule",
    "PrivilegeEscalationRule",
    "ThreatDetector",
    "ThreatRule",
    "UnusualAccessRule",
    "default_rules",
]
