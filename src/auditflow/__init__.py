"""
auditflow - Audit event pipeline and security threat detector.

Tamper-evident audit events built at call sites, processed asynchronously
into a document store, indexed, counted, and screened for suspicious
activity.
"""

__version__ = "0.3.0"
__version_tuple__ = (0, 3, 0)

from auditflow.core.config import AuditFlowConfig, load_config
from auditflow.core.context import Actor, ClientInfo, SessionInfo, request_context
from auditflow.models import (
    AuditEvent,
    EventPriority,
    EventStatus,
    SecurityAlert,
    ThreatSeverity,
)
from auditflow.service import AuditLogService
from auditflow.store import MemoryDocumentStore

__all__ = [
    "__version__",
    "__version_tuple__",
    "Actor",
    "AuditEvent",
    "AuditFlowConfig",
    "AuditLogService",
    "ClientInfo",
    "EventPriority",
    "EventStatus",
    "MemoryDocumentStore",
    "SecurityAlert",
    "SessionInfo",
    "ThreatSeverity",
    "load_config",
    "request_context",
]
