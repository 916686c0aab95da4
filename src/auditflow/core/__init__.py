"""Core building blocks: configuration, request context and errors."""

from auditflow.core.config import AuditFlowConfig, load_config
from auditflow.core.context import (
    Actor,
    ClientInfo,
    ContextProvider,
    RequestContextProvider,
    SessionInfo,
    get_request_context,
    request_context,
)
from auditflow.core.errors import (
    AlertNotFoundError,
    AuditError,
    BuildError,
    DetectionError,
    ExportNotConfiguredError,
    HashError,
    PersistenceError,
    ProcessingError,
    ProcessingTimeoutError,
    ResourceProcessingError,
)

__all__ = [
    "Actor",
    "AlertNotFoundError",
    "AuditError",
    "AuditFlowConfig",
    "BuildError",
    "ClientInfo",
    "ContextProvider",
    "DetectionError",
    "ExportNotConfiguredError",
    "HashError",
    "PersistenceError",
    "ProcessingError",
    "ProcessingTimeoutError",
    "RequestContextProvider",
    "ResourceProcessingError",
    "SessionInfo",
    "get_request_context",
    "load_config",
    "request_context",
]
