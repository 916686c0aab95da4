"""
Audit pipeline exception taxonomy.

Provides:
- AuditError: Base for every pipeline failure
- BuildError / HashError: Event construction failures
- ProcessingError (+ resource, timeout variants): Pipeline step failures
- PersistenceError: Store writes that failed during processing
- DetectionError: A threat rule could not be evaluated
- AlertNotFoundError, ExportNotConfiguredError: Caller API failures
"""


class AuditError(Exception):
    """Base exception for the audit pipeline."""


class BuildError(AuditError):
    """Raised when an audit event cannot be constructed."""


class HashError(BuildError):
    """Raised when the integrity digest of an event cannot be computed."""


class ProcessingError(AuditError):
    """Raised when a queued event fails one of its processing steps."""

    def __init__(self, message: str, event_id: str | None = None):
        self.event_id = event_id
        super().__init__(message)


class ResourceProcessingError(ProcessingError):
    """Raised when a resource processor rejects or breaks an event."""


class ProcessingTimeoutError(ProcessingError):
    """Raised when an event exceeds its processing time budget."""


class PersistenceError(ProcessingError):
    """Raised when persisting an event (or its scoped copies) fails."""


class DetectionError(AuditError):
    """Raised by a threat rule that cannot be evaluated."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        super().__init__(f"Rule '{rule}' failed: {message}")


class AlertNotFoundError(AuditError):
    """Raised when acknowledging an alert that does not exist."""

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Security alert not found: {alert_id}")


class ExportNotConfiguredError(AuditError):
    """Raised when exporting without an exporter attached."""
