"""
Resource processors.

Small per-category enrichment strategies selected by the kind of resource
an event touches. Processors only add fields to ``event.enrichment``; the
registry rejects any processor output that alters the event's identity.
"""

import logging
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

from auditflow.core.errors import ResourceProcessingError
from auditflow.models import IDENTITY_FIELDS, AuditEvent, parse_datetime

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Resource families with a dedicated processor."""

    USER = "user"
    DOCUMENT = "document"
    CASE = "case"
    CAP = "cap"  # Corrective action plan
    GENERIC = "generic"

    @classmethod
    def classify(cls, resource: str | None) -> "ResourceKind":
        """Map a free-text resource identifier onto a kind (first match wins)."""
        text = (resource or "").lower()
        for kind in (cls.USER, cls.DOCUMENT, cls.CASE, cls.CAP):
            if kind.value in text:
                return kind
        return cls.GENERIC


ResourceProcessor = Callable[[AuditEvent], AuditEvent]


# =============================================================================
# PROCESSORS
# =============================================================================


def process_user(event: AuditEvent) -> AuditEvent:
    """Who was acted upon, and whether it was the actor's own account."""
    target = event.metadata.get("target_user_id") or event.user_id
    event.enrichment["target_user_id"] = target
    event.enrichment["self_action"] = target == event.user_id
    return event


def process_document(event: AuditEvent) -> AuditEvent:
    meta = event.metadata
    event.enrichment["document_id"] = meta.get("document_id")
    event.enrichment["document_version"] = meta.get("version")
    event.enrichment["document_type"] = meta.get("document_type")
    return event


def process_case(event: AuditEvent) -> AuditEvent:
    """Grievance cases are flagged sensitive."""
    meta = event.metadata
    case_type = str(meta.get("case_type", "")).lower()
    event.enrichment["case_id"] = meta.get("case_id")
    event.enrichment["case_status"] = meta.get("case_status")
    event.enrichment["sensitive"] = case_type == "grievance" or "grievance" in event.resource
    return event


def process_cap(event: AuditEvent) -> AuditEvent:
    """Corrective action plans: ids, status and an overdue flag."""
    meta = event.metadata
    event.enrichment["cap_id"] = meta.get("cap_id")
    event.enrichment["cap_status"] = meta.get("cap_status")

    due = meta.get("due_date")
    if due is not None:
        due_at = _parse_due_date(due)
        event.enrichment["due_date"] = due_at.isoformat()
        completed = meta.get("cap_status") in ("completed", "closed")
        event.enrichment["overdue"] = not completed and due_at < event.timestamp.date()
    return event


def process_generic(event: AuditEvent) -> AuditEvent:
    event.enrichment["category"] = event.action.split(".", 1)[0]
    return event


def _parse_due_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) == 10:
        return date.fromisoformat(value)
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"Invalid due_date: {value!r}")
    return parsed.date()


DEFAULT_PROCESSORS: dict[ResourceKind, ResourceProcessor] = {
    ResourceKind.USER: process_user,
    ResourceKind.DOCUMENT: process_document,
    ResourceKind.CASE: process_case,
    ResourceKind.CAP: process_cap,
    ResourceKind.GENERIC: process_generic,
}


# =============================================================================
# REGISTRY
# =============================================================================


class ResourceProcessorRegistry:
    """
    Lookup table from resource kind to processor.

    Example:
        registry = ResourceProcessorRegistry()
        registry.register(ResourceKind.DOCUMENT, my_document_processor)
        event = registry.apply(event)
    """

    def __init__(self, processors: dict[ResourceKind, ResourceProcessor] | None = None):
        self._processors = dict(DEFAULT_PROCESSORS)
        if processors:
            self._processors.update(processors)

    def register(self, kind: ResourceKind, processor: ResourceProcessor) -> None:
        """Replace the processor for a resource kind."""
        self._processors[kind] = processor

    def get(self, kind: ResourceKind) -> ResourceProcessor:
        return self._processors.get(kind, self._processors[ResourceKind.GENERIC])

    def apply(self, event: AuditEvent) -> AuditEvent:
        """
        Run the matching processor against an event.

        Raises:
            ResourceProcessingError: If the processor fails or alters the
                event's identity fields.
        """
        kind = ResourceKind.classify(event.resource)
        before = {name: getattr(event, name) for name in IDENTITY_FIELDS}

        try:
            result = self.get(kind)(event)
        except Exception as e:
            raise ResourceProcessingError(
                f"{kind.value} processor failed: {e}", event_id=event.id
            ) from e

        if result is None:
            result = event
        changed = [name for name in IDENTITY_FIELDS if getattr(result, name) != before[name]]
        if changed:
            raise ResourceProcessingError(
                f"{kind.value} processor altered protected fields: {', '.join(changed)}",
                event_id=event.id,
            )

        result.enrichment["resource_kind"] = kind.value
        logger.debug(f"Applied {kind.value} processor to {event.id}")
        return result
