"""
Tamper-evident event hashing.

The digest covers the canonical JSON of an event's sealed fields: sorted
keys, compact separators, UTF-8, no ASCII escaping. The same event always
yields the same digest, and editing any sealed field changes it.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any

from auditflow.core.errors import HashError
from auditflow.models import AuditEvent, isoformat


def _json_default(value: Any) -> Any:
    """Deterministic encoding for the few non-JSON types metadata may carry."""
    if isinstance(value, datetime):
        return isoformat(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"Object of type {type(value).__name__} is not hashable as JSON")


def canonical_json(data: dict[str, Any]) -> str:
    """Stable JSON serialization used for hashing."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def compute_event_hash(event: AuditEvent) -> str:
    """
    Compute the SHA-256 hex digest of an event's sealed fields.

    Raises:
        HashError: If the event cannot be serialized canonically.
    """
    try:
        canonical = canonical_json(event.sealed_dict())
    except (TypeError, ValueError) as e:
        raise HashError(f"Cannot hash audit event {event.id}: {e}") from e
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def seal_event(event: AuditEvent) -> AuditEvent:
    """Set the event's hash in place and return it."""
    event.hash = compute_event_hash(event)
    return event


def verify_event_hash(event: AuditEvent) -> bool:
    """Check a stored hash against a fresh digest of the sealed fields."""
    if not event.hash:
        return False
    try:
        return compute_event_hash(event) == event.hash
    except HashError:
        return False
