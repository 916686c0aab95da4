"""
Audit event construction and integrity.

Provides:
- EventBuilder: Builds sealed AuditEvents from action + metadata
- ActorDirectory implementations for role resolution
- Hashing helpers to seal and verify events
"""

from auditflow.events.builder import (
    ActorDirectory,
    EventBuilder,
    StaticActorDirectory,
    StoreActorDirectory,
)
from auditflow.events.hashing import (
    canonical_json,
    compute_event_hash,
    seal_event,
    verify_event_hash,
)

__all__ = [
    "ActorDirectory",
    "EventBuilder",
    "StaticActorDirectory",
    "StoreActorDirectory",
    "canonical_json",
    "compute_event_hash",
    "seal_event",
    "verify_event_hash",
]
