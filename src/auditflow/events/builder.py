"""
Audit event construction.

Builds a normalized AuditEvent from an action plus caller metadata,
enriches it with actor/session/client context and seals it with its
integrity hash. Context and role lookups are best-effort; hashing is not.
"""

import copy
import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from auditflow.core.context import (
    Actor,
    ClientInfo,
    ContextProvider,
    RequestContextProvider,
    SessionInfo,
)
from auditflow.core.errors import BuildError
from auditflow.events.hashing import seal_event
from auditflow.lineage.tracker import LineageTracker
from auditflow.models import AuditEvent, EventPriority, generate_id, utc_now
from auditflow.store.base import DocumentStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
UNKNOWN_ROLE = "unknown"
USERS_COLLECTION = "users"


# =============================================================================
# ACTOR DIRECTORY
# =============================================================================


@runtime_checkable
class ActorDirectory(Protocol):
    """Resolves a user's role at event creation time."""

    async def get_user_role(self, user_id: str) -> str | None: ...


class StoreActorDirectory:
    """Reads roles from user profiles in the ``users`` collection."""

    def __init__(self, store: DocumentStore, collection: str = USERS_COLLECTION):
        self._store = store
        self._collection = collection

    async def get_user_role(self, user_id: str) -> str | None:
        profile = await self._store.get(self._collection, user_id)
        if profile is None:
            return None
        return profile.get("role")


class StaticActorDirectory:
    """Fixed user -> role mapping, handy for tests and scripts."""

    def __init__(self, roles: Mapping[str, str] | None = None):
        self._roles = dict(roles or {})

    def set_role(self, user_id: str, role: str) -> None:
        self._roles[user_id] = role

    async def get_user_role(self, user_id: str) -> str | None:
        return self._roles.get(user_id)


# =============================================================================
# BUILDER
# =============================================================================


class EventBuilder:
    """
    Constructs sealed audit events.

    Example:
        builder = EventBuilder(StaticActorDirectory({"u-1": "hr-staff"}))
        with request_context(Actor("u-1", "hr@example.com", tenant_id="t-1")):
            event = await builder.build("document.approve", {"resource": "document"})
        assert event.hash
    """

    def __init__(
        self,
        actor_directory: ActorDirectory,
        context_provider: ContextProvider | None = None,
        lineage_tracker: LineageTracker | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._directory = actor_directory
        self._context = context_provider or RequestContextProvider()
        self._lineage = lineage_tracker
        self._clock = clock

    async def build(
        self,
        action: str,
        metadata: Mapping[str, Any] | None = None,
        priority: EventPriority | str = EventPriority.NORMAL,
    ) -> AuditEvent:
        """
        Build a sealed audit event.

        Raises:
            BuildError: If the action is empty or the priority unknown.
            HashError: If the integrity digest cannot be computed.
        """
        if not action:
            raise BuildError("action is required")
        try:
            priority = EventPriority(priority)
        except ValueError as e:
            raise BuildError(f"Unknown priority: {priority}") from e

        # Sealed metadata must not share nested values with the caller
        metadata = copy.deepcopy(dict(metadata or {}))
        now = self._clock()
        actor = self._current_actor()
        user_id = actor.user_id if actor else SYSTEM_ACTOR

        event = AuditEvent(
            id=generate_id("audit", now),
            timestamp=now,
            action=action,
            resource=str(metadata.get("resource") or "unknown"),
            user_id=user_id,
            user_email=(actor.email if actor and actor.email else SYSTEM_ACTOR),
            user_role=await self._resolve_role(actor),
            tenant_id=metadata.get("tenant_id") or (actor.tenant_id if actor else None),
            factory_id=metadata.get("factory_id"),
            metadata=metadata,
            client_info=(await self._client_info()).to_dict(),
            session_info=self._session_info().to_dict(),
            priority=priority,
        )

        descriptor = metadata.get("data_lineage")
        if descriptor and self._lineage is not None:
            if isinstance(descriptor, Mapping):
                event.data_lineage = self._lineage.build_record(descriptor)
            else:
                logger.warning(f"Ignoring non-mapping data_lineage on {action}")

        return seal_event(event)

    async def _resolve_role(self, actor: Actor | None) -> str:
        """Look up the actor's role, never failing the build."""
        if actor is None:
            return SYSTEM_ACTOR
        try:
            role = await self._directory.get_user_role(actor.user_id)
        except Exception as e:
            logger.warning(f"Failed to get role for {actor.user_id}: {e}")
            return UNKNOWN_ROLE
        return role or UNKNOWN_ROLE

    def _current_actor(self) -> Actor | None:
        try:
            return self._context.current_actor()
        except Exception as e:
            logger.warning(f"Failed to resolve current actor: {e}")
            return None

    async def _client_info(self) -> ClientInfo:
        try:
            return await self._context.client_info()
        except Exception as e:
            logger.warning(f"Failed to get client information: {e}")
            return ClientInfo()

    def _session_info(self) -> SessionInfo:
        try:
            return self._context.session_info()
        except Exception as e:
            logger.warning(f"Failed to get session information: {e}")
            return SessionInfo()
