"""
Request context for audit event construction.

Call sites bind who is acting and from where once per request; the event
builder reads it back when an event is logged. Backed by a ContextVar so
concurrent asyncio tasks each see their own context.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated principal performing an action."""

    user_id: str
    email: str | None = None
    tenant_id: str | None = None


@dataclass(frozen=True, slots=True)
class ClientInfo:
    """Snapshot of the calling client."""

    ip_address: str | None = None
    user_agent: str | None = None
    locale: str | None = None
    timezone: str | None = None
    platform: str | None = None
    referrer: str | None = None
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unknown values."""
        return {
            key: getattr(self, key)
            for key in self.__slots__
            if getattr(self, key) is not None
        }


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """Snapshot of the caller's session."""

    session_id: str | None = None
    login_time: str | None = None
    last_activity: str | None = None
    device_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unknown values."""
        return {
            key: getattr(self, key)
            for key in self.__slots__
            if getattr(self, key) is not None
        }


@dataclass(frozen=True)
class RequestContext:
    """Everything the builder needs to know about the current caller."""

    actor: Actor | None = None
    client: ClientInfo = field(default_factory=ClientInfo)
    session: SessionInfo = field(default_factory=SessionInfo)


_request_context: ContextVar[RequestContext | None] = ContextVar(
    "auditflow_request_context", default=None
)


@runtime_checkable
class ContextProvider(Protocol):
    """Supplies actor, client and session context at build time."""

    def current_actor(self) -> Actor | None: ...

    async def client_info(self) -> ClientInfo: ...

    def session_info(self) -> SessionInfo: ...


class RequestContextProvider:
    """ContextProvider reading the ContextVar bound by request_context()."""

    def current_actor(self) -> Actor | None:
        ctx = _request_context.get()
        return ctx.actor if ctx else None

    async def client_info(self) -> ClientInfo:
        ctx = _request_context.get()
        return ctx.client if ctx else ClientInfo()

    def session_info(self) -> SessionInfo:
        ctx = _request_context.get()
        return ctx.session if ctx else SessionInfo()


@contextmanager
def request_context(
    actor: Actor | None = None,
    client: ClientInfo | None = None,
    session: SessionInfo | None = None,
) -> Iterator[RequestContext]:
    """
    Bind the caller context for the duration of a block.

    Example:
        with request_context(Actor("u-1", "a@b.c", tenant_id="t-1")):
            await service.log_event("document.approve", {"resource": "document"})
    """
    ctx = RequestContext(
        actor=actor,
        client=client or ClientInfo(),
        session=session or SessionInfo(),
    )
    token = _request_context.set(ctx)
    try:
        yield ctx
    finally:
        _request_context.reset(token)


def get_request_context() -> RequestContext | None:
    """Return the currently bound request context, if any."""
    return _request_context.get()
