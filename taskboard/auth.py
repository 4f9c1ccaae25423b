"""Authenticated principal and auth-change propagation.

Identity providers push sign-in/sign-out events to subscribers. The
:class:`PrincipalStore` is the single consumer: it subscribes on ``start``,
drains events from its own queue, and unsubscribes on ``close``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Protocol

from pydantic import BaseModel

from taskboard.errors import EntityStoreError, NotAuthenticatedError

logger = logging.getLogger(__name__)


class Principal(BaseModel):
    id: str
    email: str
    full_name: str
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def principal_from_user(user: dict) -> Principal:
    """Build a principal from an identity-provider user payload.

    The display name falls back to the local part of the email address.
    """
    metadata = user.get("user_metadata") or {}
    email = user.get("email") or ""
    return Principal(
        id=user["id"],
        email=email,
        full_name=metadata.get("full_name") or email.split("@")[0],
        avatar_url=metadata.get("avatar_url"),
        created_at=user.get("created_at"),
        updated_at=user.get("updated_at"),
    )


@dataclass(frozen=True)
class AuthEvent:
    kind: str  # "signed_in" or "signed_out"
    principal: Optional[Principal] = None


AuthCallback = Callable[[AuthEvent], None]


class AuthProvider(Protocol):
    async def get_current_user(self) -> Optional[Principal]: ...

    def on_auth_change(self, callback: AuthCallback) -> Callable[[], None]:
        """Subscribe to auth events. Returns the unsubscribe function."""
        ...


class AuthEventSource:
    """Subscription plumbing shared by identity providers.

    Events are delivered on a later event-loop iteration, never inline.
    """

    def __init__(self) -> None:
        self._subscribers: list[AuthCallback] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def on_auth_change(self, callback: AuthCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event: AuthEvent) -> None:
        loop = asyncio.get_running_loop()
        for callback in list(self._subscribers):
            loop.call_soon(callback, event)


class LocalAuthProvider(AuthEventSource):
    """In-process identity provider used with the local store."""

    def __init__(self, principal: Optional[Principal] = None) -> None:
        super().__init__()
        self._principal = principal

    async def get_current_user(self) -> Optional[Principal]:
        return self._principal

    async def sign_in(self, principal: Principal) -> Principal:
        self._principal = principal
        self._emit(AuthEvent("signed_in", principal))
        return principal

    async def sign_out(self) -> None:
        self._principal = None
        self._emit(AuthEvent("signed_out"))


class PrincipalStore:
    """Holds the acting user's identity for the lifetime of a client.

    Args:
        provider: Identity provider to read from and subscribe to.
        on_signed_out: Called after a sign-out event has cleared the
            principal (the client uses it to drop cached data).
    """

    def __init__(
        self,
        provider: AuthProvider,
        *,
        on_signed_out: Optional[Callable[[], None]] = None,
    ) -> None:
        self._provider = provider
        self._on_signed_out = on_signed_out
        self._principal: Optional[Principal] = None
        self._loading = True
        self._queue: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def principal(self) -> Optional[Principal]:
        return self._principal

    @property
    def is_authenticated(self) -> bool:
        return self._principal is not None

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def started(self) -> bool:
        return self._consumer is not None

    def require(self) -> Principal:
        if self._principal is None:
            raise NotAuthenticatedError()
        return self._principal

    async def start(self) -> None:
        """Subscribe to auth changes and load the current user."""
        if self._consumer is not None:
            return
        self._queue = asyncio.Queue()
        self._unsubscribe = self._provider.on_auth_change(self._queue.put_nowait)
        self._consumer = asyncio.create_task(self._consume())
        self._loading = True
        try:
            self._principal = await self._provider.get_current_user()
        except EntityStoreError as exc:
            logger.error("Auth initialization failed: %s", exc.message)
            self._principal = None
        finally:
            self._loading = False

    async def close(self) -> None:
        """Unsubscribe, stop consuming events and forget the principal."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
            self._consumer = None
        self._queue = None
        self._principal = None

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            self._apply(event)

    def _apply(self, event: AuthEvent) -> None:
        if event.kind == "signed_in":
            self._principal = event.principal
            logger.info("Principal set to %s", event.principal.id if event.principal else None)
        elif event.kind == "signed_out":
            self._principal = None
            logger.info("Principal cleared")
            if self._on_signed_out is not None:
                self._on_signed_out()
        else:
            logger.warning("Ignoring unknown auth event %r", event.kind)
