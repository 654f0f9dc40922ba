"""Tracks the current authentication session."""

import asyncio
import logging
from typing import Optional, Union

from notesync.models.schema import UNDETERMINED, AuthEvent, Session, Undetermined
from notesync.storage.base import AuthProvider, SessionEvents, SessionListener, Subscription

logger = logging.getLogger(__name__)

SessionSnapshot = Union[Session, None, Undetermined]


def _identity(session: SessionSnapshot) -> object:
    if isinstance(session, Session):
        return session.user_id
    return session


class SessionTracker:
    """Owns the current session and relays provider changes to consumers.

    Construct one per client and hand it to whoever needs the session;
    nothing else asks the provider for it.

    ``current()`` reports ``UNDETERMINED`` until the initial fetch in
    ``start()`` resolves, then the latest session or None. ``generation``
    increases every time the signed-in identity changes, so work issued
    under an older identity can be recognised as stale.

    Usage:
        async with SessionTracker(provider) as tracker:
            tracker.subscribe(on_change)
            ...
    """

    def __init__(self, provider: AuthProvider):
        self._provider = provider
        self._session: SessionSnapshot = UNDETERMINED
        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._events = SessionEvents()
        self._start_lock = asyncio.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def started(self) -> bool:
        return self._subscription is not None

    @property
    def determined(self) -> bool:
        return self._session is not UNDETERMINED

    def current(self) -> SessionSnapshot:
        """Return the latest session, None, or ``UNDETERMINED``."""
        return self._session

    def subscribe(self, listener: SessionListener) -> Subscription:
        """Register a consumer; events arrive in the order the provider emits them."""
        return self._events.subscribe(listener)

    async def start(self) -> None:
        """Fetch the session snapshot once, then listen for changes.

        Safe to call repeatedly and concurrently; only the first call
        reaches the provider.
        """
        async with self._start_lock:
            if self._subscription is not None:
                return
            snapshot = await self._provider.get_current_session()
            if snapshot is not None and snapshot.is_expired():
                logger.info("Restored session has expired")
                snapshot = None
            self._apply(snapshot)
            self._subscription = self._provider.on_session_change(self._on_provider_event)
            logger.debug(
                f"Session tracker started (user={snapshot.user_id if snapshot else None})"
            )
            self._events.emit(AuthEvent.INITIAL_SESSION, snapshot)

    def stop(self) -> None:
        """Deregister from the provider. Idempotent."""
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            subscription.unsubscribe()
            logger.debug("Session tracker stopped")

    async def __aenter__(self) -> "SessionTracker":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.stop()

    def _apply(self, session: Optional[Session]) -> None:
        if _identity(session) != _identity(self._session):
            self._generation += 1
            logger.debug(f"Session identity changed, generation {self._generation}")
        self._session = session

    def _on_provider_event(self, event: AuthEvent, session: Optional[Session]) -> None:
        if session is not None and session.is_expired():
            logger.info(f"Ignoring expired session reported with {event.value}")
            event, session = AuthEvent.SIGNED_OUT, None
        self._apply(session)
        self._events.emit(event, session)
