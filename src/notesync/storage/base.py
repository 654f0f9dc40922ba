"""Boundary interfaces for the remote note store and the auth provider."""
import logging
from typing import Callable, List, Optional, Protocol, Tuple, runtime_checkable

from notesync.models.schema import AuthEvent, Note, NoteId, Session, SignUpResult

logger = logging.getLogger(__name__)

SessionListener = Callable[[AuthEvent, Optional[Session]], None]


@runtime_checkable
class NoteBackend(Protocol):
    """A table of notes with owner-scoped access control.

    Row ownership is enforced by the store itself; callers only filter.
    """

    async def select_notes(self, user_id: str) -> List[Note]:
        """Return every note owned by ``user_id``, newest ``created_at`` first."""
        ...

    async def insert_note(self, user_id: str, content: str) -> None:
        """Insert a note owned by ``user_id``."""
        ...

    async def update_note(self, note_id: NoteId, content: str) -> None:
        """Replace the content of a note by id."""
        ...

    async def delete_note(self, note_id: NoteId) -> None:
        """Delete a note by id."""
        ...

    async def check_connection(self) -> int:
        """Check the store with a single-row read; return the rows seen."""
        ...


@runtime_checkable
class AuthProvider(Protocol):
    """Authentication provider consumed by the session tracker and auth gate."""

    async def sign_in(self, email: str, password: str) -> Session:
        ...

    async def sign_up(self, email: str, password: str) -> SignUpResult:
        ...

    async def request_password_reset(self, email: str) -> None:
        ...

    async def sign_out(self) -> None:
        ...

    async def get_current_session(self) -> Optional[Session]:
        ...

    def on_session_change(self, listener: SessionListener) -> "Subscription":
        ...


class Subscription:
    """Handle returned by a subscribe call; ``unsubscribe`` is idempotent."""

    def __init__(self, release: Callable[[], None]):
        self._release: Optional[Callable[[], None]] = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def unsubscribe(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()


class SessionEvents:
    """Ordered fan-out of session-change events to registered listeners.

    Listeners are called synchronously, in registration order, for each
    event in the order it is emitted.
    """

    def __init__(self):
        self._listeners: List[Tuple[int, SessionListener]] = []
        self._next_key = 0

    def subscribe(self, listener: SessionListener) -> Subscription:
        key = self._next_key
        self._next_key += 1
        self._listeners.append((key, listener))

        def release() -> None:
            self._listeners = [(k, l) for k, l in self._listeners if k != key]

        return Subscription(release)

    def emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.debug(f"Session event {event.value} (user={session.user_id if session else None})")
        for _, listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                # Keep delivering to the remaining listeners
                logger.exception(f"Session listener failed on {event.value}")

    def __len__(self) -> int:
        return len(self._listeners)
