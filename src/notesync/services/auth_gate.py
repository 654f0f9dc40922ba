"""Chooses between the credential form and the notes view.

The gate follows the session tracker: while the first session fetch is
pending it is LOADING; without a session it shows the credential form
and relays its actions to the auth provider; with one it mounts a
``NoteStore`` (and its ``EditSession``) bound to the signed-in user.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from notesync.exceptions import AuthError, ErrorCode
from notesync.models.schema import AuthEvent, Session
from notesync.services.edit_session import EditSession
from notesync.services.note_store import NoteStore
from notesync.services.session_tracker import SessionTracker
from notesync.storage.base import AuthProvider, NoteBackend, Subscription

logger = logging.getLogger(__name__)

LOGIN_SUCCESS = "Logged in successfully"
SIGNUP_SUCCESS = "Signup successful!"
SIGNUP_PENDING = "Signup successful! Check your email to confirm."
RESET_SENT = "Password reset link sent to your email"


class GateState(str, Enum):
    """What the gate is showing."""

    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass
class CredentialForm:
    """State of the credential form.

    Entered values stay populated after a failed action so the user can
    correct and resubmit.
    """

    email: str = ""
    password: str = ""
    error_message: Optional[str] = None
    success_message: Optional[str] = None
    busy: bool = False

    def begin(self, email: Optional[str], password: Optional[str]) -> None:
        if email is not None:
            self.email = email
        if password is not None:
            self.password = password
        self.error_message = None
        self.success_message = None
        self.busy = True


class AuthGate:
    """Composition root for a signed-in notes view.

    Args:
        tracker: The client's session tracker.
        auth: Provider the credential form actions are relayed to.
        backend: Note store backend handed to each mounted ``NoteStore``.
    """

    def __init__(self, tracker: SessionTracker, auth: AuthProvider, backend: NoteBackend):
        self._tracker = tracker
        self._auth = auth
        self._backend = backend
        self._state = GateState.LOADING
        self._subscription: Optional[Subscription] = None
        self.form = CredentialForm()
        self.notes: Optional[NoteStore] = None
        self.editor: Optional[EditSession] = None

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        current = self._tracker.current()
        return current if isinstance(current, Session) else None

    async def start(self) -> None:
        """Subscribe to the tracker and make the first decision."""
        if self._subscription is None:
            self._subscription = self._tracker.subscribe(self._on_session_change)
        await self._tracker.start()
        self._evaluate()

    def close(self) -> None:
        """Unsubscribe and tear down the mounted notes view."""
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._unmount()

    async def __aenter__(self) -> "AuthGate":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def _on_session_change(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.debug(f"Gate re-evaluating after {event.value}")
        self._evaluate()

    def _evaluate(self) -> None:
        if not self._tracker.determined:
            self._state = GateState.LOADING
            return
        session = self.session
        if session is None:
            if self._state is not GateState.UNAUTHENTICATED:
                logger.info("Showing credential form")
            self._unmount()
            self._state = GateState.UNAUTHENTICATED
            return
        if self.notes is None or self.notes.user_id != session.user_id:
            self._mount(session)
        self._state = GateState.AUTHENTICATED

    def _mount(self, session: Session) -> None:
        self._unmount()
        self.notes = NoteStore(
            self._backend, session.user_id, generation=self._tracker.generation
        )
        self.editor = EditSession(self.notes)
        logger.info(f"Mounted notes for user {session.user_id}")
        self.notes.schedule_refresh()

    def _unmount(self) -> None:
        if self.editor is not None:
            self.editor.cancel()
            self.editor = None
        if self.notes is not None:
            self.notes.close()
            self.notes = None

    async def sign_in(self, email: Optional[str] = None, password: Optional[str] = None) -> bool:
        """Relay a login; the provider's error message lands on the form."""
        self.form.begin(email, password)
        try:
            await self._auth.sign_in(self.form.email, self.form.password)
        except AuthError as e:
            self.form.error_message = e.message
            return False
        finally:
            self.form.busy = False
        self.form.success_message = LOGIN_SUCCESS
        return True

    async def sign_up(self, email: Optional[str] = None, password: Optional[str] = None) -> bool:
        """Relay a signup; the account may still need e-mail confirmation."""
        self.form.begin(email, password)
        try:
            result = await self._auth.sign_up(self.form.email, self.form.password)
        except AuthError as e:
            self.form.error_message = e.message
            return False
        finally:
            self.form.busy = False
        self.form.success_message = SIGNUP_PENDING if result.pending_confirmation else SIGNUP_SUCCESS
        return True

    async def request_password_reset(self, email: Optional[str] = None) -> bool:
        """Relay a password reset request for the form's e-mail."""
        self.form.begin(email, None)
        try:
            if not self.form.email.strip():
                raise AuthError(
                    "Email is required",
                    action="request_password_reset",
                    code=ErrorCode.AUTH_RESET_FAILED,
                )
            await self._auth.request_password_reset(self.form.email)
        except AuthError as e:
            self.form.error_message = e.message
            return False
        finally:
            self.form.busy = False
        self.form.success_message = RESET_SENT
        return True

    async def sign_out(self) -> None:
        """Ask the provider to end the session.

        The gate switches to the credential form when the resulting change
        notification arrives, not here.
        """
        await self._auth.sign_out()
