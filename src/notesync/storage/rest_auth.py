"""Auth provider backed by a hosted GoTrue-style auth API."""
import asyncio
import datetime
import logging
from datetime import timezone
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from notesync.exceptions import AuthError, ErrorCode
from notesync.models.schema import AuthEvent, Session, SignUpResult, utc_now
from notesync.observability import traced
from notesync.storage.base import SessionEvents, SessionListener, Subscription
from notesync.storage.rest_client import ApiClient, HttpFailure
from notesync.storage.session_file import SessionFile

logger = logging.getLogger(__name__)

AUTH_PATH = "/auth/v1"


def session_from_payload(payload: Any, action: str) -> Session:
    """Build a Session from a token response.

    Raises:
        AuthError: If the payload lacks the user or token fields.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("user"), dict):
        raise AuthError(
            "Malformed auth response: missing user",
            action=action,
        )
    user = payload["user"]
    expires_at: Optional[datetime.datetime] = None
    if isinstance(payload.get("expires_at"), (int, float)):
        expires_at = datetime.datetime.fromtimestamp(payload["expires_at"], tz=timezone.utc)
    elif isinstance(payload.get("expires_in"), (int, float)):
        expires_at = utc_now() + datetime.timedelta(seconds=payload["expires_in"])
    try:
        return Session(
            user_id=user.get("id"),
            email=user.get("email"),
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
        )
    except PydanticValidationError as e:
        raise AuthError(
            "Malformed auth response: invalid user",
            action=action,
        ) from e


class RestAuthProvider:
    """``AuthProvider`` over the hosted auth endpoints.

    Holds the current session, persists it to a ``SessionFile`` when one is
    given, and emits session-change events to subscribers. A session with
    an expiry is renewed with its refresh token ``refresh_margin`` seconds
    before it lapses; a failed renewal signs the client out.
    """

    def __init__(
        self,
        client: ApiClient,
        session_file: Optional[SessionFile] = None,
        reset_redirect_url: Optional[str] = None,
        refresh_margin: float = 60.0,
    ):
        self._client = client
        self._session_file = session_file
        self._reset_redirect_url = reset_redirect_url
        self._refresh_margin = refresh_margin
        self._session: Optional[Session] = None
        self._restored = False
        self._renewal: Optional[asyncio.Task] = None
        self._events = SessionEvents()

    def access_token(self) -> Optional[str]:
        """Token for store requests made on behalf of the current user."""
        return self._session.access_token if self._session else None

    def on_session_change(self, listener: SessionListener) -> Subscription:
        return self._events.subscribe(listener)

    async def _post(self, path: str, action: str, code: ErrorCode = ErrorCode.AUTH_FAILED, **kwargs) -> Any:
        try:
            return await self._client.request("POST", f"{AUTH_PATH}{path}", **kwargs)
        except HttpFailure as e:
            raise AuthError(e.message, action=action, status_code=e.status_code, code=code) from e

    def _store(self, session: Optional[Session]) -> None:
        if self._session_file is None:
            return
        if session is None:
            self._session_file.clear()
        else:
            self._session_file.save(session)

    def _set_session(self, session: Optional[Session], event: AuthEvent) -> None:
        self._session = session
        self._restored = True
        self._store(session)
        self._schedule_renewal(session)
        self._events.emit(event, session)

    @traced("sign_in")
    async def sign_in(self, email: str, password: str) -> Session:
        payload = await self._post(
            "/token",
            "sign_in",
            params={"grant_type": "password"},
            json_body={"email": email, "password": password},
        )
        session = session_from_payload(payload, "sign_in")
        logger.info(f"Signed in as user {session.user_id}")
        self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    @traced("sign_up")
    async def sign_up(self, email: str, password: str) -> SignUpResult:
        payload = await self._post(
            "/signup",
            "sign_up",
            json_body={"email": email, "password": password},
        )
        if isinstance(payload, dict) and payload.get("access_token"):
            session = session_from_payload(payload, "sign_up")
            self._set_session(session, AuthEvent.SIGNED_IN)
            return SignUpResult(session=session)
        logger.info("Sign-up pending e-mail confirmation")
        return SignUpResult(pending_confirmation=True)

    @traced("request_password_reset")
    async def request_password_reset(self, email: str) -> None:
        params = {"redirect_to": self._reset_redirect_url} if self._reset_redirect_url else None
        await self._post(
            "/recover",
            "request_password_reset",
            code=ErrorCode.AUTH_RESET_FAILED,
            params=params,
            json_body={"email": email},
        )

    async def sign_out(self) -> None:
        session = self._session
        if session is None:
            return
        if session.access_token:
            try:
                await self._client.request(
                    "POST", f"{AUTH_PATH}/logout", token=session.access_token
                )
            except HttpFailure as e:
                # The local session is dropped whether or not the server heard us
                logger.warning(f"Remote sign-out failed: {e.message}")
        logger.info(f"Signed out user {session.user_id}")
        self._set_session(None, AuthEvent.SIGNED_OUT)

    async def get_current_session(self) -> Optional[Session]:
        if not self._restored:
            self._restored = True
            stored = self._session_file.load() if self._session_file else None
            if stored is not None and stored.is_expired():
                stored = await self._refresh(stored)
                self._store(stored)
            self._session = stored
            self._schedule_renewal(stored)
        return self._session

    async def aclose(self) -> None:
        """Cancel any pending token renewal."""
        task, self._renewal = self._renewal, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _schedule_renewal(self, session: Optional[Session]) -> None:
        task, self._renewal = self._renewal, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if session is None or session.expires_at is None:
            return
        delay = (session.expires_at - utc_now()).total_seconds() - self._refresh_margin
        self._renewal = asyncio.ensure_future(self._renew_after(max(delay, 0.0), session))

    async def _renew_after(self, delay: float, session: Session) -> None:
        await asyncio.sleep(delay)
        if self._session is not session:
            return
        renewed = await self._refresh(session)
        if self._session is not session:
            return
        if renewed is None or renewed.is_expired():
            logger.info(f"Session for user {session.user_id} could not be renewed, signing out")
            self._set_session(None, AuthEvent.SIGNED_OUT)
        else:
            self._set_session(renewed, AuthEvent.TOKEN_REFRESHED)

    async def _refresh(self, expiring: Session) -> Optional[Session]:
        if not expiring.refresh_token:
            logger.info("Session expires and cannot be refreshed")
            return None
        try:
            payload = await self._post(
                "/token",
                "refresh",
                params={"grant_type": "refresh_token"},
                json_body={"refresh_token": expiring.refresh_token},
            )
            session = session_from_payload(payload, "refresh")
        except AuthError as e:
            logger.info(f"Session could not be refreshed: {e.message}")
            return None
        logger.info(f"Refreshed session for user {session.user_id}")
        return session
