"""Local SQLite backend: note table and accounts in one database file.

Serves as a stand-in for the hosted backend when working offline. Row
ownership is enforced here the way the hosted store's policies enforce
it: reads only see the signed-in user's rows, writes only touch them.
"""
import hashlib
import hmac
import logging
import secrets
import uuid
from typing import Callable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from notesync.exceptions import AuthError, ErrorCode, RemoteError
from notesync.models.db_models import DBNote, DBUser, get_session_factory
from notesync.models.schema import AuthEvent, Note, NoteId, Session, SignUpResult, utc_now
from notesync.observability import traced
from notesync.storage.base import SessionEvents, SessionListener, Subscription
from notesync.storage.session_file import SessionFile

logger = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 200_000
_MIN_PASSWORD_LENGTH = 6


def hash_password(password: str, salt: str) -> str:
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), _PBKDF2_ITERATIONS
    )
    return digest.hex()


def _coerce_id(note_id: NoteId, operation: str) -> int:
    if isinstance(note_id, int):
        return note_id
    try:
        return int(note_id)
    except (TypeError, ValueError):
        raise RemoteError(
            f"invalid input syntax for type integer: \"{note_id}\"",
            operation=operation,
            status_code=400,
            code=ErrorCode.REMOTE_WRITE_FAILED,
        ) from None


class SqlNoteBackend:
    """``NoteBackend`` over the local ``notes`` table.

    Args:
        engine: SQLAlchemy engine from ``init_db``.
        principal: Returns the signed-in user's id, or None when signed out.
    """

    def __init__(self, engine, principal: Callable[[], Optional[str]]):
        self.engine = engine
        self.session_factory = get_session_factory(engine)
        self._principal = principal

    def _require_principal(self, operation: str) -> str:
        user_id = self._principal()
        if user_id is None:
            raise RemoteError(
                "Not authenticated",
                operation=operation,
                status_code=401,
                code=ErrorCode.REMOTE_WRITE_FAILED,
            )
        return user_id

    @traced("select_notes")
    async def select_notes(self, user_id: str) -> List[Note]:
        if self._principal() != user_id:
            # Other users' rows are invisible, not an error
            return []
        try:
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNote)
                    .where(DBNote.user_id == user_id)
                    .order_by(DBNote.created_at.desc(), DBNote.id.desc())
                ).scalars().all()
                return [
                    Note(
                        id=row.id,
                        content=row.content,
                        user_id=row.user_id,
                        created_at=row.created_at,
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            raise RemoteError(
                str(e), operation="select_notes", original_error=e
            ) from e

    @traced("insert_note")
    async def insert_note(self, user_id: str, content: str) -> None:
        principal = self._require_principal("insert_note")
        if principal != user_id:
            raise RemoteError(
                'new row violates row-level security policy for table "notes"',
                operation="insert_note",
                status_code=403,
                code=ErrorCode.REMOTE_WRITE_FAILED,
            )
        try:
            with self.session_factory() as session:
                session.add(DBNote(content=content, user_id=user_id, created_at=utc_now()))
                session.commit()
        except SQLAlchemyError as e:
            raise RemoteError(
                str(e), operation="insert_note", code=ErrorCode.REMOTE_WRITE_FAILED, original_error=e
            ) from e

    @traced("update_note")
    async def update_note(self, note_id: NoteId, content: str) -> None:
        principal = self._require_principal("update_note")
        row_id = _coerce_id(note_id, "update_note")
        try:
            with self.session_factory() as session:
                # Rows owned by someone else match nothing
                session.execute(
                    update(DBNote)
                    .where(DBNote.id == row_id, DBNote.user_id == principal)
                    .values(content=content)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise RemoteError(
                str(e), operation="update_note", code=ErrorCode.REMOTE_WRITE_FAILED, original_error=e
            ) from e

    @traced("delete_note")
    async def delete_note(self, note_id: NoteId) -> None:
        principal = self._require_principal("delete_note")
        row_id = _coerce_id(note_id, "delete_note")
        try:
            with self.session_factory() as session:
                session.execute(
                    delete(DBNote).where(DBNote.id == row_id, DBNote.user_id == principal)
                )
                session.commit()
        except SQLAlchemyError as e:
            raise RemoteError(
                str(e), operation="delete_note", code=ErrorCode.REMOTE_WRITE_FAILED, original_error=e
            ) from e

    async def check_connection(self) -> int:
        principal = self._principal()
        try:
            with self.session_factory() as session:
                query = select(func.count()).select_from(
                    select(DBNote.id).where(DBNote.user_id == principal).limit(1).subquery()
                )
                return session.execute(query).scalar_one()
        except SQLAlchemyError as e:
            raise RemoteError(str(e), operation="check_connection", original_error=e) from e


class SqlAuthProvider:
    """``AuthProvider`` over the local ``users`` table.

    Local accounts are confirmed immediately, so sign-up signs the user in.
    """

    def __init__(self, engine, session_file: Optional[SessionFile] = None):
        self.engine = engine
        self.session_factory = get_session_factory(engine)
        self._session_file = session_file
        self._session: Optional[Session] = None
        self._restored = False
        self._events = SessionEvents()

    def current_user_id(self) -> Optional[str]:
        return self._session.user_id if self._session else None

    def on_session_change(self, listener: SessionListener) -> Subscription:
        return self._events.subscribe(listener)

    def _set_session(self, session: Optional[Session], event: AuthEvent) -> None:
        self._session = session
        self._restored = True
        if self._session_file is not None:
            if session is None:
                self._session_file.clear()
            else:
                self._session_file.save(session)
        self._events.emit(event, session)

    @staticmethod
    def _new_session(user: DBUser) -> Session:
        return Session(user_id=user.id, email=user.email, access_token=secrets.token_urlsafe(24))

    @traced("sign_in")
    async def sign_in(self, email: str, password: str) -> Session:
        with self.session_factory() as db:
            user = db.execute(
                select(DBUser).where(DBUser.email == email.strip().lower())
            ).scalar_one_or_none()
        if user is None or not hmac.compare_digest(
            user.password_hash, hash_password(password, user.salt)
        ):
            raise AuthError("Invalid login credentials", action="sign_in", status_code=400)
        session = self._new_session(user)
        logger.info(f"Signed in as user {user.id}")
        self._set_session(session, AuthEvent.SIGNED_IN)
        return session

    @traced("sign_up")
    async def sign_up(self, email: str, password: str) -> SignUpResult:
        email = email.strip().lower()
        if "@" not in email:
            raise AuthError("Unable to validate email address: invalid format", action="sign_up", status_code=400)
        if len(password) < _MIN_PASSWORD_LENGTH:
            raise AuthError(
                f"Password should be at least {_MIN_PASSWORD_LENGTH} characters",
                action="sign_up",
                status_code=422,
            )
        salt = secrets.token_hex(16)
        user = DBUser(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password(password, salt),
            salt=salt,
            created_at=utc_now(),
        )
        try:
            with self.session_factory() as db:
                db.add(user)
                db.commit()
        except IntegrityError as e:
            raise AuthError("User already registered", action="sign_up", status_code=422) from e
        session = self._new_session(user)
        logger.info(f"Registered user {user.id}")
        self._set_session(session, AuthEvent.SIGNED_IN)
        return SignUpResult(session=session)

    async def request_password_reset(self, email: str) -> None:
        if "@" not in email:
            raise AuthError(
                "Unable to validate email address: invalid format",
                action="request_password_reset",
                status_code=400,
                code=ErrorCode.AUTH_RESET_FAILED,
            )
        # No mail transport locally; the request is only recorded
        logger.info("Password reset requested for a local account")

    async def sign_out(self) -> None:
        if self._session is None:
            return
        logger.info(f"Signed out user {self._session.user_id}")
        self._set_session(None, AuthEvent.SIGNED_OUT)

    async def get_current_session(self) -> Optional[Session]:
        if not self._restored:
            self._restored = True
            stored = self._session_file.load() if self._session_file else None
            if stored is not None:
                with self.session_factory() as db:
                    if db.get(DBUser, stored.user_id) is None:
                        logger.info("Stored session belongs to an unknown account")
                        self._session_file.clear()
                        stored = None
            self._session = stored
        return self._session
