"""Composition root: wires provider, backend, tracker and gate from config."""
import logging
from typing import Optional

import httpx

from notesync.config import NoteSyncConfig, config
from notesync.models.db_models import init_db
from notesync.services.auth_gate import AuthGate
from notesync.services.session_tracker import SessionTracker
from notesync.storage.base import AuthProvider, NoteBackend
from notesync.storage.rest_auth import RestAuthProvider
from notesync.storage.rest_client import ApiClient
from notesync.storage.rest_notes import RestNoteBackend
from notesync.storage.session_file import SessionFile
from notesync.storage.sql_backend import SqlAuthProvider, SqlNoteBackend

logger = logging.getLogger(__name__)


class NoteSyncApp:
    """Owns every long-lived object of one client.

    The single ``SessionTracker`` is built here and passed to the gate;
    nothing looks the session up globally.

    Usage:
        async with NoteSyncApp() as app:
            await app.gate.sign_in("me@example.com", "secret")
    """

    def __init__(
        self,
        cfg: Optional[NoteSyncConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = cfg or config
        self.api_client: Optional[ApiClient] = None
        self.engine = None
        session_file = (
            SessionFile(self.config.get_absolute_path(self.config.session_file))
            if self.config.persist_session
            else None
        )

        self.auth: AuthProvider
        self.backend: NoteBackend
        if self.config.backend == "local":
            self.engine = init_db(self.config.get_db_url())
            auth = SqlAuthProvider(self.engine, session_file=session_file)
            self.auth = auth
            self.backend = SqlNoteBackend(self.engine, principal=auth.current_user_id)
            logger.info(f"Using local backend: {self.config.get_db_url()}")
        else:
            self.config.require_remote()
            self.api_client = ApiClient(
                base_url=self.config.api_url,
                api_key=self.config.api_key,
                timeout=self.config.request_timeout,
                transport=transport,
            )
            auth = RestAuthProvider(
                self.api_client,
                session_file=session_file,
                reset_redirect_url=self.config.password_reset_redirect_url,
            )
            self.auth = auth
            self.backend = RestNoteBackend(self.api_client, token_source=auth.access_token)
            logger.info(f"Using hosted backend: {self.config.api_url}")

        self.tracker = SessionTracker(self.auth)
        self.gate = AuthGate(self.tracker, self.auth, self.backend)

    async def start(self) -> None:
        await self.gate.start()

    async def aclose(self) -> None:
        self.gate.close()
        self.tracker.stop()
        if isinstance(self.auth, RestAuthProvider):
            await self.auth.aclose()
        if self.api_client is not None:
            await self.api_client.aclose()
        if self.engine is not None:
            self.engine.dispose()

    async def __aenter__(self) -> "NoteSyncApp":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
