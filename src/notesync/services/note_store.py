"""In-memory notes for the signed-in user, kept in step with the store."""

import asyncio
import itertools
import logging
from typing import Any, Coroutine, List, Optional, Set, Tuple, TypeVar

from notesync.exceptions import ErrorCode, NoteSyncError, RemoteError, StaleSessionError
from notesync.models.schema import Note, NoteId
from notesync.observability import timed_operation
from notesync.services.commands import AddNote, NoteCommand, RemoveNote, UpdateNote
from notesync.services.signals import CacheDirty, DirtySignal
from notesync.storage.base import NoteBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")


class NoteStore:
    """Notes owned by one user, mirrored from the remote store.

    Every mutation is a command; its success emits a ``CacheDirty`` event
    and the store's single reconciliation step answers by re-fetching the
    whole list (read-after-write). Nothing is patched locally, so after a
    refresh resolves the cache equals the store's rows for the user,
    newest first.

    Each operation runs as a task tagged with the session generation at
    issue time. ``rebind`` and ``close`` cancel in-flight tasks, and a
    response carrying an older generation is dropped. Refreshes are
    numbered as they are issued and a response older than the last one
    applied is dropped too, so concurrent mutations converge on the
    store's state whatever order the responses arrive in.
    """

    def __init__(
        self,
        backend: NoteBackend,
        user_id: str,
        generation: int = 0,
        signal: Optional[DirtySignal] = None,
    ):
        self._backend = backend
        self._user_id = user_id
        self._generation = generation
        self._notes: Tuple[Note, ...] = ()
        self._sequence = itertools.count(1)
        self._applied_sequence = 0
        self._pending_reloads = 0
        self._inflight: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()
        self._closed = False
        self.last_error: Optional[NoteSyncError] = None
        self.signal = signal or DirtySignal()
        self._reconciler = self.signal.connect(self._reconcile)

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def notes(self) -> Tuple[Note, ...]:
        return self._notes

    @property
    def loading(self) -> bool:
        return self._pending_reloads > 0

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, note_id: NoteId) -> Optional[Note]:
        for note in self._notes:
            if note.id == note_id or str(note.id) == str(note_id):
                return note
        return None

    def rebind(self, user_id: str, generation: Optional[int] = None) -> None:
        """Bind to another user: cancel in-flight work and drop the cache."""
        self._check_open()
        self._cancel_inflight()
        self._generation = self._generation + 1 if generation is None else generation
        self._user_id = user_id
        self._notes = ()
        self._applied_sequence = 0
        self.last_error = None
        logger.debug(f"Note store rebound to user {user_id} (generation {self._generation})")

    def close(self) -> None:
        """Cancel in-flight work; the store accepts no further operations."""
        if self._closed:
            return
        self._closed = True
        self._cancel_inflight()
        self._reconciler.unsubscribe()
        logger.debug(f"Note store for user {self._user_id} closed")

    async def refresh(self, user_id: Optional[str] = None) -> Tuple[Note, ...]:
        """Replace the cache with the store's notes for the bound user.

        Passing a different ``user_id`` rebinds first.

        Raises:
            RemoteError: If the read fails or returns malformed rows; the
                cache is left as it was.
            StaleSessionError: If the store was rebound or closed meanwhile.
        """
        self._check_open()
        if user_id is not None and user_id != self._user_id:
            self.rebind(user_id)
        await self._run(self._reload())
        return self._notes

    async def add(self, content: str) -> None:
        """Insert a note for the bound user, then refresh.

        Blank content raises ``ValidationError`` without any network call.
        """
        await self.dispatch(AddNote(user_id=self._user_id, content=content))

    async def update(self, note_id: NoteId, content: str) -> None:
        """Replace a note's content, then refresh."""
        await self.dispatch(UpdateNote(note_id=note_id, content=content))

    async def remove(self, note_id: NoteId) -> None:
        """Delete a note, then refresh."""
        await self.dispatch(RemoveNote(note_id=note_id))

    async def dispatch(self, command: NoteCommand) -> None:
        """Run a mutation command; on success the cache is reconciled.

        Failures propagate unchanged and are not retried; the cache keeps
        whatever it showed before the call.
        """
        self._check_open()
        command.validate()
        await self._run(self._execute(command))

    def schedule_refresh(self) -> asyncio.Task:
        """Refresh in the background, recording failures in ``last_error``."""
        self._check_open()
        task = asyncio.ensure_future(self._background_refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _background_refresh(self) -> None:
        try:
            await self.refresh()
        except StaleSessionError:
            logger.debug("Background refresh abandoned: session changed")
        except NoteSyncError as e:
            logger.warning(f"Background refresh failed: {e.message}")

    async def _execute(self, command: NoteCommand) -> None:
        with timed_operation(f"note_store.{command.operation}", user_id=self._user_id):
            event = await command.execute(self._backend, self._user_id, self._generation)
        await self.signal.emit(event)

    async def _reconcile(self, event: CacheDirty) -> None:
        if event.generation != self._generation or self._closed:
            logger.debug(f"Ignoring dirty signal from generation {event.generation}")
            return
        await self._reload()

    async def _reload(self) -> None:
        sequence = next(self._sequence)
        generation = self._generation
        user_id = self._user_id
        self._pending_reloads += 1
        try:
            with timed_operation("note_store.refresh", user_id=user_id) as op:
                try:
                    notes = await self._backend.select_notes(user_id)
                    self._check_ownership(notes, user_id)
                except RemoteError as e:
                    if generation == self._generation:
                        self.last_error = e
                    raise
                op["result_count"] = len(notes)
        finally:
            self._pending_reloads -= 1

        if self._closed or generation != self._generation:
            logger.debug(f"Dropping refresh #{sequence} from generation {generation}")
            return
        if sequence < self._applied_sequence:
            logger.debug(f"Dropping refresh #{sequence}, #{self._applied_sequence} already applied")
            return
        self._applied_sequence = sequence
        self._notes = tuple(notes)
        self.last_error = None

    @staticmethod
    def _check_ownership(notes: List[Note], user_id: str) -> None:
        foreign = [note.id for note in notes if note.owner_id != user_id]
        if foreign:
            raise RemoteError(
                f"Store returned {len(foreign)} note(s) not owned by the current user",
                operation="select_notes",
                code=ErrorCode.REMOTE_MALFORMED_RESPONSE,
            )

    async def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run ``coro`` as a tracked task tagged with the current generation."""
        generation = self._generation
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise StaleSessionError(
                "Operation abandoned: the session changed before it completed",
                issued_generation=generation,
                current_generation=self._generation,
            ) from None

    def _cancel_inflight(self) -> None:
        for task in list(self._inflight):
            task.cancel()
        self._inflight.clear()

    def _check_open(self) -> None:
        if self._closed:
            raise StaleSessionError(
                "Note store is closed",
                issued_generation=self._generation,
            )
