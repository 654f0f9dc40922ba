"""Single inline-edit workflow over a note store."""

import logging
from typing import Optional

from notesync.exceptions import InvalidEditStateError
from notesync.models.schema import EditPhase, EditState, Note, NoteId, validate_content
from notesync.services.note_store import NoteStore

logger = logging.getLogger(__name__)


class EditSession:
    """Holds at most one draft, keyed to the note being edited.

    ``idle -> editing -> idle`` via ``save`` or ``cancel``. Beginning an
    edit on another note discards the current draft. ``save`` returns to
    idle only once the update has succeeded; a failed save keeps the draft
    so it can be retried or cancelled.
    """

    def __init__(self, store: NoteStore):
        self._store = store
        self._state: Optional[EditState] = None

    @property
    def phase(self) -> EditPhase:
        return EditPhase.EDITING if self._state is not None else EditPhase.IDLE

    @property
    def state(self) -> Optional[EditState]:
        return self._state

    @property
    def target_note_id(self) -> Optional[NoteId]:
        return self._state.target_note_id if self._state else None

    @property
    def draft(self) -> Optional[str]:
        return self._state.draft_content if self._state else None

    def is_editing(self, note_id: NoteId) -> bool:
        return self._state is not None and self._state.target_note_id == note_id

    def begin(self, note: Note) -> EditState:
        """Start editing ``note`` with its current content as the draft."""
        if self._state is not None and self._state.target_note_id != note.id:
            logger.debug(f"Discarding draft for note {self._state.target_note_id}")
        self._state = EditState(target_note_id=note.id, draft_content=note.content)
        return self._state

    def edit(self, text: str) -> None:
        """Replace the draft text."""
        if self._state is None:
            raise InvalidEditStateError("No note is being edited", operation="edit")
        self._state.draft_content = text

    async def save(self) -> None:
        """Commit the draft through ``NoteStore.update``.

        Raises:
            InvalidEditStateError: If nothing is being edited.
            ValidationError: If the draft is blank; the edit stays open.
            RemoteError: If the update fails; the edit stays open.
        """
        state = self._state
        if state is None:
            raise InvalidEditStateError("No note is being edited", operation="save")
        draft = validate_content(state.draft_content, field="draft_content")
        await self._store.update(state.target_note_id, draft)
        # Text typed or an edit begun while saving stays open
        if self._state is state and state.draft_content == draft:
            self._state = None

    def cancel(self) -> None:
        """Drop the draft without touching the store."""
        self._state = None
