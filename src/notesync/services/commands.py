"""Note mutations as command objects.

A command only performs its write; it does not refresh anything. On
success it returns the ``CacheDirty`` event the note store emits to its
reconciliation step.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from notesync.models.schema import NoteId, validate_content
from notesync.services.signals import CacheDirty
from notesync.storage.base import NoteBackend

logger = logging.getLogger(__name__)


class NoteCommand(ABC):
    """A single remote write against the note store."""

    operation: str = "mutation"

    def validate(self) -> None:
        """Reject the command locally before it touches the network."""

    @abstractmethod
    async def apply(self, backend: NoteBackend) -> None:
        """Perform the remote write."""

    async def execute(self, backend: NoteBackend, user_id: str, generation: int) -> CacheDirty:
        """Validate, write, and describe what went dirty.

        Raises:
            ValidationError: If the command is rejected locally.
            RemoteError: If the store rejects the write.
        """
        self.validate()
        await self.apply(backend)
        return CacheDirty(
            operation=self.operation,
            user_id=user_id,
            generation=generation,
            note_id=getattr(self, "note_id", None),
        )


@dataclass(frozen=True)
class AddNote(NoteCommand):
    """Insert a note owned by ``user_id``."""

    user_id: str
    content: str
    operation = "add"

    def validate(self) -> None:
        validate_content(self.content)

    async def apply(self, backend: NoteBackend) -> None:
        await backend.insert_note(self.user_id, self.content)


@dataclass(frozen=True)
class UpdateNote(NoteCommand):
    """Replace a note's content.

    Whether the caller may touch ``note_id`` is left to the store.
    """

    note_id: NoteId
    content: str
    operation = "update"

    def validate(self) -> None:
        validate_content(self.content)

    async def apply(self, backend: NoteBackend) -> None:
        await backend.update_note(self.note_id, self.content)


@dataclass(frozen=True)
class RemoveNote(NoteCommand):
    """Delete a note."""

    note_id: NoteId
    operation = "remove"

    async def apply(self, backend: NoteBackend) -> None:
        await backend.delete_note(self.note_id)
