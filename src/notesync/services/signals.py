"""Cache-dirty signalling between note mutations and reconciliation."""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from notesync.models.schema import NoteId
from notesync.storage.base import Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheDirty:
    """Local notes may no longer match the store.

    Attributes:
        operation: The mutation that made the cache dirty
        user_id: Owner whose notes changed
        generation: Session generation the mutation was issued under
        note_id: The note touched, when known
    """

    operation: str
    user_id: str
    generation: int
    note_id: Optional[NoteId] = None


DirtyHandler = Callable[[CacheDirty], Awaitable[None]]


class DirtySignal:
    """Async signal carrying ``CacheDirty`` events.

    ``emit`` awaits every handler in connection order, so the emitter
    resumes only once reconciliation has finished. Handler errors
    propagate to the emitter.
    """

    def __init__(self):
        self._handlers: List[Tuple[int, DirtyHandler]] = []
        self._next_key = 0

    def connect(self, handler: DirtyHandler) -> Subscription:
        key = self._next_key
        self._next_key += 1
        self._handlers.append((key, handler))

        def release() -> None:
            self._handlers = [(k, h) for k, h in self._handlers if k != key]

        return Subscription(release)

    async def emit(self, event: CacheDirty) -> None:
        logger.debug(f"Cache dirty after {event.operation} (generation {event.generation})")
        for _, handler in list(self._handlers):
            await handler(event)

    def __len__(self) -> int:
        return len(self._handlers)
