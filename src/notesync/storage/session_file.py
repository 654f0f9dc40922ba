"""Persisted session snapshot, restored on startup."""
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from notesync.models.schema import Session

logger = logging.getLogger(__name__)


class SessionFile:
    """Stores the last session as JSON so a restart can pick it up.

    A missing, unreadable or malformed file reads as "no session".
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[Session]:
        if not self.path.exists():
            return None
        try:
            return Session.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path.name}: {e}")
            return None

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic write via temp file
        temp_file = self.path.with_suffix(".tmp")
        temp_file.write_text(session.model_dump_json(), encoding="utf-8")
        os.chmod(temp_file, 0o600)
        temp_file.replace(self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
