"""Data models for the notesync client.

These are the validated shapes used at the remote boundary: anything the
store or auth provider returns is parsed into one of these models, and a
payload that does not fit is rejected instead of propagating missing fields.
"""

import datetime
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from notesync.exceptions import ErrorCode, ValidationError

# Server-assigned note identifiers are opaque: integer keys or uuid strings
NoteId = Union[int, str]


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes; hosted rows carry an offset. Both
    must compare against each other when sorting.
    """
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def validate_content(content: Optional[str], field: str = "content") -> str:
    """Reject empty or whitespace-only note content.

    Returns:
        The content, unchanged.

    Raises:
        ValidationError: If the content is empty or only whitespace.
    """
    if content is None or not content.strip():
        raise ValidationError(
            "Note content cannot be empty",
            field=field,
            value=content,
            code=ErrorCode.CONTENT_REQUIRED,
        )
    return content


class AuthEvent(str, Enum):
    """Session-change events reported by an auth provider."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


class Session(BaseModel):
    """An authenticated identity bound to the client."""

    user_id: str = Field(..., min_length=1, description="ID of the signed-in user")
    email: Optional[str] = Field(default=None, description="E-mail of the user")
    access_token: Optional[str] = Field(
        default=None, description="Bearer token for the remote store"
    )
    refresh_token: Optional[str] = Field(
        default=None, description="Token used to renew an expired session"
    )
    expires_at: Optional[datetime.datetime] = Field(
        default=None, description="When the access token stops being valid (UTC)"
    )

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(
        cls, v: Optional[datetime.datetime]
    ) -> Optional[datetime.datetime]:
        """Treat naive expiry times as UTC."""
        if v is None:
            return None
        return ensure_timezone_aware(v)

    def is_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        """Check whether the session's expiry has passed."""
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at


class Note(BaseModel):
    """A user-owned text note as stored remotely.

    The owner is carried on the wire as ``user_id``.
    """

    id: NoteId = Field(..., description="Server-assigned unique ID")
    content: str = Field(..., description="Text of the note")
    owner_id: str = Field(..., alias="user_id", description="ID of the owning user")
    created_at: datetime.datetime = Field(
        ..., description="Server-assigned creation time, the sort key"
    )

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime.datetime) -> datetime.datetime:
        """Treat naive creation times as UTC."""
        return ensure_timezone_aware(v)


@dataclass(frozen=True)
class SignUpResult:
    """Outcome of a sign-up request.

    Attributes:
        session: The new session, when the provider signs the user in directly.
        pending_confirmation: True when the user must confirm by e-mail first.
    """

    session: Optional[Session] = None
    pending_confirmation: bool = False


class EditPhase(str, Enum):
    """Phases of the inline-edit workflow."""

    IDLE = "idle"
    EDITING = "editing"


@dataclass
class EditState:
    """The single in-progress edit: target note and its draft text."""

    target_note_id: NoteId
    draft_content: str


class Undetermined:
    """Type of the value reported before the first session fetch resolves."""

    _instance: Optional["Undetermined"] = None

    def __new__(cls) -> "Undetermined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNDETERMINED"


UNDETERMINED = Undetermined()
