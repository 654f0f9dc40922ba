"""Note store backed by a hosted PostgREST-style ``notes`` table."""
import logging
from typing import Any, Callable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from notesync.exceptions import ErrorCode, RemoteError
from notesync.models.schema import Note, NoteId
from notesync.observability import traced
from notesync.storage.rest_client import ApiClient, HttpFailure

logger = logging.getLogger(__name__)

NOTES_PATH = "/rest/v1/notes"


def parse_note_rows(payload: Any, operation: str = "select_notes") -> List[Note]:
    """Validate a list of note rows from the store.

    Raises:
        RemoteError: If the payload is not a list of well-formed rows.
    """
    if not isinstance(payload, list):
        raise RemoteError(
            "Malformed response: expected a list of notes",
            operation=operation,
            code=ErrorCode.REMOTE_MALFORMED_RESPONSE,
        )
    try:
        return [Note.model_validate(row) for row in payload]
    except PydanticValidationError as e:
        raise RemoteError(
            "Malformed note row in response",
            operation=operation,
            code=ErrorCode.REMOTE_MALFORMED_RESPONSE,
            original_error=e,
        ) from e


class RestNoteBackend:
    """``NoteBackend`` over the hosted table API.

    Requests are authorised with the current session's access token, so the
    store's row-level policies see the signed-in user.
    """

    def __init__(self, client: ApiClient, token_source: Callable[[], Optional[str]]):
        self._client = client
        self._token_source = token_source

    async def _call(self, operation: str, method: str, code: ErrorCode, **kwargs) -> Any:
        try:
            return await self._client.request(
                method, NOTES_PATH, token=self._token_source(), **kwargs
            )
        except HttpFailure as e:
            raise RemoteError(
                e.message,
                operation=operation,
                status_code=e.status_code,
                code=code if e.status_code is not None else ErrorCode.REMOTE_UNAVAILABLE,
            ) from e

    @traced("select_notes")
    async def select_notes(self, user_id: str) -> List[Note]:
        payload = await self._call(
            "select_notes",
            "GET",
            ErrorCode.REMOTE_READ_FAILED,
            params={
                "select": "*",
                "user_id": f"eq.{user_id}",
                "order": "created_at.desc",
            },
        )
        return parse_note_rows(payload)

    @traced("insert_note")
    async def insert_note(self, user_id: str, content: str) -> None:
        await self._call(
            "insert_note",
            "POST",
            ErrorCode.REMOTE_WRITE_FAILED,
            json_body=[{"content": content, "user_id": user_id}],
            headers={"Prefer": "return=minimal"},
        )

    @traced("update_note")
    async def update_note(self, note_id: NoteId, content: str) -> None:
        await self._call(
            "update_note",
            "PATCH",
            ErrorCode.REMOTE_WRITE_FAILED,
            params={"id": f"eq.{note_id}"},
            json_body={"content": content},
            headers={"Prefer": "return=minimal"},
        )

    @traced("delete_note")
    async def delete_note(self, note_id: NoteId) -> None:
        await self._call(
            "delete_note",
            "DELETE",
            ErrorCode.REMOTE_WRITE_FAILED,
            params={"id": f"eq.{note_id}"},
        )

    async def check_connection(self) -> int:
        payload = await self._call(
            "check_connection",
            "GET",
            ErrorCode.REMOTE_READ_FAILED,
            params={"select": "*", "limit": "1"},
        )
        if not isinstance(payload, list):
            raise RemoteError(
                "Malformed response: expected a list of notes",
                operation="check_connection",
                code=ErrorCode.REMOTE_MALFORMED_RESPONSE,
            )
        return len(payload)
