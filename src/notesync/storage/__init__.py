"""Storage layer for the notesync client."""

from notesync.storage.base import AuthProvider, NoteBackend, SessionEvents, Subscription
from notesync.storage.rest_auth import RestAuthProvider
from notesync.storage.rest_client import ApiClient
from notesync.storage.rest_notes import RestNoteBackend
from notesync.storage.session_file import SessionFile
from notesync.storage.sql_backend import SqlAuthProvider, SqlNoteBackend

__all__ = [
    "AuthProvider",
    "NoteBackend",
    "SessionEvents",
    "Subscription",
    "ApiClient",
    "RestAuthProvider",
    "RestNoteBackend",
    "SessionFile",
    "SqlAuthProvider",
    "SqlNoteBackend",
]
