"""
notesync - a personal note-taking client.

Binds an authentication session to a remote-backed collection of user-owned
notes: session tracking, read-after-write note synchronisation and a single
inline-edit workflow.

This version uses asyncio for all network-bound operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notesync")
except PackageNotFoundError:
    __version__ = "0.3.0"
