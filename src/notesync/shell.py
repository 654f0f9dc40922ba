"""Line-oriented shell over the auth gate."""
import asyncio
import shlex
from typing import Awaitable, Callable, Dict, List, Optional

from notesync.exceptions import NoteSyncError
from notesync.models.schema import Note
from notesync.observability import metrics
from notesync.services.auth_gate import AuthGate, GateState


HELP_TEXT = """Commands:
  login <email> <password>    sign in
  signup <email> <password>   create an account
  reset <email>               send a password reset link
  logout                      sign out
  list                        show your notes, newest first
  add <text>                  add a note
  edit <id>                   start editing a note
  draft <text>                replace the draft of the note being edited
  save                        save the draft
  cancel                      discard the draft
  delete <id>                 delete a note
  refresh                     reload notes from the store
  status                      show session state
  stats                       show operation timings and error counts
  quit                        leave"""


def format_note(note: Note) -> str:
    return f"[{note.id}] {note.content}  ({note.created_at:%Y-%m-%d %H:%M})"


class NotesShell:
    """Parses one command per line and drives the gate.

    Errors are reported in the output line, never raised.
    """

    def __init__(self, gate: AuthGate):
        self.gate = gate
        self._commands: Dict[str, Callable[[List[str]], Awaitable[str]]] = {
            "help": self._help,
            "status": self._status,
            "stats": self._stats,
            "login": self._login,
            "signup": self._signup,
            "reset": self._reset,
            "logout": self._logout,
            "list": self._list,
            "add": self._add,
            "edit": self._edit,
            "draft": self._draft,
            "save": self._save,
            "cancel": self._cancel,
            "delete": self._delete,
            "refresh": self._refresh,
        }

    async def execute(self, line: str) -> str:
        """Run one command line and return what to print."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            return f"Error: {e}"
        if not parts:
            return ""
        name, args = parts[0].lower(), parts[1:]
        handler = self._commands.get(name)
        if handler is None:
            return f"Unknown command '{name}'. Type 'help' for a list."
        try:
            return await handler(args)
        except NoteSyncError as e:
            return f"Error: {e.message}"

    async def run(self, prompt: str = "notes> ") -> None:
        """Read commands from stdin until ``quit`` or end of input."""
        loop = asyncio.get_running_loop()
        while True:
            try:
                line = await loop.run_in_executor(None, input, prompt)
            except EOFError:
                break
            if line.strip().lower() in ("quit", "exit"):
                break
            output = await self.execute(line)
            if output:
                print(output)

    def _form_result(self, ok: bool) -> str:
        form = self.gate.form
        return (form.success_message if ok else f"Error: {form.error_message}") or ""

    def _require_notes(self):
        if self.gate.state is GateState.LOADING:
            raise NoteSyncError("Still loading, try again")
        if self.gate.notes is None:
            raise NoteSyncError("Not signed in. Use 'login' or 'signup'.")
        return self.gate.notes

    def _find(self, note_id: str) -> Note:
        note = self._require_notes().get(note_id)
        if note is None:
            raise NoteSyncError(f"No note with id {note_id}")
        return note

    async def _help(self, args: List[str]) -> str:
        return HELP_TEXT

    async def _status(self, args: List[str]) -> str:
        session = self.gate.session
        lines = [f"state: {self.gate.state.value}"]
        if session is not None:
            lines.append(f"user: {session.email or session.user_id}")
        editor = self.gate.editor
        if editor is not None and editor.target_note_id is not None:
            lines.append(f"editing: {editor.target_note_id}")
        return "\n".join(lines)

    async def _stats(self, args: List[str]) -> str:
        summary = metrics.get_summary()
        lines = [f"operations: {summary['total_operations']} ({summary['total_errors']} failed)"]
        for name, m in sorted(metrics.get_metrics().items()):
            lines.append(
                f"  {name}: {m['count']} calls, avg {m['avg_duration_ms']}ms, {m['error_count']} errors"
            )
            if m["last_error"]:
                lines.append(f"    last error: {m['last_error']}")
        return "\n".join(lines)

    async def _login(self, args: List[str]) -> str:
        if len(args) != 2:
            return "Usage: login <email> <password>"
        return self._form_result(await self.gate.sign_in(args[0], args[1]))

    async def _signup(self, args: List[str]) -> str:
        if len(args) != 2:
            return "Usage: signup <email> <password>"
        return self._form_result(await self.gate.sign_up(args[0], args[1]))

    async def _reset(self, args: List[str]) -> str:
        email: Optional[str] = args[0] if args else None
        return self._form_result(await self.gate.request_password_reset(email))

    async def _logout(self, args: List[str]) -> str:
        await self.gate.sign_out()
        return "Signed out"

    async def _list(self, args: List[str]) -> str:
        store = self._require_notes()
        if store.loading and not store.notes:
            return "Loading..."
        if not store.notes:
            if store.last_error is not None:
                return f"Error: {store.last_error.message}"
            return "No notes yet"
        return "\n".join(format_note(note) for note in store.notes)

    async def _add(self, args: List[str]) -> str:
        await self._require_notes().add(" ".join(args))
        return await self._list([])

    async def _edit(self, args: List[str]) -> str:
        if len(args) != 1:
            return "Usage: edit <id>"
        note = self._find(args[0])
        state = self.gate.editor.begin(note)
        return f"Editing [{state.target_note_id}]: {state.draft_content}"

    async def _draft(self, args: List[str]) -> str:
        self._require_notes()
        self.gate.editor.edit(" ".join(args))
        return f"Draft: {self.gate.editor.draft}"

    async def _save(self, args: List[str]) -> str:
        self._require_notes()
        await self.gate.editor.save()
        return await self._list([])

    async def _cancel(self, args: List[str]) -> str:
        self._require_notes()
        self.gate.editor.cancel()
        return "Edit cancelled"

    async def _delete(self, args: List[str]) -> str:
        if len(args) != 1:
            return "Usage: delete <id>"
        note = self._find(args[0])
        await self._require_notes().remove(note.id)
        return await self._list([])

    async def _refresh(self, args: List[str]) -> str:
        await self._require_notes().refresh()
        return await self._list([])
