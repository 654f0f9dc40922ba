"""Common test fixtures for the notesync client."""

import httpx
import pytest

from notesync.config import config
from notesync.models.db_models import init_db
from notesync.models.schema import Session
from notesync.observability import metrics
from notesync.services.note_store import NoteStore
from notesync.storage.rest_client import ApiClient
from notesync.storage.sql_backend import SqlAuthProvider, SqlNoteBackend
from tests.fakes import FakeAuthProvider, FakeHttpRouter, FakeNoteBackend, make_row

USER = "user-1"
OTHER_USER = "user-2"
API_URL = "https://project.example.test"
API_KEY = "anon-key"


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def test_config(tmp_path, monkeypatch):
    """Point every path at a temporary directory (auto-restored)."""
    monkeypatch.setattr(config, "base_dir", tmp_path)
    monkeypatch.setattr(config, "database_path", tmp_path / "db" / "notes.db")
    monkeypatch.setattr(config, "session_file", tmp_path / "session.json")
    monkeypatch.setattr(config, "log_dir", tmp_path / "logs")
    monkeypatch.setattr(config, "backend", config.backend)
    monkeypatch.setattr(config, "log_level", config.log_level)
    yield config


@pytest.fixture
def store_rows():
    """Two notes for USER (id 2 is newer) and one for OTHER_USER."""
    return [
        make_row(1, "a", USER, minutes=1),
        make_row(2, "b", USER, minutes=2),
        make_row(3, "theirs", OTHER_USER, minutes=3),
    ]


@pytest.fixture
def backend(store_rows):
    return FakeNoteBackend(store_rows)


@pytest.fixture
def note_store(backend):
    store = NoteStore(backend, USER, generation=1)
    yield store
    store.close()


@pytest.fixture
def session():
    return Session(user_id=USER, email="one@example.com", access_token="token-1")


@pytest.fixture
def auth():
    provider = FakeAuthProvider()
    provider.add_user("one@example.com", "secret1", USER)
    provider.add_user("two@example.com", "secret2", OTHER_USER)
    return provider


@pytest.fixture
def engine(tmp_path):
    """A fresh local database."""
    engine = init_db(f"sqlite:///{tmp_path / 'local.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def sql_auth(engine):
    return SqlAuthProvider(engine)


@pytest.fixture
def sql_backend(engine, sql_auth):
    return SqlNoteBackend(engine, principal=sql_auth.current_user_id)


@pytest.fixture
def router():
    return FakeHttpRouter()


@pytest.fixture
async def api_client(anyio_backend, router):
    """ApiClient whose requests are answered by ``router``."""
    client = ApiClient(
        base_url=API_URL, api_key=API_KEY, transport=httpx.MockTransport(router)
    )
    yield client
    await client.aclose()
