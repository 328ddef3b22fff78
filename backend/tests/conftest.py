"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.auth.service import create_access_token
from app.chat.manager import reset_session_manager
from app.config import AppSettings, DatabaseSettings, JWTSecrets, Secrets, reset_config, set_config
from app.main import app
from app.store.service import ChatStore, get_store

TEST_SECRET = "test-secret"


def make_token(user_id: int, secret: str = TEST_SECRET, expires_minutes=60) -> str:
    """Sign a token the test app accepts."""
    return create_access_token(user_id, secret, expires_minutes=expires_minutes)


def auth_headers(user_id: int) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class FakeWebSocket:
    """Records frames sent to it. Set ``fail`` to simulate a dead socket."""

    def __init__(self, fail: bool = False):
        self.frames = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(message)

    def of_type(self, kind):
        return [f for f in self.frames if f["type"] == kind]


@pytest.fixture(autouse=True)
def chat_env():
    """Fresh in-memory store, settings and session manager for every test.

    Keeps tests off the file-based chat.duckdb, which can be locked if the
    backend server is running concurrently.
    """
    set_config(AppSettings(
        database=DatabaseSettings(path=":memory:"),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    ))
    ChatStore.reset_instance()
    reset_session_manager()
    yield
    reset_session_manager()
    ChatStore.reset_instance()
    reset_config()


@pytest.fixture
def store():
    """The process-wide in-memory store the app is using."""
    return get_store()


@pytest.fixture
def make_user(store):
    """Factory: create a user directly in the store (no bcrypt)."""
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        n = counter["n"]
        return store.create_user(name or f"user{n}", f"user{n}@example.com", "not-a-real-hash")

    return _make


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app.

    Named api_client (not client) to avoid shadowing the module-level
    `client = TestClient(app)` pattern used in existing test files.
    """
    return TestClient(app)
