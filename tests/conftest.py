"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from finance_chat.auth import CredentialStore, SessionSigner  # noqa: E402
from finance_chat.db import Database  # noqa: E402
from finance_chat.errors import ConfigurationMissing, UpstreamUnavailable  # noqa: E402
from finance_chat.history import ConversationLog  # noqa: E402
from finance_chat.memory import MemoryStore  # noqa: E402

TEST_SECRET = "test-secret-key-with-enough-length-for-hs256"


class FakeChatClient:
    """Stands in for ChatClient: records every request, replies from a script."""

    model = "fake-model"

    def __init__(self, replies: Optional[List[Any]] = None) -> None:
        self.replies = list(replies or ["ok"])
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, *, api_key, config):
        if not api_key:
            raise ConfigurationMissing("No model API key configured")
        self.calls.append({"messages": messages, "api_key": api_key, "config": config})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for database files during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["FINANCE_CHAT_CONFIG", "FINANCE_CHAT_SECRET", "GROQ_API_KEY"]:
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def db():
    database = Database(":memory:")
    database.init_db()
    yield database
    database.close()


@pytest.fixture
def signer() -> SessionSigner:
    return SessionSigner(TEST_SECRET)


@pytest.fixture
def credentials(db: Database, signer: SessionSigner) -> CredentialStore:
    return CredentialStore(db, signer, bcrypt_rounds=4)


@pytest.fixture
def memory(db: Database) -> MemoryStore:
    return MemoryStore(db)


@pytest.fixture
def history(db: Database) -> ConversationLog:
    return ConversationLog(db)


@pytest.fixture
def alice(credentials: CredentialStore):
    return credentials.register("Alice", "alice@example.com", "s3cret")


@pytest.fixture
def bob(credentials: CredentialStore):
    return credentials.register("Bob", "bob@example.com", "hunter2")


@pytest.fixture
def app_config() -> Dict[str, Any]:
    return {
        "server": {"cors_origins": ["*"]},
        "auth": {"secret": TEST_SECRET, "token_ttl_hours": 24, "bcrypt_rounds": 4},
        "llm": {"model": "fake-model", "api_key": None, "max_tokens": 512},
        "assistant": {"chat_temperature": 0.7},
    }


@pytest.fixture
def upstream_down() -> UpstreamUnavailable:
    return UpstreamUnavailable("Model provider unavailable")
