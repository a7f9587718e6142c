"""Shared pytest fixtures for gworkspace-cli tests.

This module provides reusable fixtures for the secret store, token
models, configuration isolation and the OAuth manage server.
"""

import base64
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from gworkspace_cli.secrets.backends import FileBackend, MemoryBackend
from gworkspace_cli.secrets.models import Token
from gworkspace_cli.secrets.store import KeyringStore

# =============================================================================
# Helpers
# =============================================================================


def make_id_token(claims: dict[str, Any]) -> str:
    """Build an unsigned three-part id_token carrying ``claims``."""
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"x.{payload}.y"


class FakeOAuthClient:
    """OAuth client double recording consent and exchange calls."""

    def __init__(self, token_response: dict[str, Any] | None = None) -> None:
        self.token_response = token_response or {
            "access_token": "access",
            "refresh_token": "rt-from-google",
            "id_token": make_id_token({"email": "a@b.com"}),
            "scope": "openid https://www.googleapis.com/auth/gmail.modify",
        }
        self.authorization_requests: list[tuple[str, list[str], str]] = []
        self.exchanged_codes: list[str] = []

    def authorization_url(self, redirect_uri: str, scopes: list[str], state: str) -> str:
        self.authorization_requests.append((redirect_uri, scopes, state))
        return f"https://accounts.example.com/auth?state={state}"

    def exchange(self, code: str) -> dict[str, Any]:
        self.exchanged_codes.append(code)
        return dict(self.token_response)


# =============================================================================
# Token Fixtures
# =============================================================================


@pytest.fixture
def sample_token() -> Token:
    """Create a complete token for a@b.com."""
    return Token(
        email="a@b.com",
        refresh_token="rt1",
        services=["gmail", "calendar"],
        scopes=[
            "https://www.googleapis.com/auth/gmail.modify",
            "https://www.googleapis.com/auth/calendar",
        ],
        created_at=datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc),
    )


@pytest.fixture
def other_token() -> Token:
    """Create a token for a second account."""
    return Token(email="c@d.com", refresh_token="rt2", services=["tasks"])


# =============================================================================
# Secret Store Fixtures
# =============================================================================


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def keyring_store(memory_backend: MemoryBackend) -> KeyringStore:
    """Create a KeyringStore over an empty in-memory backend."""
    return KeyringStore(memory_backend)


@pytest.fixture
def fast_kdf(monkeypatch: pytest.MonkeyPatch) -> None:
    """Lower PBKDF2 iterations so file vault tests stay fast."""
    monkeypatch.setattr(FileBackend, "KDF_ITERATIONS", 1000)


@pytest.fixture
def file_backend(tmp_path: Path, fast_kdf: None) -> FileBackend:
    """Create a file vault in a temporary directory."""
    return FileBackend(tmp_path / "keyring", lambda prompt: "testpass")


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point configuration at a temporary directory and clear overrides."""
    config_dir = tmp_path / "config"
    monkeypatch.setenv("GWORKSPACE_CONFIG_DIR", str(config_dir))
    for name in (
        "GWORKSPACE_KEYRING_BACKEND",
        "GWORKSPACE_KEYRING_PASSWORD",
        "GOOGLE_OAUTH_CLIENT_ID",
        "GOOGLE_OAUTH_CLIENT_SECRET",
    ):
        monkeypatch.delenv(name, raising=False)
    return config_dir


# =============================================================================
# OAuth Fixtures
# =============================================================================


@pytest.fixture
def fake_oauth_client() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def id_token_factory():
    """Return a builder for unsigned id_tokens."""
    return make_id_token


# =============================================================================
# CLI Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()
