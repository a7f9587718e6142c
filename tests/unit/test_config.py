"""Unit tests for configuration loading and configuration errors."""

import json
import stat
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gworkspace_cli.config import (
    config_dir,
    ensure_keyring_dir,
    load_client_credentials,
    load_config,
    resolve_keyring_backend_info,
)
from gworkspace_cli.errors import ConfigError, CredentialsMissingError, GWorkspaceError


@pytest.mark.unit
class TestConfigDir:
    """Tests for config_dir() resolution."""

    def test_should_use_explicit_override(self, isolated_config: Path) -> None:
        """Verify GWORKSPACE_CONFIG_DIR wins."""
        assert config_dir() == isolated_config

    def test_should_use_xdg_config_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify XDG_CONFIG_HOME is honored without an override."""
        monkeypatch.delenv("GWORKSPACE_CONFIG_DIR", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))

        assert config_dir() == tmp_path / "xdg" / "gworkspace-cli"

    def test_should_fall_back_to_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Verify ~/.config is the final fallback."""
        monkeypatch.delenv("GWORKSPACE_CONFIG_DIR", raising=False)
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))

        assert config_dir() == tmp_path / ".config" / "gworkspace-cli"


@pytest.mark.unit
class TestEnsureKeyringDir:
    """Tests for ensure_keyring_dir()."""

    def test_should_create_directory_when_missing(self, isolated_config: Path) -> None:
        """Verify the vault directory is created owner-only."""
        path = ensure_keyring_dir()

        assert path == isolated_config / "keyring"
        assert stat.S_IMODE(path.stat().st_mode) == 0o700

    def test_should_fix_directory_permissions(self, tmp_path: Path) -> None:
        """Verify insecure permissions are corrected."""
        vault = tmp_path / "vault"
        vault.mkdir(mode=0o755)

        ensure_keyring_dir(vault)

        assert stat.S_IMODE(vault.stat().st_mode) == 0o700


@pytest.mark.unit
class TestLoadConfig:
    """Tests for load_config()."""

    def test_should_return_defaults_without_file(self, isolated_config: Path) -> None:
        """Verify a missing config file is not an error."""
        config = load_config()

        assert config.keyring_backend is None
        assert config.keyring_dir is None

    def test_should_raise_for_invalid_json(self, isolated_config: Path) -> None:
        """Verify a malformed config file raises ConfigError."""
        isolated_config.mkdir(parents=True)
        (isolated_config / "config.json").write_text("not valid json {{{")

        with pytest.raises(ConfigError):
            load_config()


@pytest.mark.unit
class TestResolveKeyringBackendInfo:
    """Tests for resolve_keyring_backend_info()."""

    def test_should_default_to_auto(self, isolated_config: Path) -> None:
        """Verify auto is used when nothing is configured."""
        info = resolve_keyring_backend_info(no_input=True)

        assert info.value == "auto"
        assert info.source == "default"
        assert info.file_dir == isolated_config / "keyring"
        assert info.password is None

    def test_should_read_config_file(self, isolated_config: Path) -> None:
        """Verify config.json supplies the backend and vault directory."""
        isolated_config.mkdir(parents=True)
        (isolated_config / "config.json").write_text(
            json.dumps({"keyring_backend": "file", "keyring_dir": str(isolated_config / "vault")})
        )

        info = resolve_keyring_backend_info(no_input=True)

        assert info.value == "file"
        assert info.source == "config"
        assert info.file_dir == isolated_config / "vault"

    def test_should_prefer_environment(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify the environment overrides config.json."""
        isolated_config.mkdir(parents=True)
        (isolated_config / "config.json").write_text(json.dumps({"keyring_backend": "keychain"}))
        monkeypatch.setenv("GWORKSPACE_KEYRING_BACKEND", "file")
        monkeypatch.setenv("GWORKSPACE_KEYRING_PASSWORD", "testpass")

        info = resolve_keyring_backend_info(no_input=True)

        assert info.value == "file"
        assert info.source == "env"
        assert info.password is not None
        assert info.password.get_secret_value() == "testpass"
        assert "testpass" not in repr(info)

    def test_should_disallow_prompt_with_no_input(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify --no-input disables prompting even on a terminal."""
        tty = MagicMock()
        tty.isatty.return_value = True
        monkeypatch.setattr("sys.stdin", tty)

        assert resolve_keyring_backend_info(no_input=True).prompt_allowed is False
        assert resolve_keyring_backend_info(no_input=False).prompt_allowed is True

    def test_should_disallow_prompt_without_tty(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify prompting requires an interactive stdin."""
        pipe = MagicMock()
        pipe.isatty.return_value = False
        monkeypatch.setattr("sys.stdin", pipe)

        assert resolve_keyring_backend_info().prompt_allowed is False


@pytest.mark.unit
class TestLoadClientCredentials:
    """Tests for load_client_credentials()."""

    def test_should_prefer_environment(
        self, isolated_config: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify env variables are used without a credentials file."""
        monkeypatch.setenv("GOOGLE_OAUTH_CLIENT_ID", "env-id")
        monkeypatch.setenv("GOOGLE_OAUTH_CLIENT_SECRET", "env-secret")

        creds = load_client_credentials()

        assert creds.client_id == "env-id"
        assert creds.client_secret.get_secret_value() == "env-secret"

    @pytest.mark.parametrize("section", ["installed", "web"])
    def test_should_read_google_client_json(self, isolated_config: Path, section: str) -> None:
        """Verify both desktop and web client files are accepted."""
        isolated_config.mkdir(parents=True)
        (isolated_config / "credentials.json").write_text(
            json.dumps({section: {"client_id": "file-id", "client_secret": "file-secret"}})
        )

        creds = load_client_credentials()

        assert creds.client_id == "file-id"
        assert creds.client_secret.get_secret_value() == "file-secret"

    def test_should_raise_credentials_missing(self, isolated_config: Path) -> None:
        """Verify a missing file raises CredentialsMissingError with the path."""
        with pytest.raises(CredentialsMissingError) as exc_info:
            load_client_credentials()

        assert exc_info.value.path == isolated_config / "credentials.json"
        assert isinstance(exc_info.value.cause, FileNotFoundError)
        assert str(isolated_config / "credentials.json") in str(exc_info.value)

    def test_should_raise_for_incomplete_file(self, isolated_config: Path) -> None:
        """Verify a file without client_secret raises ConfigError."""
        isolated_config.mkdir(parents=True)
        (isolated_config / "credentials.json").write_text(json.dumps({"installed": {"client_id": "x"}}))

        with pytest.raises(ConfigError):
            load_client_credentials()


@pytest.mark.unit
class TestCredentialsMissingError:
    """Tests for CredentialsMissingError."""

    def test_should_carry_message_and_cause(self) -> None:
        """Verify the error has a message and chains its cause."""
        cause = OSError("nope")

        err = CredentialsMissingError(Path("/tmp/credentials.json"), cause)

        assert str(err)
        assert "/tmp/credentials.json" in str(err)
        assert err.cause is cause
        assert err.__cause__ is cause
        assert isinstance(err, GWorkspaceError)
