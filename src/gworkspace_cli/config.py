"""Configuration loading for gworkspace-cli.

Configuration Directory:
    $GWORKSPACE_CONFIG_DIR, else $XDG_CONFIG_HOME/gworkspace-cli,
    else ~/.config/gworkspace-cli

Environment Variables:
    GWORKSPACE_CONFIG_DIR: Override the configuration directory.
    GWORKSPACE_KEYRING_BACKEND: Keyring backend (auto, keychain, file, memory).
    GWORKSPACE_KEYRING_PASSWORD: Passphrase for the encrypted file backend.
    GOOGLE_OAUTH_CLIENT_ID: Google OAuth client ID (overrides credentials.json).
    GOOGLE_OAUTH_CLIENT_SECRET: Google OAuth client secret (overrides credentials.json).
"""

import json
import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, ValidationError

from gworkspace_cli.errors import ConfigError, CredentialsMissingError

logger = logging.getLogger(__name__)

APP_NAME = "gworkspace-cli"
CONFIG_FILE = "config.json"
CREDENTIALS_FILE = "credentials.json"
KEYRING_DIR = "keyring"

ENV_CONFIG_DIR = "GWORKSPACE_CONFIG_DIR"
ENV_KEYRING_BACKEND = "GWORKSPACE_KEYRING_BACKEND"
ENV_KEYRING_PASSWORD = "GWORKSPACE_KEYRING_PASSWORD"  # nosec B105 - env var name
ENV_CLIENT_ID = "GOOGLE_OAUTH_CLIENT_ID"
ENV_CLIENT_SECRET = "GOOGLE_OAUTH_CLIENT_SECRET"  # nosec B105 - env var name

DEFAULT_KEYRING_BACKEND = "auto"


class AppConfig(BaseModel):
    """Contents of config.json."""

    keyring_backend: str | None = Field(default=None, description="Keyring backend name")
    keyring_dir: str | None = Field(default=None, description="Encrypted file vault directory")


class KeyringBackendInfo(BaseModel):
    """Resolved keyring backend settings.

    Attributes:
        value: Backend symbol as configured (auto, keychain, file, memory).
        source: Where the value came from (env, config or default).
        file_dir: Directory for the encrypted file backend.
        password: Passphrase for the file backend, if configured.
        prompt_allowed: Whether an interactive passphrase prompt may be shown.
    """

    value: str = DEFAULT_KEYRING_BACKEND
    source: str = "default"
    file_dir: Path | None = None
    password: SecretStr | None = None
    prompt_allowed: bool = False


class ClientCredentials(BaseModel):
    """Google OAuth client registration."""

    client_id: str
    client_secret: SecretStr


def config_dir() -> Path:
    """Get the configuration directory."""
    override = os.environ.get(ENV_CONFIG_DIR)
    if override:
        return Path(override).expanduser()

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg).expanduser() / APP_NAME

    return Path.home() / ".config" / APP_NAME


def config_path() -> Path:
    return config_dir() / CONFIG_FILE


def credentials_path() -> Path:
    return config_dir() / CREDENTIALS_FILE


def load_config(path: Path | None = None) -> AppConfig:
    """Load config.json.

    Args:
        path: Config file to read. Defaults to config_path().

    Returns:
        Parsed configuration; defaults when the file does not exist.

    Raises:
        ConfigError: If the file exists but cannot be parsed.
    """
    path = path or config_path()
    if not path.exists():
        return AppConfig()

    try:
        return AppConfig.model_validate(json.loads(path.read_text()))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ConfigError(f"invalid config file {path}: {e}") from e


def keyring_dir(config: AppConfig | None = None) -> Path:
    """Get the encrypted file vault directory."""
    if config is not None and config.keyring_dir:
        return Path(config.keyring_dir).expanduser()
    return config_dir() / KEYRING_DIR


def ensure_keyring_dir(path: Path | None = None) -> Path:
    """Create the vault directory with owner-only permissions if needed.

    Returns:
        The vault directory.
    """
    path = path or keyring_dir(load_config())
    if not path.exists():
        path.mkdir(parents=True, mode=0o700)
    else:
        path.chmod(0o700)
    return path


def resolve_keyring_backend_info(no_input: bool = False) -> KeyringBackendInfo:
    """Resolve keyring settings from the environment and config.json.

    Precedence for the backend name: environment, config file, default.

    Args:
        no_input: Never prompt for a passphrase, even on a terminal.

    Returns:
        Resolved backend settings.
    """
    config = load_config()

    value = os.environ.get(ENV_KEYRING_BACKEND, "").strip()
    source = "env"
    if not value and config.keyring_backend:
        value = config.keyring_backend.strip()
        source = "config"
    if not value:
        value = DEFAULT_KEYRING_BACKEND
        source = "default"

    password = os.environ.get(ENV_KEYRING_PASSWORD)
    stdin = sys.stdin
    is_tty = stdin is not None and stdin.isatty()

    info = KeyringBackendInfo(
        value=value,
        source=source,
        file_dir=keyring_dir(config),
        password=SecretStr(password) if password else None,
        prompt_allowed=not no_input and is_tty,
    )
    logger.debug(f"Keyring backend {info.value!r} (source: {info.source})")
    return info


def load_client_credentials(path: Path | None = None) -> ClientCredentials:
    """Load the Google OAuth client ID and secret.

    Environment variables take precedence over the credentials file. The
    file is the JSON downloaded from Google Cloud Console, with either an
    "installed" or a "web" section.

    Raises:
        CredentialsMissingError: If no environment override is set and the
            credentials file does not exist.
        ConfigError: If the credentials file is malformed.
    """
    client_id = os.environ.get(ENV_CLIENT_ID)
    client_secret = os.environ.get(ENV_CLIENT_SECRET)
    if client_id and client_secret:
        return ClientCredentials(client_id=client_id, client_secret=SecretStr(client_secret))

    path = path or credentials_path()
    try:
        raw = path.read_text()
    except FileNotFoundError as e:
        raise CredentialsMissingError(path, e) from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid credentials file {path}: {e}") from e

    section = data.get("installed") or data.get("web") or data if isinstance(data, dict) else None
    if not isinstance(section, dict):
        raise ConfigError(f"invalid credentials file {path}: expected a JSON object")

    try:
        return ClientCredentials(
            client_id=section["client_id"],
            client_secret=SecretStr(section["client_secret"]),
        )
    except (KeyError, TypeError, ValidationError) as e:
        raise ConfigError(f"invalid credentials file {path}: missing client_id/client_secret") from e
