"""Secret storage backends.

Three interchangeable backends store opaque byte secrets by string key:

- ``keychain``: the OS keychain via the ``keyring`` library
- ``file``: an encrypted file vault (Fernet, passphrase-derived key)
- ``memory``: a process-local dict for tests and ephemeral use

``auto`` tries the keychain first and falls back to the file vault.
"""

import base64
import json
import logging
import os
import sys
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

import click
import keyring
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from keyring.backend import KeyringBackend
from keyring.backends import fail, null
from keyring.errors import KeyringError, PasswordDeleteError

from gworkspace_cli.config import KeyringBackendInfo, ensure_keyring_dir, keyring_dir
from gworkspace_cli.errors import (
    BackendUnavailableError,
    InvalidBackendError,
    KeychainLockedError,
    NoTTYError,
    SecretNotFoundError,
    SecretStoreError,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "gworkspace-cli"

BACKEND_AUTO = "auto"
BACKEND_KEYCHAIN = "keychain"
BACKEND_FILE = "file"
BACKEND_MEMORY = "memory"
KNOWN_BACKENDS = [BACKEND_AUTO, BACKEND_KEYCHAIN, BACKEND_FILE, BACKEND_MEMORY]

# macOS errSecInteractionNotAllowed: the login keychain is locked.
KEYCHAIN_LOCKED_CODE = "-25308"

PasswordFunc = Callable[[str], str]


class SecretBackend(Protocol):
    """Anything that can set, get, delete and enumerate secrets by key."""

    name: str

    def set(self, key: str, value: bytes) -> None: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


# =============================================================================
# Backend selection
# =============================================================================


def normalize_backend(value: str | None) -> str:
    value = (value or "").strip().lower()
    return value or BACKEND_AUTO


def allowed_backends(info: KeyringBackendInfo) -> list[str]:
    """Resolve the configured backend into an ordered candidate list.

    Args:
        info: Resolved keyring settings.

    Returns:
        Backend names to try, in preference order.

    Raises:
        InvalidBackendError: If the backend name is not recognized.
    """
    value = normalize_backend(info.value)
    if value == BACKEND_AUTO:
        return [BACKEND_KEYCHAIN, BACKEND_FILE]
    if value in KNOWN_BACKENDS:
        return [value]
    raise InvalidBackendError(info.value, KNOWN_BACKENDS)


def file_keyring_password_func(password: str, prompt_allowed: bool) -> PasswordFunc:
    """Build the passphrase provider for the file backend.

    A configured password always wins. Without one, prompting happens only
    when allowed; otherwise the provider raises NoTTYError.
    """

    def provide(prompt: str) -> str:
        if password:
            return password
        if not prompt_allowed:
            raise NoTTYError(
                "keyring passphrase required but no TTY is available "
                "(set GWORKSPACE_KEYRING_PASSWORD)"
            )
        return click.prompt(prompt, hide_input=True, err=True)

    return provide


def translate_keychain_error(err: BaseException, platform: str | None = None) -> BaseException:
    """Rewrite a locked-keychain failure into an actionable error.

    Only macOS reports a locked keychain through this error code; on every
    other platform the error is returned unchanged.

    Args:
        err: Error raised by the keychain backend.
        platform: Platform identifier. Defaults to sys.platform.

    Returns:
        A KeychainLockedError chained to ``err``, or ``err`` itself.
    """
    platform = platform or sys.platform
    if platform != "darwin":
        return err
    if KEYCHAIN_LOCKED_CODE not in str(err):
        return err

    locked = KeychainLockedError(
        "macOS keychain is locked; unlock it (security unlock-keychain) "
        f"or use GWORKSPACE_KEYRING_BACKEND=file: {err}"
    )
    locked.__cause__ = err
    return locked


@contextmanager
def _keychain_errors() -> Iterator[None]:
    try:
        yield
    except KeyringError as e:
        translated = translate_keychain_error(e)
        if translated is e:
            raise
        raise translated from e


# =============================================================================
# Backends
# =============================================================================


class MemoryBackend:
    """In-process secret storage. Contents vanish with the process."""

    name = BACKEND_MEMORY

    def __init__(self) -> None:
        self._items: dict[str, bytes] = {}

    def set(self, key: str, value: bytes) -> None:
        self._items[key] = bytes(value)

    def get(self, key: str) -> bytes:
        try:
            return self._items[key]
        except KeyError:
            raise SecretNotFoundError(key) from None

    def delete(self, key: str) -> None:
        if self._items.pop(key, None) is None:
            raise SecretNotFoundError(key)

    def keys(self) -> list[str]:
        return list(self._items)


class KeychainBackend:
    """OS keychain storage through the keyring library.

    keyring cannot enumerate entries, so the backend keeps its own index of
    written keys in a reserved entry. Values are stored base64-encoded.
    """

    name = BACKEND_KEYCHAIN
    INDEX_KEY = "__index__"

    def __init__(
        self,
        service_name: str = SERVICE_NAME,
        ring: KeyringBackend | None = None,
    ) -> None:
        ring = ring or keyring.get_keyring()
        if isinstance(ring, (fail.Keyring, null.Keyring)):
            raise BackendUnavailableError(f"no OS keychain available ({type(ring).__name__})")
        self.service_name = service_name
        self._ring = ring

    def _load_index(self) -> list[str]:
        raw = self._ring.get_password(self.service_name, self.INDEX_KEY)
        if not raw:
            return []
        try:
            keys = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Keychain index is corrupted; starting a new one")
            return []
        return [k for k in keys if isinstance(k, str)]

    def _save_index(self, keys: list[str]) -> None:
        self._ring.set_password(self.service_name, self.INDEX_KEY, json.dumps(keys))

    def set(self, key: str, value: bytes) -> None:
        encoded = base64.b64encode(value).decode("ascii")
        with _keychain_errors():
            self._ring.set_password(self.service_name, key, encoded)
            index = self._load_index()
            if key not in index:
                index.append(key)
                self._save_index(index)

    def get(self, key: str) -> bytes:
        with _keychain_errors():
            raw = self._ring.get_password(self.service_name, key)
        if raw is None:
            raise SecretNotFoundError(key)
        try:
            return base64.b64decode(raw, validate=True)
        except ValueError as e:
            raise SecretStoreError(f"keychain entry {key!r} is not valid base64") from e

    def delete(self, key: str) -> None:
        with _keychain_errors():
            try:
                self._ring.delete_password(self.service_name, key)
                missing = False
            except PasswordDeleteError:
                missing = True
            index = self._load_index()
            if key in index:
                index.remove(key)
                self._save_index(index)
        if missing:
            raise SecretNotFoundError(key)

    def keys(self) -> list[str]:
        with _keychain_errors():
            return self._load_index()


class FileBackend:
    """Encrypted file vault.

    Each secret lives in its own file named by the URL-safe base64 of its
    key. Contents are Fernet tokens keyed by PBKDF2-HMAC-SHA256 over the
    passphrase and a per-vault salt. A check file detects a wrong passphrase
    before anything is written.
    """

    name = BACKEND_FILE
    SALT_FILE = ".salt"
    CHECK_FILE = ".check"
    CHECK_VALUE = b"gworkspace-cli"
    KDF_ITERATIONS = 390_000

    def __init__(self, directory: Path, password_func: PasswordFunc) -> None:
        try:
            self.directory = ensure_keyring_dir(directory)
        except OSError as e:
            raise BackendUnavailableError(f"cannot use keyring directory {directory}: {e}") from e
        self._password_func = password_func
        self._fernet: Fernet | None = None

    def _salt(self) -> bytes:
        path = self.directory / self.SALT_FILE
        try:
            return path.read_bytes()
        except FileNotFoundError:
            pass
        salt = os.urandom(16)
        _write_private(path, salt)
        return salt

    def _cipher(self) -> Fernet:
        if self._fernet is not None:
            return self._fernet

        password = self._password_func(f"Passphrase to unlock {self.directory}")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self._salt(),
            iterations=self.KDF_ITERATIONS,
        )
        fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8"))))

        check = self.directory / self.CHECK_FILE
        if check.exists():
            try:
                fernet.decrypt(check.read_bytes())
            except InvalidToken as e:
                raise SecretStoreError("incorrect keyring passphrase") from e
        else:
            _write_private(check, fernet.encrypt(self.CHECK_VALUE))

        self._fernet = fernet
        return fernet

    def _path(self, key: str) -> Path:
        name = base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")
        return self.directory / name

    def set(self, key: str, value: bytes) -> None:
        _write_private(self._path(key), self._cipher().encrypt(value))

    def get(self, key: str) -> bytes:
        try:
            data = self._path(key).read_bytes()
        except FileNotFoundError:
            raise SecretNotFoundError(key) from None
        try:
            return self._cipher().decrypt(data)
        except InvalidToken as e:
            raise SecretStoreError(f"cannot decrypt keyring entry {key!r}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            raise SecretNotFoundError(key) from None

    def keys(self) -> list[str]:
        keys = []
        for path in sorted(self.directory.iterdir()):
            if path.name.startswith(".") or not path.is_file():
                continue
            padded = path.name + "=" * (-len(path.name) % 4)
            try:
                keys.append(base64.urlsafe_b64decode(padded).decode("utf-8"))
            except (ValueError, UnicodeDecodeError):
                logger.debug(f"Ignoring unrecognized file in keyring directory: {path.name}")
        return keys


def _write_private(path: Path, data: bytes) -> None:
    """Atomically write ``data`` to ``path`` with mode 600."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp_")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, 0o600)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def open_backend(name: str, info: KeyringBackendInfo) -> SecretBackend:
    """Open a single backend by name.

    Raises:
        BackendUnavailableError: If the backend cannot be used here.
        InvalidBackendError: If the name is not a concrete backend.
    """
    if name == BACKEND_MEMORY:
        return MemoryBackend()
    if name == BACKEND_KEYCHAIN:
        return KeychainBackend()
    if name == BACKEND_FILE:
        password = info.password.get_secret_value() if info.password else ""
        return FileBackend(
            info.file_dir or keyring_dir(),
            file_keyring_password_func(password, info.prompt_allowed),
        )
    raise InvalidBackendError(name, KNOWN_BACKENDS)
