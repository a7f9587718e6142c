"""Keyring-backed storage for OAuth tokens.

Token records share one key namespace with other secrets:

    token:<email>      one JSON-encoded Token per account
    default_account    email of the account used when none is given

Example:
    ```python
    store = KeyringStore.open(resolve_keyring_backend_info())

    store.set_token("me@example.com", token)
    store.set_default_account("me@example.com")

    for token in store.list_tokens():
        print(token.email, token.services)
    ```
"""

import logging

from pydantic import ValidationError

from gworkspace_cli.config import KeyringBackendInfo, resolve_keyring_backend_info
from gworkspace_cli.errors import (
    BackendUnavailableError,
    InvalidTokenError,
    SecretNotFoundError,
    SecretStoreError,
)
from gworkspace_cli.secrets.backends import SecretBackend, allowed_backends, open_backend
from gworkspace_cli.secrets.models import Token

logger = logging.getLogger(__name__)

TOKEN_KEY_PREFIX = "token:"
DEFAULT_ACCOUNT_KEY = "default_account"


def token_key(email: str) -> str:
    """Build the secret key for an account's token."""
    return TOKEN_KEY_PREFIX + email


def parse_token_key(key: str) -> tuple[str, bool]:
    """Extract the email from a token key.

    Returns:
        ``(email, True)`` for ``token:<email>``, otherwise ``("", False)``.
    """
    if not key.startswith(TOKEN_KEY_PREFIX):
        return "", False
    email = key[len(TOKEN_KEY_PREFIX) :]
    if not email:
        return "", False
    return email, True


def open_secret_store(info: KeyringBackendInfo) -> SecretBackend:
    """Open the first usable backend for the configured preference.

    Raises:
        InvalidBackendError: If the configured backend is unknown.
        BackendUnavailableError: If no candidate backend could be opened.
    """
    candidates = allowed_backends(info)
    last_error: BackendUnavailableError | None = None
    for name in candidates:
        try:
            backend = open_backend(name, info)
        except BackendUnavailableError as e:
            logger.debug(f"Keyring backend {name} unavailable: {e}")
            last_error = e
            continue
        logger.debug(f"Using keyring backend {name}")
        return backend

    if last_error is not None:
        raise last_error
    raise BackendUnavailableError("no keyring backend available")


def set_secret(key: str, value: bytes) -> None:
    """Store one secret in the configured backend."""
    open_secret_store(resolve_keyring_backend_info()).set(key, value)


def get_secret(key: str) -> bytes:
    """Read one secret from the configured backend."""
    return open_secret_store(resolve_keyring_backend_info()).get(key)


class KeyringStore:
    """Token storage on top of a secret backend.

    The store is built explicitly and handed to its users; tests pass a
    MemoryBackend.

    Attributes:
        ring: The secret backend holding the records.
    """

    def __init__(self, ring: SecretBackend) -> None:
        self.ring = ring

    @classmethod
    def open(cls, info: KeyringBackendInfo) -> "KeyringStore":
        """Open a store using the configured backend preference."""
        return cls(open_secret_store(info))

    @property
    def backend_name(self) -> str:
        return getattr(self.ring, "name", type(self.ring).__name__)

    def keys(self) -> list[str]:
        return self.ring.keys()

    def set_token(self, email: str, token: Token) -> None:
        """Store a token for ``email``, replacing any previous one.

        Raises:
            InvalidTokenError: If the email or refresh token is empty.
        """
        email = email.strip()
        if not email:
            raise InvalidTokenError("missing email")
        if not token.refresh_token:
            raise InvalidTokenError(f"missing refresh token for {email}")

        record = token.model_copy(update={"email": email})
        self.ring.set(token_key(email), record.model_dump_json().encode("utf-8"))
        logger.info(f"Stored token for {email}")

    def get_token(self, email: str) -> Token:
        """Load the token stored for ``email``.

        Raises:
            SecretNotFoundError: If no token is stored or it cannot be decoded.
        """
        key = token_key(email.strip())
        data = self.ring.get(key)
        try:
            token = Token.model_validate_json(data)
        except ValidationError:
            logger.warning(f"Stored token for {email} is corrupted")
            raise SecretNotFoundError(key) from None
        return token.model_copy(update={"email": email.strip()})

    def list_tokens(self) -> list[Token]:
        """Load every stored token. Undecodable records are skipped."""
        tokens: list[Token] = []
        for key in self.ring.keys():
            email, ok = parse_token_key(key)
            if not ok:
                continue
            try:
                tokens.append(self.get_token(email))
            except SecretNotFoundError:
                logger.warning(f"Skipping unreadable token record for {email}")
        return tokens

    def delete_token(self, email: str) -> None:
        """Remove the token for ``email``; a missing token is not an error."""
        email = email.strip()
        try:
            self.ring.delete(token_key(email))
        except SecretNotFoundError:
            pass
        else:
            logger.info(f"Deleted token for {email}")

        if self.get_default_account() == email:
            self.ring.delete(DEFAULT_ACCOUNT_KEY)

    def set_default_account(self, email: str) -> None:
        email = email.strip()
        if not email:
            raise InvalidTokenError("missing email")
        self.ring.set(DEFAULT_ACCOUNT_KEY, email.encode("utf-8"))

    def get_default_account(self) -> str:
        """Get the default account email, or "" when none is set."""
        try:
            data = self.ring.get(DEFAULT_ACCOUNT_KEY)
        except SecretNotFoundError:
            return ""
        try:
            return data.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise SecretStoreError("default account pointer is corrupted") from e
