"""Secret storage for OAuth refresh tokens.

Quick Start:
    ```python
    from gworkspace_cli.config import resolve_keyring_backend_info
    from gworkspace_cli.secrets import KeyringStore, Token

    store = KeyringStore.open(resolve_keyring_backend_info())
    store.set_token("me@example.com", Token(refresh_token="..."))
    email = store.get_default_account()
    ```
"""

from gworkspace_cli.secrets.backends import (
    FileBackend,
    KeychainBackend,
    MemoryBackend,
    SecretBackend,
    allowed_backends,
    file_keyring_password_func,
    translate_keychain_error,
)
from gworkspace_cli.secrets.models import Account, Token
from gworkspace_cli.secrets.store import (
    DEFAULT_ACCOUNT_KEY,
    KeyringStore,
    get_secret,
    open_secret_store,
    parse_token_key,
    set_secret,
    token_key,
)

__all__ = [
    "Account",
    "DEFAULT_ACCOUNT_KEY",
    "FileBackend",
    "KeychainBackend",
    "KeyringStore",
    "MemoryBackend",
    "SecretBackend",
    "Token",
    "allowed_backends",
    "file_keyring_password_func",
    "get_secret",
    "open_secret_store",
    "parse_token_key",
    "set_secret",
    "token_key",
    "translate_keychain_error",
]
