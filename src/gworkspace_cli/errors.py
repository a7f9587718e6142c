"""Exception hierarchy for gworkspace-cli.

Every error raised by the credential core derives from ``GWorkspaceError``
so the CLI can render it in one place. Underlying errors are chained with
``raise ... from err`` and stay reachable through ``__cause__``.
"""

from pathlib import Path


class GWorkspaceError(Exception):
    """Base class for all gworkspace-cli errors."""


# =============================================================================
# Secret storage
# =============================================================================


class SecretStoreError(GWorkspaceError):
    """The secret store could not complete an operation."""


class SecretNotFoundError(SecretStoreError, KeyError):
    """The requested secret does not exist."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"secret not found: {key}")

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message.
        return f"secret not found: {self.key}"


class BackendUnavailableError(SecretStoreError):
    """A keyring backend cannot be opened on this machine."""


class KeychainLockedError(SecretStoreError):
    """The OS keychain is reachable but locked."""


class InvalidBackendError(GWorkspaceError, ValueError):
    """An unsupported keyring backend name was configured."""

    def __init__(self, backend: str, allowed: list[str]) -> None:
        self.backend = backend
        self.allowed = allowed
        super().__init__(
            f"invalid keyring backend {backend!r} (expected one of: {', '.join(allowed)})"
        )


class NoTTYError(GWorkspaceError):
    """A passphrase is required but no interactive terminal is available."""


class InvalidTokenError(GWorkspaceError, ValueError):
    """A token is missing a field required for persistence."""


# =============================================================================
# Identity extraction
# =============================================================================


class UserEmailError(GWorkspaceError):
    """The authenticated email could not be determined."""


class MissingOAuthTokenError(UserEmailError):
    """No OAuth token response was supplied."""

    def __init__(self) -> None:
        super().__init__("missing OAuth token")


class MissingAccessTokenError(UserEmailError):
    """The OAuth token response carries no access token."""

    def __init__(self) -> None:
        super().__init__("missing access token")


class MalformedIdentityTokenError(UserEmailError):
    """The id_token could not be decoded.

    Attributes:
        part: Which part of the id_token was unusable.
    """

    def __init__(self, part: str) -> None:
        self.part = part
        super().__init__(f"malformed id_token: invalid {part}")


class UserInfoError(UserEmailError):
    """The userinfo endpoint returned an error response."""


# =============================================================================
# OAuth flow
# =============================================================================


class OAuthFlowError(GWorkspaceError):
    """The browser login flow failed."""


class LoginTimeoutError(OAuthFlowError):
    """No OAuth callback arrived before the deadline."""


class LoginCancelledError(OAuthFlowError):
    """The login flow was cancelled."""


# =============================================================================
# Configuration
# =============================================================================


class ConfigError(GWorkspaceError):
    """The configuration file is unreadable or invalid."""


class CredentialsMissingError(GWorkspaceError):
    """The OAuth client credentials file is missing.

    Attributes:
        path: Where the credentials file was expected.
        cause: The underlying error.
    """

    def __init__(self, path: Path, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(
            f"OAuth client credentials missing: {path} "
            "(download the OAuth client JSON from Google Cloud Console and save it there)"
        )
        self.__cause__ = cause
