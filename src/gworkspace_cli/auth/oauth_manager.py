"""OAuth login orchestration for Google Workspace accounts.

Wires the OAuth client (google-auth-oauthlib), the ManageServer and the
KeyringStore together, and turns stored refresh tokens back into
google-auth Credentials for API calls.
"""

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from gworkspace_cli.auth.manage_server import DEFAULT_TIMEOUT, ManageServer, OAuthClient
from gworkspace_cli.auth.services import scopes_for_services
from gworkspace_cli.config import ClientCredentials
from gworkspace_cli.errors import GWorkspaceError, OAuthFlowError
from gworkspace_cli.secrets.models import Token
from gworkspace_cli.secrets.store import KeyringStore

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"  # nosec B105 - public endpoint


class GoogleOAuthClient:
    """Authorization-code flow through google-auth-oauthlib.

    One Flow is kept between authorization_url() and exchange() so the
    PKCE code verifier matches.
    """

    def __init__(self, credentials: ClientCredentials) -> None:
        self._credentials = credentials
        self._flow: Flow | None = None

    def _client_config(self, redirect_uri: str) -> dict:
        return {
            "installed": {
                "client_id": self._credentials.client_id,
                "client_secret": self._credentials.client_secret.get_secret_value(),
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [redirect_uri],
            }
        }

    def authorization_url(self, redirect_uri: str, scopes: list[str], state: str) -> str:
        self._flow = Flow.from_client_config(
            self._client_config(redirect_uri),
            scopes=scopes,
            redirect_uri=redirect_uri,
            autogenerate_code_verifier=True,
        )
        auth_url, _ = self._flow.authorization_url(
            access_type="offline",
            prompt="consent",
            state=state,
        )
        return auth_url

    def exchange(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for the token response."""
        if self._flow is None:
            raise OAuthFlowError("authorization flow was not started")
        try:
            return dict(self._flow.fetch_token(code=code))
        except Exception as e:  # oauthlib and requests errors
            raise OAuthFlowError(f"token exchange failed: {type(e).__name__}") from e


class OAuthManager:
    """Account login and credential access.

    Attributes:
        store: Token store for persisted accounts.

    Example:
        ```python
        manager = OAuthManager(store, load_client_credentials())

        token = await manager.login(["gmail", "calendar"])
        credentials = manager.get_credentials(token.email)
        ```
    """

    def __init__(
        self,
        store: KeyringStore,
        client_credentials: ClientCredentials | None = None,
        oauth_client_factory: Callable[[], OAuthClient] | None = None,
    ) -> None:
        """Initialize OAuth manager.

        Args:
            store: Token store to persist into.
            client_credentials: OAuth client registration. Required for
                login and for building Credentials.
            oauth_client_factory: Builds the OAuth client per session.
                Defaults to GoogleOAuthClient.
        """
        self.store = store
        self._client_credentials = client_credentials
        self._oauth_client_factory = oauth_client_factory

    def _new_oauth_client(self) -> OAuthClient:
        if self._oauth_client_factory is not None:
            return self._oauth_client_factory()
        return GoogleOAuthClient(self._require_client_credentials())

    def _require_client_credentials(self) -> ClientCredentials:
        if self._client_credentials is None:
            raise GWorkspaceError("OAuth client credentials not configured")
        return self._client_credentials

    async def _run_session(
        self,
        server: ManageServer,
        timeout: float,
        open_browser: bool,
        on_ready: Callable[[str], None] | None,
    ) -> list[Token]:
        loop = asyncio.get_running_loop()
        run = functools.partial(
            server.run, timeout=timeout, open_browser=open_browser, on_ready=on_ready
        )
        try:
            return await loop.run_in_executor(None, run)
        except asyncio.CancelledError:
            server.cancel()
            raise

    async def login(
        self,
        services: list[str],
        timeout: float = DEFAULT_TIMEOUT,
        open_browser: bool = True,
        on_ready: Callable[[str], None] | None = None,
    ) -> Token:
        """Authorize one account through the browser and store its token.

        Returns:
            The stored token.

        Raises:
            OAuthFlowError: If the flow fails, times out or is cancelled.
        """
        server = ManageServer(
            self.store,
            self._new_oauth_client(),
            services,
            single_login=True,
        )
        tokens = await self._run_session(server, timeout, open_browser, on_ready)
        if not tokens:
            raise OAuthFlowError("login finished without storing a token")
        return tokens[0]

    async def manage(
        self,
        services: list[str],
        timeout: float = DEFAULT_TIMEOUT,
        open_browser: bool = True,
        on_ready: Callable[[str], None] | None = None,
    ) -> list[Token]:
        """Open the accounts page until the user is done.

        Returns:
            Tokens added during the session.
        """
        server = ManageServer(self.store, self._new_oauth_client(), services)
        return await self._run_session(server, timeout, open_browser, on_ready)

    def resolve_account(self, email: str | None = None) -> str:
        """Pick the explicit account, else the default one.

        Raises:
            GWorkspaceError: If neither is available.
        """
        if email and email.strip():
            return email.strip()
        default = self.store.get_default_account()
        if not default:
            raise GWorkspaceError(
                "no account specified and no default account set "
                "(run 'gworkspace auth add' or 'gworkspace auth default EMAIL')"
            )
        return default

    def _token_to_credentials(self, token: Token) -> Credentials:
        """Convert a stored Token to google-auth Credentials.

        The access token is left empty; google-auth refreshes on first use.
        """
        client = self._require_client_credentials()
        return Credentials(  # nosec B106 - token_uri is public Google OAuth endpoint
            token=None,
            refresh_token=token.refresh_token,
            token_uri=TOKEN_URI,
            client_id=client.client_id,
            client_secret=client.client_secret.get_secret_value(),
            scopes=token.scopes or scopes_for_services(token.services),
        )

    def get_credentials(self, email: str | None = None) -> Credentials:
        """Get Google credentials for API use.

        Raises:
            SecretNotFoundError: If the account has no stored token.
        """
        return self._token_to_credentials(self.store.get_token(self.resolve_account(email)))
