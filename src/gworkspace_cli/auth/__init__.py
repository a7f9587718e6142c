"""OAuth authentication for gworkspace-cli.

Quick Start:
    ```python
    from gworkspace_cli.auth import OAuthManager
    from gworkspace_cli.config import load_client_credentials, resolve_keyring_backend_info
    from gworkspace_cli.secrets import KeyringStore

    store = KeyringStore.open(resolve_keyring_backend_info())
    manager = OAuthManager(store, load_client_credentials())

    # Authenticate
    token = await manager.login(["gmail", "calendar"])

    # Get credentials for API use
    credentials = manager.get_credentials(token.email)
    ```
"""

from gworkspace_cli.auth.manage_server import (
    ManageServer,
    fetch_user_email_default,
    read_http_body_snippet,
    render_success_page,
)
from gworkspace_cli.auth.oauth_manager import GoogleOAuthClient, OAuthManager
from gworkspace_cli.auth.services import SERVICE_SCOPES, parse_services, scopes_for_services

__all__ = [
    "GoogleOAuthClient",
    "ManageServer",
    "OAuthManager",
    "SERVICE_SCOPES",
    "fetch_user_email_default",
    "parse_services",
    "read_http_body_snippet",
    "render_success_page",
    "scopes_for_services",
]
