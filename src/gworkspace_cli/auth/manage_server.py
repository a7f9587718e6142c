"""Local HTTP server for browser-based account management.

The server lives for one session. It serves an accounts page, starts the
Google consent flow, receives the OAuth redirect, extracts the account
email and persists the resulting token in the injected KeyringStore.

Routes:
    GET  /                 accounts page (CSRF token embedded)
    GET  /accounts         stored accounts as JSON
    GET  /auth/start       redirect to Google consent
    GET  /oauth2/callback  OAuth redirect target
    POST /set-default      {"email": ...}, requires X-CSRF-Token
    POST /remove-account   {"email": ...}, requires X-CSRF-Token
    POST /done             ends the session, requires X-CSRF-Token

Security features:
- Per-session CSRF token for state-changing requests
- Separate OAuth state parameter checked on the callback
- Response bodies are fingerprinted, never logged
"""

import base64
import hashlib
import html
import json
import logging
import secrets
import threading
import webbrowser
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Protocol
from urllib.parse import parse_qs, urlparse

import httpx
from keyring.errors import KeyringError

from gworkspace_cli.auth.services import display_name, scopes_for_services
from gworkspace_cli.errors import (
    GWorkspaceError,
    LoginCancelledError,
    LoginTimeoutError,
    MalformedIdentityTokenError,
    MissingAccessTokenError,
    MissingOAuthTokenError,
    OAuthFlowError,
    UserInfoError,
)
from gworkspace_cli.secrets.models import Account, Token
from gworkspace_cli.secrets.store import KeyringStore

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_TIMEOUT = 300  # 5 minutes
CALLBACK_PATH = "/oauth2/callback"
CSRF_HEADER = "X-CSRF-Token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
BODY_SNIPPET_LIMIT = 4096
MAX_REQUEST_BODY = 64 * 1024


class OAuthClient(Protocol):
    """Performs the authorization-code flow against the provider."""

    def authorization_url(self, redirect_uri: str, scopes: list[str], state: str) -> str: ...

    def exchange(self, code: str) -> dict[str, Any]: ...


@dataclass
class HTTPResponse:
    """Response produced by ManageServer.handle()."""

    status: int
    body: bytes = b""
    content_type: str = "text/plain; charset=utf-8"
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")


# =============================================================================
# Identity extraction
# =============================================================================


def read_http_body_snippet(body: Iterable[bytes], limit: int) -> str:
    """Summarize an HTTP body without exposing its contents.

    Reads at most ``limit`` bytes and returns the SHA-256 of exactly those
    bytes, so OAuth error bodies never reach logs verbatim.

    Returns:
        "" for an empty body, otherwise "response_sha256=<hex>".
    """
    buf = bytearray()
    if limit > 0:
        for chunk in body:
            buf.extend(chunk[: limit - len(buf)])
            if len(buf) >= limit:
                break
    if not buf:
        return ""
    return f"response_sha256={hashlib.sha256(buf).hexdigest()}"


def email_from_id_token(id_token: str) -> str:
    """Extract the email claim from an id_token.

    The signature is not verified: the token comes straight from Google's
    token endpoint over TLS.

    Raises:
        MalformedIdentityTokenError: Naming the unusable part.
    """
    parts = id_token.split(".")
    if len(parts) != 3 or not parts[1]:
        raise MalformedIdentityTokenError("format")

    payload = parts[1]
    try:
        raw = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
    except ValueError:
        raise MalformedIdentityTokenError("payload encoding") from None

    try:
        claims = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedIdentityTokenError("payload") from None
    if not isinstance(claims, dict):
        raise MalformedIdentityTokenError("payload")

    email = claims.get("email")
    if not isinstance(email, str) or not email.strip():
        raise MalformedIdentityTokenError("email claim")
    return email.strip()


def fetch_user_email_default(
    token: Mapping[str, Any] | None,
    client: httpx.Client | None = None,
) -> str:
    """Determine the email of the account that granted ``token``.

    Uses the id_token when present, otherwise asks the userinfo endpoint.

    Args:
        token: OAuth token response.
        client: HTTP client for the userinfo fallback.

    Raises:
        MissingOAuthTokenError: If ``token`` is None.
        MissingAccessTokenError: If the response has no access token.
        MalformedIdentityTokenError: If the id_token cannot be decoded.
        UserInfoError: If the userinfo fallback fails.
    """
    if token is None:
        raise MissingOAuthTokenError()
    access_token = token.get("access_token")
    if not access_token:
        raise MissingAccessTokenError()

    id_token = token.get("id_token")
    if id_token:
        if not isinstance(id_token, str):
            raise MalformedIdentityTokenError("format")
        return email_from_id_token(id_token)

    http = client or httpx.Client(timeout=10.0)
    try:
        with http.stream(
            "GET", USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
        ) as response:
            if response.status_code != 200:
                snippet = read_http_body_snippet(response.iter_bytes(), BODY_SNIPPET_LIMIT)
                raise UserInfoError(
                    f"userinfo request failed: HTTP {response.status_code} {snippet}".strip()
                )
            response.read()
            data = response.json()
    except httpx.HTTPError as e:
        raise UserInfoError(f"userinfo request failed: {type(e).__name__}") from e
    except json.JSONDecodeError as e:
        raise UserInfoError("userinfo response is not JSON") from e
    finally:
        if client is None:
            http.close()

    email = data.get("email") if isinstance(data, dict) else None
    if not isinstance(email, str) or not email:
        raise UserInfoError("userinfo response has no email")
    return email


# =============================================================================
# Pages
# =============================================================================

_STYLE = """\
body { font-family: -apple-system, BlinkMacSystemFont, sans-serif; background: #f3f4f6; margin: 0; padding: 40px; }
.card { background: white; border-radius: 12px; padding: 32px; max-width: 560px; margin: 0 auto; box-shadow: 0 4px 12px rgba(0,0,0,.1); }
h1 { font-size: 22px; color: #111827; margin: 0 0 16px; }
p { color: #4b5563; }
ul { padding: 0; list-style: none; }
li { display: flex; justify-content: space-between; align-items: center; padding: 8px 0; border-bottom: 1px solid #e5e7eb; }
.badge { font-size: 12px; color: #166534; background: #dcfce7; border-radius: 8px; padding: 2px 8px; }
button, a.button { font-size: 14px; border: 1px solid #d1d5db; background: white; border-radius: 6px; padding: 4px 10px; cursor: pointer; text-decoration: none; color: #111827; }
"""

_ACCOUNTS_SCRIPT = """\
const csrf = document.querySelector('meta[name="csrf-token"]').content;
async function post(path, payload) {
  const res = await fetch(path, {
    method: "POST",
    headers: {"Content-Type": "application/json", "X-CSRF-Token": csrf},
    body: JSON.stringify(payload || {}),
  });
  if (!res.ok) { alert("Request failed: " + res.status); return; }
  if (path === "/done") { document.body.innerHTML = "<p>Done. You can close this tab.</p>"; return; }
  location.reload();
}
"""


def _page(title: str, content: str, head: str = "") -> bytes:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{html.escape(title)}</title>\n"
        f"{head}<style>\n{_STYLE}</style>\n</head>\n"
        f'<body>\n<div class="card">\n{content}</div>\n</body>\n</html>\n'
    ).encode("utf-8")


def render_accounts_page(csrf_token: str, accounts: list[Account]) -> bytes:
    rows = []
    for account in accounts:
        email = html.escape(account.email)
        services = html.escape(", ".join(display_name(s) for s in account.services) or "-")
        email_js = html.escape(json.dumps(account.email))
        badge = ' <span class="badge">default</span>' if account.default else ""
        actions = (
            ""
            if account.default
            else f"<button onclick='post(\"/set-default\", {{email: {email_js}}})'>Make default</button> "
        )
        actions += f"<button onclick='post(\"/remove-account\", {{email: {email_js}}})'>Remove</button>"
        rows.append(f"<li><span>{email}{badge}<br><small>{services}</small></span><span>{actions}</span></li>")

    listing = "<ul>\n" + "\n".join(rows) + "\n</ul>\n" if rows else "<p>No accounts yet.</p>\n"
    content = (
        "<h1>Google accounts</h1>\n"
        f"{listing}"
        '<p><a class="button" href="/auth/start">Add account</a> '
        "<button onclick='post(\"/done\")'>Done</button></p>\n"
        f"<script>\n{_ACCOUNTS_SCRIPT}</script>\n"
    )
    head = f'<meta name="csrf-token" content="{html.escape(csrf_token)}">\n'
    return _page("gworkspace - Accounts", content, head)


def render_success_page(email: str, services: list[str]) -> bytes:
    """Render the page shown after a successful login."""
    granted = ", ".join(display_name(s) for s in services) or "no services"
    content = (
        "<h1>Authorization Successful</h1>\n"
        f"<p>Signed in as <strong>{html.escape(email)}</strong>.</p>\n"
        f"<p>Access granted to: {html.escape(granted)}.</p>\n"
        "<p>You can close this tab and return to the terminal.</p>\n"
    )
    return _page("gworkspace - Authorized", content)


def render_error_page(message: str) -> bytes:
    content = (
        "<h1>Authorization Failed</h1>\n"
        f"<p>{html.escape(message)}</p>\n"
        "<p>Please close this window and try again.</p>\n"
    )
    return _page("gworkspace - Error", content)


def _html(status: int, body: bytes) -> HTTPResponse:
    return HTTPResponse(status, body, "text/html; charset=utf-8")


def _json(status: int, payload: Any) -> HTTPResponse:
    return HTTPResponse(status, json.dumps(payload).encode("utf-8"), "application/json")


def _not_found() -> HTTPResponse:
    return HTTPResponse(404, b"Not Found")


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


# =============================================================================
# Server
# =============================================================================


class _ManageHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], manage: "ManageServer") -> None:
        super().__init__(address, _ManageRequestHandler)
        self.manage = manage


class _ManageRequestHandler(BaseHTTPRequestHandler):
    """Adapts http.server requests to ManageServer.handle()."""

    server: _ManageHTTPServer
    timeout = 10

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        self._dispatch("GET")

    def do_POST(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        self._dispatch("POST")

    def _dispatch(self, method: str) -> None:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = 0
        if length > MAX_REQUEST_BODY:
            response = HTTPResponse(413, b"Request Entity Too Large")
        else:
            body = self.rfile.read(length) if length > 0 else b""
            response = self.server.manage.handle(method, self.path, dict(self.headers.items()), body)

        self.send_response(response.status)
        self.send_header("Content-Type", response.content_type)
        self.send_header("Content-Length", str(len(response.body)))
        self.send_header("Cache-Control", "no-store")
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(response.body)

    def log_message(self, format: str, *args: Any) -> None:
        """Route request logs to debug logging."""
        logger.debug(f"Manage server: {format % args}")


class ManageServer:
    """One account-management session.

    Attributes:
        store: Where tokens from successful callbacks are persisted.
        oauth_client: Builds consent URLs and exchanges codes.
        services: Services requested for new logins.
        scopes: OAuth scopes requested for new logins.
        single_login: End the session after the first successful login.
        csrf_token: Token required on state-changing requests.

    Example:
        ```python
        server = ManageServer(store, GoogleOAuthClient(creds), ["gmail"], single_login=True)
        tokens = server.run(timeout=300)
        ```
    """

    def __init__(
        self,
        store: KeyringStore,
        oauth_client: OAuthClient,
        services: list[str],
        scopes: list[str] | None = None,
        host: str = DEFAULT_HOST,
        port: int = 0,
        single_login: bool = False,
        email_fetcher: Callable[[Mapping[str, Any] | None], str] = fetch_user_email_default,
    ) -> None:
        self.store = store
        self.oauth_client = oauth_client
        self.services = list(services)
        self.scopes = scopes or scopes_for_services(self.services)
        self.host = host
        self.port = port
        self.single_login = single_login
        self.csrf_token = secrets.token_urlsafe(32)
        self.oauth_state = secrets.token_urlsafe(32)
        self._email_fetcher = email_fetcher
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._cancelled = False
        self._error: BaseException | None = None
        self._logged_in: list[Token] = []
        self._server: _ManageHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def redirect_uri(self) -> str:
        return self.url + CALLBACK_PATH

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def handle(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        body: bytes = b"",
    ) -> HTTPResponse:
        """Route one request. Unknown routes get a bare 404.

        Store failures become a 500 error page so the browser always gets
        a response.
        """
        try:
            return self._route(method, path, headers, body)
        except (GWorkspaceError, KeyringError) as e:
            logger.error(f"Request {method} {urlparse(path).path} failed: {e}")
            return _html(500, render_error_page(str(e)))

    def _route(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str] | None,
        body: bytes,
    ) -> HTTPResponse:
        parsed = urlparse(path)
        route = parsed.path

        if method == "GET":
            if route == "/":
                return _html(200, render_accounts_page(self.csrf_token, self._accounts()))
            if route == "/accounts":
                return _json(200, [a.model_dump(mode="json") for a in self._accounts()])
            if route == "/auth/start":
                url = self.oauth_client.authorization_url(
                    self.redirect_uri, self.scopes, self.oauth_state
                )
                return HTTPResponse(302, b"", headers={"Location": url})
            if route == CALLBACK_PATH:
                return self._handle_callback(parse_qs(parsed.query))
        elif method == "POST":
            handlers = {
                "/set-default": self._handle_set_default,
                "/remove-account": self._handle_remove_account,
                "/done": self._handle_done,
            }
            handler = handlers.get(route)
            if handler is not None:
                if not self._csrf_ok(headers or {}):
                    logger.warning(f"Rejected {route}: CSRF token mismatch")
                    return HTTPResponse(403, b"Forbidden")
                return handler(body)

        return _not_found()

    def _csrf_ok(self, headers: Mapping[str, str]) -> bool:
        lowered = {k.lower(): v for k, v in headers.items()}
        supplied = lowered.get(CSRF_HEADER.lower(), "")
        return bool(supplied) and secrets.compare_digest(supplied, self.csrf_token)

    def _accounts(self) -> list[Account]:
        default = self.store.get_default_account()
        tokens = sorted(self.store.list_tokens(), key=lambda t: t.email)
        return [Account.from_token(t, default=t.email == default) for t in tokens]

    def _email_from_body(self, body: bytes) -> str | None:
        try:
            payload = json.loads(body or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        email = payload.get("email") if isinstance(payload, dict) else None
        return email.strip() if isinstance(email, str) and email.strip() else None

    def _handle_set_default(self, body: bytes) -> HTTPResponse:
        email = self._email_from_body(body)
        if email is None:
            return _json(400, {"error": "missing email"})
        if email not in {t.email for t in self.store.list_tokens()}:
            return _json(404, {"error": "unknown account"})
        self.store.set_default_account(email)
        return _json(200, {"ok": True})

    def _handle_remove_account(self, body: bytes) -> HTTPResponse:
        email = self._email_from_body(body)
        if email is None:
            return _json(400, {"error": "missing email"})
        self.store.delete_token(email)
        return _json(200, {"ok": True})

    def _handle_done(self, body: bytes) -> HTTPResponse:
        self._done.set()
        return _json(200, {"ok": True})

    def _handle_callback(self, params: dict[str, list[str]]) -> HTTPResponse:
        error = _first(params, "error")
        if error:
            logger.warning(f"OAuth provider returned error: {error}")
            if self.single_login:
                self._fail(OAuthFlowError(f"authorization failed: {error}"))
            return _html(400, render_error_page(f"Google returned an error: {error}"))

        state = _first(params, "state")
        if not state or not secrets.compare_digest(state, self.oauth_state):
            logger.warning("State parameter mismatch - possible CSRF attempt")
            return _html(400, render_error_page("Invalid state parameter."))

        code = _first(params, "code")
        if not code:
            return _html(400, render_error_page("No authorization code received."))

        try:
            token = self._complete_login(code)
        except Exception as e:  # surfaced to run() in single-login mode
            logger.error(f"OAuth callback failed: {e}")
            if self.single_login:
                self._fail(e)
            return _html(500, render_error_page(str(e)))

        with self._lock:
            self._logged_in.append(token)
        if self.single_login:
            self._done.set()
        return _html(200, render_success_page(token.email, token.services))

    def _complete_login(self, code: str) -> Token:
        oauth_token = self.oauth_client.exchange(code)
        email = self._email_fetcher(oauth_token)

        refresh_token = oauth_token.get("refresh_token")
        if not refresh_token:
            raise OAuthFlowError(
                "no refresh token returned; remove this app's access at "
                "https://myaccount.google.com/permissions and try again"
            )

        granted = oauth_token.get("scope")
        if isinstance(granted, str):
            scopes = granted.split()
        elif isinstance(granted, list):
            scopes = [str(s) for s in granted]
        else:
            scopes = list(self.scopes)

        token = Token(
            email=email,
            refresh_token=refresh_token,
            services=list(self.services),
            scopes=scopes,
            created_at=datetime.now(timezone.utc),
        )
        self.store.set_token(email, token)
        if not self.store.get_default_account():
            self.store.set_default_account(email)
        logger.info(f"Authorized {email} for {', '.join(self.services) or 'no services'}")
        return self.store.get_token(email)

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            if self._error is None:
                self._error = error
        self._done.set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Bind the listener and serve on a background thread."""
        self._server = _ManageHTTPServer((self.host, self.port), self)
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.2},
            name="gworkspace-manage-server",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Manage server listening on {self.url}")

    def close(self) -> None:
        """Stop serving and release the port. Safe to call repeatedly."""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.debug("Manage server stopped")

    def cancel(self) -> None:
        """Abort a running session, unblocking run() immediately."""
        self._cancelled = True
        self._done.set()

    def run(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        open_browser: bool = True,
        on_ready: Callable[[str], None] | None = None,
    ) -> list[Token]:
        """Serve until the session finishes.

        Single-login sessions end after the first successful callback; manage
        sessions end when the page posts /done or the timeout elapses. The
        listener is closed on every exit path.

        Args:
            timeout: Seconds to wait.
            open_browser: Open the start URL in the default browser.
            on_ready: Called with the start URL once the listener is bound.

        Returns:
            Tokens stored during the session.

        Raises:
            LoginTimeoutError: If a single-login session times out.
            LoginCancelledError: If cancel() was called.
        """
        self.start()
        try:
            start_url = self.url + ("/auth/start" if self.single_login else "/")
            if on_ready is not None:
                on_ready(start_url)
            if open_browser:
                webbrowser.open(start_url)

            finished = self._done.wait(timeout)
            if self._cancelled:
                raise LoginCancelledError("login cancelled")
            if self._error is not None:
                raise self._error
            if not finished and self.single_login:
                raise LoginTimeoutError(f"no OAuth callback received within {timeout:g}s")

            with self._lock:
                return list(self._logged_in)
        finally:
            self.close()
