"""Command-line interface for gworkspace-cli."""

import asyncio
import functools
import json
import logging
import sys
from collections.abc import Callable
from typing import Any

import click
from keyring.errors import KeyringError

from gworkspace_cli.__version__ import __version__
from gworkspace_cli.errors import GWorkspaceError


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Render core errors as a one-line message and exit 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (GWorkspaceError, KeyringError) as e:
            click.echo(f"❌ Error: {e}", err=True)
            sys.exit(1)

    return wrapper


def _open_store(ctx: click.Context):
    from gworkspace_cli.config import resolve_keyring_backend_info
    from gworkspace_cli.secrets import KeyringStore

    return KeyringStore.open(resolve_keyring_backend_info(no_input=ctx.obj["no_input"]))


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--no-input", is_flag=True, envvar="GWORKSPACE_NO_INPUT", help="Never prompt")
@click.pass_context
def main(ctx: click.Context, verbose: bool, no_input: bool) -> None:
    """gworkspace - Google Workspace from the command line.

    Accounts are authorized through the browser and their refresh tokens
    are kept in the OS keychain or an encrypted file vault.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["no_input"] = no_input


@main.group()
def auth() -> None:
    """Manage authorized Google accounts."""


@auth.command("add")
@click.option(
    "--services",
    default=None,
    help="Comma-separated services (gmail,calendar,tasks,drive,docs,sheets,contacts or all)",
)
@click.option("--timeout", default=300, show_default=True, help="Seconds to wait for the browser")
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening a browser")
@click.pass_context
@handle_errors
def auth_add(ctx: click.Context, services: str | None, timeout: int, no_browser: bool) -> None:
    """Authorize a Google account.

    This will:
    1. Open browser for OAuth2 consent flow
    2. Store the refresh token in the keyring
    3. Make the account the default if none is set
    """
    from gworkspace_cli.auth import OAuthManager, parse_services
    from gworkspace_cli.config import load_client_credentials

    selected = parse_services(services)
    manager = OAuthManager(_open_store(ctx), load_client_credentials())

    def on_ready(url: str) -> None:
        click.echo("Browser will open for Google consent...")
        click.echo(f"If it doesn't, visit: {url}")

    token = asyncio.run(
        manager.login(selected, timeout=timeout, open_browser=not no_browser, on_ready=on_ready)
    )
    click.echo(f"✓ Authorized {token.email} ({', '.join(token.services)})")


@auth.command("manage")
@click.option("--services", default=None, help="Services requested for newly added accounts")
@click.option("--timeout", default=600, show_default=True, help="Seconds to keep the page open")
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening a browser")
@click.pass_context
@handle_errors
def auth_manage(ctx: click.Context, services: str | None, timeout: int, no_browser: bool) -> None:
    """Open the account management page in the browser."""
    from gworkspace_cli.auth import OAuthManager, parse_services
    from gworkspace_cli.config import load_client_credentials

    manager = OAuthManager(_open_store(ctx), load_client_credentials())

    def on_ready(url: str) -> None:
        click.echo(f"Account management page: {url}")

    added = asyncio.run(
        manager.manage(
            parse_services(services),
            timeout=timeout,
            open_browser=not no_browser,
            on_ready=on_ready,
        )
    )
    for token in added:
        click.echo(f"✓ Authorized {token.email}")


@auth.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
@handle_errors
def auth_list(ctx: click.Context, as_json: bool) -> None:
    """List authorized accounts."""
    from gworkspace_cli.secrets import Account

    store = _open_store(ctx)
    default = store.get_default_account()
    accounts = [
        Account.from_token(t, default=t.email == default)
        for t in sorted(store.list_tokens(), key=lambda t: t.email)
    ]

    if as_json:
        click.echo(json.dumps([a.model_dump(mode="json") for a in accounts], indent=2))
        return

    if not accounts:
        click.echo("No accounts. Run 'gworkspace auth add' to authorize one.")
        return

    for account in accounts:
        marker = "*" if account.default else " "
        click.echo(f"{marker} {account.email}  {','.join(account.services)}")


@auth.command("remove")
@click.argument("email")
@click.pass_context
@handle_errors
def auth_remove(ctx: click.Context, email: str) -> None:
    """Remove the stored token for EMAIL."""
    from gworkspace_cli.secrets import token_key

    store = _open_store(ctx)
    email = email.strip()
    if token_key(email) not in store.keys():
        raise GWorkspaceError(f"{email} not found")
    store.delete_token(email)
    click.echo(f"✓ Removed {email}")


@auth.command("default")
@click.argument("email", required=False)
@click.pass_context
@handle_errors
def auth_default(ctx: click.Context, email: str | None) -> None:
    """Show the default account, or set it to EMAIL."""
    store = _open_store(ctx)

    if not email:
        current = store.get_default_account()
        click.echo(current or "No default account set.")
        return

    if email not in {t.email for t in store.list_tokens()}:
        raise GWorkspaceError(f"{email} is not authorized (run 'gworkspace auth add')")
    store.set_default_account(email)
    click.echo(f"✓ Default account: {email}")


@auth.command("services")
def auth_services() -> None:
    """List services and the OAuth scopes they request."""
    from gworkspace_cli.auth.services import SERVICE_SCOPES, display_name

    for service, scopes in SERVICE_SCOPES.items():
        click.echo(f"{service:<10} {display_name(service)}")
        for scope in scopes:
            click.echo(f"           {scope}")


@main.command()
@click.pass_context
@handle_errors
def doctor(ctx: click.Context) -> None:
    """Check configuration and keyring status.

    Verifies:
    1. Keyring backend opens
    2. OAuth client credentials configured
    3. Stored accounts are readable
    """
    from gworkspace_cli.config import credentials_path, load_client_credentials
    from gworkspace_cli.config import resolve_keyring_backend_info
    from gworkspace_cli.secrets import KeyringStore

    click.echo("gworkspace status:")
    click.echo("")

    ok = True
    info = resolve_keyring_backend_info(no_input=ctx.obj["no_input"])
    click.echo("Keyring:")
    click.echo(f"  Configured backend: {info.value} (from {info.source})")
    store = None
    try:
        store = KeyringStore.open(info)
        click.echo(f"  ✓ Using {store.backend_name}")
    except (GWorkspaceError, KeyringError) as e:
        click.echo(f"  ❌ {e}")
        ok = False
    click.echo("")

    click.echo("OAuth client:")
    try:
        load_client_credentials()
        click.echo("  ✓ Client credentials configured")
    except GWorkspaceError as e:
        click.echo(f"  ❌ {e}")
        ok = False
    click.echo(f"  Credentials file: {credentials_path()}")
    click.echo("")

    if store is not None:
        click.echo("Accounts:")
        try:
            tokens = store.list_tokens()
            default = store.get_default_account()
            click.echo(f"  {len(tokens)} authorized")
            click.echo(f"  Default: {default or '(none)'}")
        except (GWorkspaceError, KeyringError) as e:
            click.echo(f"  ❌ {e}")
            ok = False
        click.echo("")

    if ok:
        click.echo("✓ Ready to use!")
    else:
        click.echo("❌ Setup required.")
        sys.exit(1)


if __name__ == "__main__":
    main()
