"""Google Workspace services and the OAuth scopes they need."""

from gworkspace_cli.errors import GWorkspaceError

# Always requested so the token response carries an id_token with the email.
# Full URLs match what Google returns, so oauthlib sees no scope change.
IDENTITY_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
]

SERVICE_SCOPES: dict[str, list[str]] = {
    "gmail": ["https://www.googleapis.com/auth/gmail.modify"],
    "calendar": ["https://www.googleapis.com/auth/calendar"],
    "tasks": ["https://www.googleapis.com/auth/tasks"],
    "drive": ["https://www.googleapis.com/auth/drive"],
    "docs": ["https://www.googleapis.com/auth/documents"],
    "sheets": ["https://www.googleapis.com/auth/spreadsheets"],
    "contacts": ["https://www.googleapis.com/auth/contacts"],
}

SERVICE_NAMES: dict[str, str] = {
    "gmail": "Gmail",
    "calendar": "Google Calendar",
    "tasks": "Google Tasks",
    "drive": "Google Drive",
    "docs": "Google Docs",
    "sheets": "Google Sheets",
    "contacts": "Google Contacts",
}

DEFAULT_SERVICES = ["gmail", "calendar", "tasks"]


def parse_services(value: str | None) -> list[str]:
    """Parse a comma-separated service list.

    "all" selects every known service. Duplicates are dropped, order kept.

    Raises:
        GWorkspaceError: If a service name is unknown.
    """
    if value is None or not value.strip():
        return list(DEFAULT_SERVICES)

    services: list[str] = []
    for part in value.split(","):
        name = part.strip().lower()
        if not name:
            continue
        if name == "all":
            return list(SERVICE_SCOPES)
        if name not in SERVICE_SCOPES:
            raise GWorkspaceError(
                f"unknown service {name!r} (expected one of: {', '.join(SERVICE_SCOPES)}, all)"
            )
        if name not in services:
            services.append(name)
    return services or list(DEFAULT_SERVICES)


def scopes_for_services(services: list[str]) -> list[str]:
    """Collect the OAuth scopes for ``services``, identity scopes first."""
    scopes = list(IDENTITY_SCOPES)
    for service in services:
        for scope in SERVICE_SCOPES.get(service, []):
            if scope not in scopes:
                scopes.append(scope)
    return scopes


def display_name(service: str) -> str:
    return SERVICE_NAMES.get(service, service)
