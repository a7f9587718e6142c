"""Data models for stored OAuth tokens."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class Token(BaseModel):
    """Credential bundle for one authorized Google account.

    Attributes:
        email: Account identity, unique within the store.
        refresh_token: Opaque OAuth refresh token.
        services: Authorized service identifiers, in request order.
        scopes: Granted OAuth scopes, in grant order.
        created_at: When the token was issued.
    """

    email: str = Field(default="", description="Account email")
    refresh_token: str = Field(default="", repr=False, description="OAuth refresh token")
    services: list[str] = Field(default_factory=list, description="Authorized services")
    scopes: list[str] = Field(default_factory=list, description="Granted OAuth scopes")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Token creation time",
    )


class Account(BaseModel):
    """Account summary safe to show in listings (no secrets)."""

    email: str
    services: list[str] = Field(default_factory=list)
    scopes: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    default: bool = False

    @classmethod
    def from_token(cls, token: Token, default: bool = False) -> "Account":
        return cls(
            email=token.email,
            services=list(token.services),
            scopes=list(token.scopes),
            created_at=token.created_at,
            default=default,
        )
