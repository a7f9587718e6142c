"""Unit tests for service selection and scope mapping."""

import pytest

from gworkspace_cli.auth.services import (
    DEFAULT_SERVICES,
    IDENTITY_SCOPES,
    SERVICE_SCOPES,
    display_name,
    parse_services,
    scopes_for_services,
)
from gworkspace_cli.errors import GWorkspaceError


@pytest.mark.unit
class TestParseServices:
    """Tests for parse_services()."""

    @pytest.mark.parametrize("value", [None, "", "  ", ",,"])
    def test_should_default_when_empty(self, value: str | None) -> None:
        """Verify an empty selection falls back to the default services."""
        assert parse_services(value) == DEFAULT_SERVICES

    def test_should_parse_comma_separated_list(self) -> None:
        """Verify names are normalized and duplicates dropped in order."""
        assert parse_services(" Drive, gmail,drive ") == ["drive", "gmail"]

    def test_should_expand_all(self) -> None:
        """Verify "all" selects every known service."""
        assert parse_services("gmail,all") == list(SERVICE_SCOPES)

    def test_should_reject_unknown_service(self) -> None:
        """Verify unknown names are reported."""
        with pytest.raises(GWorkspaceError, match="unknown service 'photos'"):
            parse_services("gmail,photos")


@pytest.mark.unit
class TestScopesForServices:
    """Tests for scopes_for_services()."""

    def test_should_start_with_identity_scopes(self) -> None:
        """Verify the email can always be determined from the grant."""
        scopes = scopes_for_services(["calendar"])

        assert scopes[: len(IDENTITY_SCOPES)] == IDENTITY_SCOPES
        assert "https://www.googleapis.com/auth/calendar" in scopes

    def test_should_not_repeat_scopes(self) -> None:
        """Verify repeated services add their scopes once."""
        scopes = scopes_for_services(["gmail", "gmail"])

        assert len(scopes) == len(set(scopes))

    def test_should_request_only_identity_without_services(self) -> None:
        """Verify an empty selection still asks for identity."""
        assert scopes_for_services([]) == IDENTITY_SCOPES


@pytest.mark.unit
class TestDisplayName:
    """Tests for display_name()."""

    def test_should_use_friendly_name(self) -> None:
        assert display_name("gmail") == "Gmail"

    def test_should_fall_back_to_identifier(self) -> None:
        assert display_name("custom") == "custom"
