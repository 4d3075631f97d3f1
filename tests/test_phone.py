"""Tests for address normalization."""

import pytest

from bluebubbles_inbox.utils.phone import canonical_key, format_address, is_email


class TestCanonicalKey:
    """Test mapping raw addresses to contact keys."""

    @pytest.mark.parametrize(
        "raw",
        ["+15551234567", "(555) 123-4567", "555.123.4567", "1 555 123 4567", " +1 (555) 123-4567 "],
    )
    def test_us_number_formats_share_a_key(self, raw: str) -> None:
        """Every common way of writing the same number maps to E.164."""
        assert canonical_key(raw) == "+15551234567"

    def test_international_number(self) -> None:
        assert canonical_key("+44 20 7946 0958") == "+442079460958"

    def test_region_fills_in_country_code(self) -> None:
        """A national number is read in the configured region."""
        assert canonical_key("020 7946 0958", region="GB") == "+442079460958"

    def test_email_is_lowercased(self) -> None:
        assert canonical_key("Ann.Lee@Example.COM") == "ann.lee@example.com"

    @pytest.mark.parametrize("raw", ["12345", "262966", "chat123456789", "", "   ", None])
    def test_unresolvable_addresses(self, raw: str | None) -> None:
        """Short codes, group ids and blanks never get a key."""
        assert canonical_key(raw) is None


class TestFormatAddress:
    """Test display formatting of addresses."""

    def test_domestic_number_uses_national_format(self) -> None:
        assert format_address("+15551234567") == "(555) 123-4567"

    def test_foreign_number_uses_international_format(self) -> None:
        assert format_address("+442079460958") == "+44 20 7946 0958"

    def test_email_unchanged(self) -> None:
        assert format_address("ann@example.com") == "ann@example.com"

    def test_short_code_unchanged(self) -> None:
        assert format_address("12345") == "12345"


def test_is_email() -> None:
    assert is_email("a@b.c")
    assert not is_email("+15551234567")
