"""
Unit tests for phone number normalization.
"""

from dialflow.queue.phone import area_code, normalize_phone_number


class TestNormalizePhoneNumber:
    """Tests for E.164 normalization."""

    def test_valid_e164_format(self) -> None:
        assert normalize_phone_number("+14155551234") == "+14155551234"
        assert normalize_phone_number("+393331234567") == "+393331234567"

    def test_formatting_characters_stripped(self) -> None:
        assert normalize_phone_number("  +1 (415) 555-1234 ") == "+14155551234"
        assert normalize_phone_number("+1.415.555.1234") == "+14155551234"

    def test_double_zero_prefix(self) -> None:
        assert normalize_phone_number("0014155551234") == "+14155551234"

    def test_bare_north_american_numbers(self) -> None:
        """Ten digits, or eleven with a leading 1, are read as +1 numbers."""
        assert normalize_phone_number("4155551234") == "+14155551234"
        assert normalize_phone_number("(415) 555-1234") == "+14155551234"
        assert normalize_phone_number("14155551234") == "+14155551234"

    def test_invalid_numbers(self) -> None:
        assert normalize_phone_number(None) is None
        assert normalize_phone_number("") is None
        assert normalize_phone_number("1234567") is None
        assert normalize_phone_number("0155551234") is None
        assert normalize_phone_number("abc123") is None
        assert normalize_phone_number("+12345678901234567890") is None


class TestAreaCode:
    def test_north_american_area_code(self) -> None:
        assert area_code("+14155551234") == "415"

    def test_other_countries_have_none(self) -> None:
        assert area_code("+393331234567") is None
