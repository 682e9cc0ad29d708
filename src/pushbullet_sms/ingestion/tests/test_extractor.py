"""
Tests for verification code extraction.

These tests verify:
- Pattern precedence (bare digit runs before contextual phrases)
- No false positives on ordinary text
- Phrase patterns when no bare run exists
"""

import pytest

from pushbullet_sms.ingestion.extractor import extract_code


class TestExtractCode:
    """Tests for extract_code()."""

    def test_extracts_six_digit_code(self):
        assert extract_code("Your code is 482913") == "482913"

    def test_returns_none_without_code(self):
        assert extract_code("Hello, how are you?") is None

    def test_bare_run_wins_over_is_your_phrase(self):
        """
        "482913 is your verification code" matches both the 6-digit run and
        the "is your" phrase; the 6-digit pattern comes first.
        """
        assert extract_code("482913 is your verification code") == "482913"

    def test_six_digits_preferred_over_earlier_four_digits(self):
        """Pattern order beats position in the text."""
        assert extract_code("Card 1234: code 987654") == "987654"

    def test_four_digit_code(self):
        assert extract_code("Use 7731 to sign in") == "7731"

    def test_eight_digit_code(self):
        assert extract_code("Your PIN: 12345678") == "12345678"

    def test_code_phrase_for_five_digits(self):
        """Five digits only match through the contextual phrases."""
        assert extract_code("Your login code: 12345") == "12345"

    def test_verify_phrase(self):
        assert extract_code("VERIFY: 55555") == "55555"

    def test_is_your_phrase(self):
        assert extract_code("A-77777 is your PIN") == "77777"

    def test_digits_inside_longer_numbers_are_ignored(self):
        """Word boundaries stop matches inside longer digit runs."""
        assert extract_code("Order 1234567890123 shipped") is None

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty_input(self, text):
        assert extract_code(text) is None

    def test_is_pure(self):
        text = "Your code is 482913"
        assert extract_code(text) == extract_code(text) == "482913"
