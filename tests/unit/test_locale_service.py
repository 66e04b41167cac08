"""Tests for currency formatting."""

from decimal import Decimal

import pytest

from waterbills.services.locale_service import cents_to_decimal, format_cents, resolve_locale


@pytest.mark.unit
class TestFormatCents:
    def test_us_dollars(self):
        assert format_cents(440000) == "$4,400.00"
        assert format_cents(5) == "$0.05"

    def test_negative_amount(self):
        assert "1.50" in format_cents(-150)

    def test_other_currency(self):
        formatted = format_cents(123456, locale="en_US", currency="MXN")
        assert "1,234.56" in formatted
        assert "MX$" in formatted or "MXN" in formatted

    def test_invalid_locale_falls_back(self):
        assert format_cents(100, locale="xx_INVALID") == "$1.00"


@pytest.mark.unit
def test_cents_to_decimal():
    assert cents_to_decimal(440000) == Decimal("4400.00")
    assert cents_to_decimal(-1) == Decimal("-0.01")


@pytest.mark.unit
def test_resolve_locale():
    assert resolve_locale(None) == "en_US"
    assert resolve_locale("es_MX") == "es_MX"
    assert resolve_locale("not a locale") == "en_US"
