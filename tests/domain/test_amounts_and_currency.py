"""Tests for Decimal coercion and currency code handling."""

from decimal import Decimal

import pytest

from billing_kernel.domain.amounts import (
    non_negative,
    to_decimal,
    to_optional_decimal,
)
from billing_kernel.domain.currency import CurrencyRegistry, normalize_currency_code
from billing_kernel.exceptions import InvalidAmountError


class TestToDecimal:
    """Record boundary coercion."""

    @pytest.mark.parametrize("raw,expected", [
        (10, Decimal("10")),
        (0.024, Decimal("0.024")),
        ("1500.50", Decimal("1500.50")),
        (" 7 ", Decimal("7")),
        (Decimal("3.3"), Decimal("3.3")),
    ])
    def test_accepted(self, raw, expected):
        assert to_decimal(raw) == expected

    def test_float_goes_through_str(self):
        assert str(to_decimal(0.1)) == "0.1"

    @pytest.mark.parametrize("raw", ["abc", True, [1], float("nan"), float("inf"), "NaN"])
    def test_rejected(self, raw):
        with pytest.raises(InvalidAmountError) as exc_info:
            to_decimal(raw, "sale_price")
        assert exc_info.value.field == "sale_price"
        assert exc_info.value.code == "INVALID_AMOUNT"

    def test_missing_without_default(self):
        with pytest.raises(InvalidAmountError):
            to_decimal(None)

    def test_missing_with_default(self):
        assert to_decimal(None, default=Decimal("0")) == Decimal("0")
        assert to_decimal("", default=Decimal("1")) == Decimal("1")

    def test_optional(self):
        assert to_optional_decimal(None) is None
        assert to_optional_decimal(" ") is None
        assert to_optional_decimal("5") == Decimal("5")

    def test_non_negative(self):
        assert non_negative(Decimal("-1")) == Decimal("0")
        assert non_negative(Decimal("2")) == Decimal("2")


class TestCurrency:
    """Aggregation keys and display precision."""

    @pytest.mark.parametrize("raw,expected", [
        ("usd", "USD"),
        (" eur ", "EUR"),
        ("", "ARS"),
        ("   ", "ARS"),
        (None, "ARS"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_currency_code(raw) == expected

    def test_normalize_custom_fallback(self):
        assert normalize_currency_code(None, "usd") == "USD"

    @pytest.mark.parametrize("raw,expected", [
        ("US$", "USD"),
        ("U$S", "USD"),
        ("u$d", "USD"),
        ("USD$", "USD"),
        (" dol ", "USD"),
        ("$", "ARS"),
        ("AR$", "ARS"),
    ])
    def test_aliases(self, raw, expected):
        assert normalize_currency_code(raw) == expected

    def test_alias_fallback(self):
        assert normalize_currency_code("", "US$") == "USD"

    def test_alias_precision_lookup(self):
        assert CurrencyRegistry.get_info("US$").code == "USD"

    def test_round_two_places_half_up(self):
        assert CurrencyRegistry.round(Decimal("10.005"), "ARS") == Decimal("10.01")

    def test_round_zero_places(self):
        assert CurrencyRegistry.round(Decimal("1234.5"), "CLP") == Decimal("1235")

    def test_unknown_code_uses_default_places(self):
        assert not CurrencyRegistry.is_known("XYZ")
        assert CurrencyRegistry.get_decimal_places("XYZ") == 2
        assert CurrencyRegistry.round(Decimal("1.234"), "XYZ") == Decimal("1.23")

    def test_lookup_case_insensitive(self):
        assert CurrencyRegistry.get_info("clp").decimal_places == 0
        assert "USD" in CurrencyRegistry.all_codes()
