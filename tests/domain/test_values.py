"""
Tests for the kernel value objects: ItemKey, ExchangeRate, currency
validation and decimal coercion.
"""

from decimal import Decimal

import pytest

from costing_kernel.db.types import round_amount
from costing_kernel.domain.values import (
    ExchangeRate,
    ItemKey,
    to_decimal,
    validate_currency,
)
from costing_kernel.exceptions import InvalidCurrencyError, InvalidExchangeRateError


class TestItemKey:

    def test_empty_variant_normalised(self):
        assert ItemKey("sku", "") == ItemKey("sku")
        assert ItemKey("sku", "").variant_id is None

    def test_product_required(self):
        with pytest.raises(ValueError):
            ItemKey("")

    def test_variant_key(self):
        assert ItemKey("sku").variant_key == ""
        assert ItemKey("sku", "red").variant_key == "red"

    def test_sorting_puts_product_before_its_variants(self):
        keys = [ItemKey("b"), ItemKey("a", "z"), ItemKey("a")]

        assert sorted(keys, key=ItemKey.sort_key) == [ItemKey("a"), ItemKey("a", "z"), ItemKey("b")]

    def test_str(self):
        assert str(ItemKey("sku")) == "sku"
        assert str(ItemKey("sku", "red")) == "sku/red"

    def test_hashable(self):
        assert len({ItemKey("sku"), ItemKey("sku", None), ItemKey("sku", "red")}) == 2


class TestExchangeRate:

    def test_normalises_currencies(self):
        rate = ExchangeRate.of("600", "usd", " xaf ")

        assert rate.foreign_currency == "USD"
        assert rate.home_currency == "XAF"
        assert rate.rate == Decimal("600")

    @pytest.mark.parametrize("value", ["0", "-600"])
    def test_non_positive_rate_rejected(self, value):
        with pytest.raises(InvalidExchangeRateError):
            ExchangeRate.of(value, "USD", "XAF")

    def test_unknown_currency_rejected(self):
        with pytest.raises(InvalidCurrencyError):
            ExchangeRate.of("1", "XXX", "XAF")

    def test_float_rate_rejected(self):
        with pytest.raises(TypeError):
            ExchangeRate.of(600.0, "USD", "XAF")

    def test_to_home(self):
        rate = ExchangeRate.of("655.957", "EUR", "XAF")

        assert rate.to_home(Decimal("2"), "EUR") == Decimal("1311.914")
        assert rate.to_home(Decimal("2"), "xaf") == Decimal("2")


class TestCoercion:

    def test_validate_currency(self):
        assert validate_currency(" gbp") == "GBP"
        with pytest.raises(InvalidCurrencyError):
            validate_currency("")

    def test_to_decimal(self):
        assert to_decimal(3) == Decimal("3")
        assert to_decimal("1.25") == Decimal("1.25")
        with pytest.raises(ValueError):
            to_decimal("lots")

    def test_round_amount_half_up(self):
        assert round_amount(Decimal("2.345"), 2) == Decimal("2.35")
        assert round_amount(Decimal("2.5"), 0) == Decimal("3")
        assert str(round_amount(Decimal("504"), 2)) == "504.00"
