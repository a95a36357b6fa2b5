"""
Test suite for currency module

Tests Money arithmetic, centavo rounding, FX conversion and peso formatting.
"""

import pytest
from decimal import Decimal

from sales_cms.currency import (
    Money, Currency, to_decimal, round_money, percentage_of, convert_to_base,
    decimal_from_string, format_mxn
)
from sales_cms.errors import ValidationError


class TestMoney:
    """Test Money value object"""

    def test_default_currency_is_mxn(self):
        assert Money(Decimal('10')).currency == Currency.MXN

    def test_rounds_half_up_to_centavos(self):
        assert Money(Decimal('16666.665')).amount == Decimal('16666.67')
        assert Money(Decimal('0.005')).amount == Decimal('0.01')
        assert Money(Decimal('-0.005')).amount == Decimal('-0.01')

    def test_arithmetic(self):
        a = Money(Decimal('100.50'))
        b = Money(Decimal('0.75'))
        assert a + b == Money(Decimal('101.25'))
        assert a - b == Money(Decimal('99.75'))
        assert a * Decimal('2') == Money(Decimal('201.00'))
        assert Money(Decimal('600000')) / Decimal('36') == Money(Decimal('16666.67'))

    def test_mixed_currency_operations_rejected(self):
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.MXN) + Money(Decimal('1'), Currency.USD)
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.MXN) < Money(Decimal('1'), Currency.USD)

    def test_sign_predicates(self):
        assert Money.zero().is_zero()
        assert Money(Decimal('0.01')).is_positive()
        assert Money(Decimal('-0.01')).is_negative()

    def test_to_string(self):
        assert Money(Decimal('1234567.8')).to_string() == "MXN 1,234,567.80"


class TestConversions:
    """Test decimal helpers"""

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal('0.1')

    @pytest.mark.parametrize("bad", ["abc", "NaN", "Infinity", True, None])
    def test_to_decimal_rejects_non_numbers(self, bad):
        with pytest.raises(ValidationError):
            to_decimal(bad)

    def test_round_money(self):
        assert round_money("2.345") == Decimal('2.35')

    def test_percentage_of(self):
        assert percentage_of(Money(Decimal('1000000')), 30) == Money(Decimal('300000'))
        assert percentage_of(Money(Decimal('333.33')), Decimal('10')) == Money(Decimal('33.33'))

    def test_convert_to_base(self):
        usd = Money(Decimal('1000'), Currency.USD)
        assert convert_to_base(usd, "17.25") == Money(Decimal('17250.00'))

    def test_convert_same_currency_is_identity(self):
        mxn = Money(Decimal('5'))
        assert convert_to_base(mxn, "99") is mxn

    def test_convert_rejects_non_positive_rate(self):
        with pytest.raises(ValidationError):
            convert_to_base(Money(Decimal('1'), Currency.USD), 0)

    @pytest.mark.parametrize("text,expected", [
        ("MX$1,234.50", Decimal('1234.50')),
        ("12,50", Decimal('12.50')),
        ("1,000,000", Decimal('1000000')),
    ])
    def test_decimal_from_string(self, text, expected):
        assert decimal_from_string(text) == expected

    def test_format_mxn(self):
        assert format_mxn(Money(Decimal('50000'))) == "MX$50,000.00"
        assert format_mxn(Decimal('-12.345')) == "-MX$12.35"
        assert format_mxn(None) == "MX$0.00"
