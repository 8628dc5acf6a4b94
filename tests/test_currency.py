"""
Test suite for currency module

Tests Money rounding, arithmetic and parsing. Loan amounts must stay exact
Decimal values rounded half-up to cents.
"""

import pytest
from decimal import Decimal

from loan_ledger.currency import Money, Currency, parse_decimal
from loan_ledger.errors import ValidationError


class TestCurrency:
    """Test Currency enum"""

    def test_currency_codes_and_precision(self):
        assert Currency.COP.code == "COP"
        assert Currency.COP.precision == 2
        assert Currency.USD.quantum == Decimal('0.01')

    def test_from_code_is_case_insensitive(self):
        assert Currency.from_code("mxn") == Currency.MXN
        assert Currency.from_code("EUR") == Currency.EUR

    def test_from_code_rejects_unknown(self):
        with pytest.raises(ValueError):
            Currency.from_code("JPY")
        with pytest.raises(ValueError):
            Currency.from_code(None)


class TestMoney:
    """Test Money class operations"""

    def test_money_rounds_half_up(self):
        assert Money(Decimal('100.555'), Currency.COP).amount == Decimal('100.56')
        assert Money(Decimal('100.554'), Currency.COP).amount == Decimal('100.55')
        assert Money(Decimal('186666.666666'), Currency.COP).amount == Decimal('186666.67')

    def test_money_arithmetic(self):
        a = Money(Decimal('100.50'), Currency.USD)
        b = Money(Decimal('50.25'), Currency.USD)

        assert (a + b).amount == Decimal('150.75')
        assert (a - b).amount == Decimal('50.25')
        assert (a * Decimal('2')).amount == Decimal('201.00')
        assert (a / Decimal('3')).amount == Decimal('33.50')

    def test_mixed_currencies_rejected(self):
        cop = Money(Decimal('10'), Currency.COP)
        usd = Money(Decimal('10'), Currency.USD)
        with pytest.raises(ValueError):
            cop + usd
        with pytest.raises(ValueError):
            cop < usd

    def test_comparisons_and_predicates(self):
        zero = Money.zero(Currency.COP)
        ten = Money(Decimal('10'), Currency.COP)

        assert zero.is_zero()
        assert ten.is_positive()
        assert (zero - ten).is_negative()
        assert ten > zero
        assert ten >= Money(Decimal('10.00'), Currency.COP)
        assert ten == Money(Decimal('10.00'), Currency.COP)
        assert ten != Money(Decimal('10.00'), Currency.USD)

    def test_max_zero_floors_negative_amounts(self):
        negative = Money(Decimal('-5'), Currency.COP)
        assert negative.max_zero() == Money.zero(Currency.COP)
        positive = Money(Decimal('5'), Currency.COP)
        assert positive.max_zero() is positive

    def test_parse(self):
        assert Money.parse("1200000", Currency.COP).amount == Decimal('1200000.00')
        assert Money.parse(" 12.345 ", Currency.COP).amount == Decimal('12.35')
        assert Money.parse(7, Currency.COP).amount == Decimal('7.00')

    def test_parse_rejects_floats_and_garbage(self):
        with pytest.raises(ValidationError):
            Money.parse(10.5, Currency.COP)
        with pytest.raises(ValidationError, match="principal"):
            Money.parse("ten", Currency.COP, "principal")
        # still a ValueError for callers outside the ledger
        with pytest.raises(ValueError):
            Money.parse("NaN", Currency.COP)

    def test_parse_decimal(self):
        assert parse_decimal(" 2.5 ") == Decimal('2.5')
        assert parse_decimal(Decimal('12'), "rate") == Decimal('12')
        for bad in (True, 0.1, "1e", "Infinity"):
            with pytest.raises(ValidationError):
                parse_decimal(bad, "rate")

    def test_to_string(self):
        assert Money(Decimal('1200000'), Currency.COP).to_string() == "COP 1,200,000.00"

    def test_money_is_hashable(self):
        amounts = {Money(Decimal('1'), Currency.COP), Money(Decimal('1.00'), Currency.COP)}
        assert len(amounts) == 1
