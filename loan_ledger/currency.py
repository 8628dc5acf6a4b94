"""
Currency and Money Module

ISO 4217 currencies accepted for employee loans and an immutable Money value
rounded half-up to the currency's minor unit. Floats are never accepted as
amounts.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from dataclasses import dataclass
from functools import total_ordering
from typing import Any, Union
from enum import Enum

from .errors import ValidationError


class Currency(Enum):
    """Loan currencies as (code, minor unit digits)"""
    COP = ("COP", 2)  # Colombian Peso
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    MXN = ("MXN", 2)  # Mexican Peso

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, e.g. 0.01"""
        return Decimal(1).scaleb(-self.precision)

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        try:
            return cls[code.upper()]
        except (KeyError, AttributeError):
            raise ValueError(f"Unsupported currency '{code}'")


def _as_decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def parse_decimal(value: Any, name: str = "amount") -> Decimal:
    """
    Read a caller-supplied number as an exact Decimal

    Decimals, integers and numeric strings are accepted. Floats, booleans,
    unparseable text and non-finite values raise ValidationError.
    """
    if isinstance(value, (float, bool)):
        raise ValidationError(f"{name} must be a Decimal, integer or numeric string")
    try:
        result = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{name} is not a valid number: {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{name} must be finite")
    return result


@total_ordering
@dataclass(frozen=True, eq=False)
class Money:
    """
    Amount in a currency. Construction rounds to the currency's minor unit,
    so every arithmetic result is already rounded.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        exact = _as_decimal(self.amount)
        object.__setattr__(self, 'amount', exact.quantize(self.currency.quantum, rounding=ROUND_HALF_UP))

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal(0), currency)

    @classmethod
    def parse(cls, value: Union[str, int, Decimal], currency: Currency, name: str = "amount") -> 'Money':
        """Build Money from a string, integer or Decimal; floats and garbage raise ValidationError"""
        return cls(parse_decimal(value, name), currency)

    def _same_currency(self, other: 'Money', verb: str) -> Decimal:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")
        return other.amount

    def __add__(self, other: 'Money') -> 'Money':
        return Money(self.amount + self._same_currency(other, "add"), self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        return Money(self.amount - self._same_currency(other, "subtract"), self.currency)

    def __mul__(self, factor) -> 'Money':
        return Money(self.amount * _as_decimal(factor), self.currency)

    def __truediv__(self, divisor) -> 'Money':
        return Money(self.amount / _as_decimal(divisor), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return (self.currency, self.amount) == (other.currency, other.amount)

    def __lt__(self, other: 'Money') -> bool:
        return self.amount < self._same_currency(other, "compare")

    def __hash__(self) -> int:
        return hash((self.currency, self.amount))

    def is_zero(self) -> bool:
        return self.amount.is_zero()

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount.is_signed() and not self.amount.is_zero()

    def max_zero(self) -> 'Money':
        """Floor the amount at zero"""
        return Money.zero(self.currency) if self.is_negative() else self

    def to_string(self) -> str:
        """Display form, e.g. ``COP 1,200,000.00``"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"
