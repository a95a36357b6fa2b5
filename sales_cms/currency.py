"""
Money and Currency Module

Handles ISO 4217 currency codes and centavo-precise Decimal arithmetic for
sale prices, installments and payments. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from typing import Optional, Union
from enum import Enum
import re

from .errors import ValidationError

# Set global decimal context for financial precision
getcontext().prec = 28

CENTAVO = Decimal('0.01')
HUNDRED = Decimal('100')

Numeric = Union[Decimal, int, str, float]


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    MXN = ("MXN", 2)  # Mexican Peso, 2 decimal places
    USD = ("USD", 2)  # US Dollar, 2 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency = Currency.MXN

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))

        # Round to currency precision
        rounded = self.amount.quantize(
            Decimal('0.1') ** self.currency.precision,
            rounding=ROUND_HALF_UP
        )
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency = Currency.MXN) -> 'Money':
        return cls(Decimal('0'), currency)

    def __add__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot add {self.currency.code} and {other.currency.code}")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        if self.currency != other.currency:
            raise ValueError(f"Cannot subtract {other.currency.code} from {self.currency.code}")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __truediv__(self, divisor: Decimal) -> 'Money':
        if not isinstance(divisor, Decimal):
            divisor = Decimal(str(divisor))
        return Money(self.amount / divisor, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        if self.currency != other.currency:
            raise ValueError(f"Cannot compare {self.currency.code} and {other.currency.code}")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        else:
            return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def to_decimal(value: Numeric) -> Decimal:
    """
    Convert a user or storage supplied number to Decimal

    Floats go through str() so 0.1 becomes Decimal('0.1'), not its binary expansion.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ValidationError(f"Cannot convert boolean {value!r} to an amount")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"Cannot convert '{value}' to Decimal")
    else:
        raise ValidationError(f"Unsupported amount type: {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError(f"Amount must be a finite number, got '{value}'")
    return result


def round_money(value: Numeric) -> Decimal:
    """Round to centavos with ROUND_HALF_UP (standard currency rounding)"""
    return to_decimal(value).quantize(CENTAVO, rounding=ROUND_HALF_UP)


def percentage_of(amount: Money, pct: Numeric) -> Money:
    """Return pct percent of amount, rounded to centavos"""
    return Money(amount.amount * to_decimal(pct) / HUNDRED, amount.currency)


def convert_to_base(money: Money, fx_rate: Numeric, base: Currency = Currency.MXN) -> Money:
    """
    Convert a foreign-currency amount into the base currency

    Args:
        money: Amount as received (e.g. a USD wire)
        fx_rate: Units of base currency per unit of money.currency
        base: Target currency

    Returns:
        Converted Money object
    """
    if money.currency == base:
        return money

    rate = to_decimal(fx_rate)
    if rate <= Decimal('0'):
        raise ValidationError(f"Exchange rate must be positive, got {rate}")
    return Money(money.amount * rate, base)


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number, e.g. "MX$1,234.50"

    Returns:
        Decimal value

    Raises:
        ValidationError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValidationError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Thousands separator
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValidationError(f"Cannot convert '{value}' to Decimal")


def format_mxn(amount: Optional[Union[Money, Numeric]]) -> str:
    """Format an amount as Mexican pesos, preserving centavos: MX$1,234.56"""
    if amount is None:
        return "MX$0.00"
    if isinstance(amount, Money):
        value = amount.amount
    else:
        value = round_money(amount)

    sign = "-" if value < 0 else ""
    return f"{sign}MX${abs(value):,.2f}"
