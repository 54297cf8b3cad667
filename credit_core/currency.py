"""
Money Module

Decimal money value type for ledger and credit calculations.
NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal("0.01")


class Currency(Enum):
    """Supported ISO 4217 currencies with precision info. Accounts are RUB only."""
    RUB = ("RUB", 2)

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Resolve a currency by its ISO code"""
        for currency in cls:
            if currency.code == code.upper():
                return currency
        raise ValueError(f"Unsupported currency: {code}. Only RUB is supported")


DEFAULT_CURRENCY = Currency.RUB


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """Convert a numeric value to Decimal through its string form"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Union[Decimal, int, str], precision: int = 2) -> Decimal:
    """Round to minor units, half away from zero"""
    return to_decimal(value).quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency = DEFAULT_CURRENCY

    def __post_init__(self):
        object.__setattr__(
            self, 'amount', round_money(self.amount, self.currency.precision)
        )

    @classmethod
    def zero(cls, currency: Currency = DEFAULT_CURRENCY) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
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
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"

    def __str__(self) -> str:
        return self.to_string()
