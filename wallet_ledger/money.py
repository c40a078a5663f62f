"""
Money Value Type

Exact monetary amounts backed by Decimal with a fixed scale of two fraction
digits. NEVER uses float for monetary values. Every amount is rounded with
ROUND_HALF_UP when it is created, whether it was parsed from a request,
produced by arithmetic or loaded from storage.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from typing import Union
import re

from .errors import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

SCALE = 2
QUANTUM = Decimal('0.1') ** SCALE
MAX_INTEGER_DIGITS = 18  # NUMERIC(20,2)

_AMOUNT_PATTERN = re.compile(r'^[+-]?\d+(\.\d+)?$')


@dataclass(frozen=True)
class Money:
    """
    Immutable monetary amount rounded to two fraction digits.
    All balances and transaction amounts MUST use this class.
    """
    amount: Decimal

    def __post_init__(self):
        value = self.amount
        if isinstance(value, bool) or isinstance(value, float):
            raise InvalidAmount(value, "floating point amounts are not accepted")
        if isinstance(value, int):
            value = Decimal(value)
        if not isinstance(value, Decimal):
            raise InvalidAmount(value)
        if not value.is_finite():
            raise InvalidAmount(value, "amount must be finite")

        if not value.is_zero() and value.adjusted() >= MAX_INTEGER_DIGITS:
            raise InvalidAmount(value, "amount out of range")
        try:
            rounded = value.quantize(QUANTUM, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise InvalidAmount(value, "amount out of range")
        # 999999999999999999.995 rounds up to 19 integer digits
        if not rounded.is_zero() and rounded.adjusted() >= MAX_INTEGER_DIGITS:
            raise InvalidAmount(value, "amount out of range")
        if rounded.is_zero():
            rounded = abs(rounded)  # no "-0.00"
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def parse(cls, value: Union[str, Decimal, int]) -> 'Money':
        """
        Parse a plain decimal string such as "10.15" or "-3"

        Raises:
            InvalidAmount: If the value is not a well-formed decimal
        """
        if isinstance(value, (Decimal, int)) and not isinstance(value, bool):
            return cls(value)
        if not isinstance(value, str) or not value.strip():
            raise InvalidAmount(value, "amount is required")

        text = value.strip()
        if not _AMOUNT_PATTERN.match(text):
            raise InvalidAmount(value, "invalid amount format")

        try:
            return cls(Decimal(text))
        except InvalidOperation:
            raise InvalidAmount(value, "invalid amount format")

    @classmethod
    def zero(cls) -> 'Money':
        return cls(Decimal('0'))

    def __add__(self, other: 'Money') -> 'Money':
        return Money(self.amount + other.amount)

    def __sub__(self, other: 'Money') -> 'Money':
        return Money(self.amount - other.amount)

    def __neg__(self) -> 'Money':
        return Money(-self.amount)

    def __lt__(self, other: 'Money') -> bool:
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        return self.amount >= other.amount

    def sign(self) -> int:
        """Return -1, 0 or 1"""
        if self.amount > 0:
            return 1
        if self.amount < 0:
            return -1
        return 0

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
        """Canonical rendering with exactly two fraction digits"""
        return f"{self.amount:.{SCALE}f}"

    def __str__(self) -> str:
        return self.to_string()
