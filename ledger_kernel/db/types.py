"""
Module: ledger_kernel.db.types
Responsibility: The exact-money column type and the amount coercion helpers
    every layer uses to turn caller input into two-place Decimals.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Monetary amounts are exact decimals with two fractional digits and are
      stored as signed integer minor units (cents).  Sums are therefore
      integer sums and never drift.
    - Floats are rejected at every boundary; 0.1 + 0.2 is not a ledger value.

Failure modes:
    - InvalidAmountError on float input, non-numeric strings, NaN/Infinity,
      more than two decimal places, or more than MAX_INTEGER_DIGITS digits
      before the decimal point (the range of a decimal(15, 2) column).
"""

from decimal import Decimal, InvalidOperation
from enum import Enum

from sqlalchemy import BigInteger, Enum as SAEnum
from sqlalchemy.types import TypeDecorator

from ledger_kernel.exceptions import InvalidAmountError

MONEY_DECIMAL_PLACES = 2
MAX_INTEGER_DIGITS = 13
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_MINOR_UNITS_PER_MAJOR = 10**MONEY_DECIMAL_PLACES


def to_amount(
    value: object,
    *,
    allow_negative: bool = False,
    max_integer_digits: int | None = MAX_INTEGER_DIGITS,
) -> Decimal:
    """
    Coerce caller input into a two-place Decimal.

    Accepts Decimal, int, or numeric str.  The result always carries exactly
    two decimal places ("12.5" -> Decimal("12.50")).  ``max_integer_digits``
    caps the digits before the decimal point; None lifts the cap (stored
    balances and report totals may legitimately exceed one entry's range).

    Raises:
        InvalidAmountError: float/bool input, unparsable text, non-finite
            values, more than two decimal places, too many integer digits,
            or a negative value when allow_negative is False.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(value, "use Decimal or str, not float")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(value.strip() if isinstance(value, str) else value)
        except InvalidOperation:
            raise InvalidAmountError(value, "not a number") from None
    else:
        raise InvalidAmountError(value, f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise InvalidAmountError(value, "must be finite")
    too_large = (
        f"exceeds {max_integer_digits} integer digits"
        if max_integer_digits is not None
        else "too large"
    )
    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation:
        # More digits than the decimal context can hold at two places
        raise InvalidAmountError(value, too_large) from None
    if amount != quantized:
        raise InvalidAmountError(value, "more than two decimal places")
    if max_integer_digits is not None and abs(quantized) >= Decimal(10) ** max_integer_digits:
        raise InvalidAmountError(value, too_large)
    if amount < 0 and not allow_negative:
        raise InvalidAmountError(value, "must not be negative")
    return quantized


def to_minor_units(amount: Decimal) -> int:
    return int(
        to_amount(amount, allow_negative=True, max_integer_digits=None)
        * _MINOR_UNITS_PER_MAJOR
    )


def from_minor_units(value: int) -> Decimal:
    return (Decimal(value) / _MINOR_UNITS_PER_MAJOR).quantize(CENT)


class MinorUnitAmount(TypeDecorator):
    """
    Decimal amount stored as BigInteger minor units.

    Contract:
        Binds Decimal("12.34") as 1234 and loads 1234 as Decimal("12.34").
        Aggregates (func.sum) over a MinorUnitAmount column come back through
        process_result_value as well, so projected balances stay exact.

    Guarantees:
        - Never stores or returns a float.
        - Values with more than two decimal places never reach the database.
    """

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return to_minor_units(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return from_minor_units(int(value))


def value_enum(enum_cls: type[Enum], length: int = 32) -> SAEnum:
    """Store a str Enum by value in a VARCHAR; reads return enum members."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
