"""
Module: ledger_kernel.db.types
Responsibility: Money column type and the helpers that convert between exact
    decimal amounts and integer minor units.  Centralizes precision so that
    every model and service uses identical arithmetic.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Amounts are stored as integer minor units (cents).  No float ever
      reaches the database, on any backend.
    - An amount with more decimal places than the currency minor unit is
      rejected, never silently rounded.

Failure modes:
    - ValueError from to_minor_units() on sub-minor-unit or non-finite input.

Audit relevance:
    Balance validation sums integers produced here.  Exact equality of
    those integer sums is the posting guard.
"""

from decimal import Decimal, InvalidOperation

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

# Minor-unit exponent of the ledger currency (cents)
MONEY_DECIMAL_PLACES = 2

_QUANTUM = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)


def to_minor_units(value: Decimal | int | str) -> int:
    """
    Convert a major-unit amount to integer minor units.

    Preconditions: value is finite and has at most MONEY_DECIMAL_PLACES
        decimal places.
    Postconditions: Returns an int such that
        from_minor_units(result) == Decimal(value).

    Raises:
        ValueError: If value is a float, is not a finite number, or carries
            precision below the minor unit.

    Example:
        to_minor_units(Decimal("10.50")) -> 1050
    """
    if isinstance(value, float):
        raise ValueError(f"Float amounts are not accepted: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    scaled = amount.scaleb(MONEY_DECIMAL_PLACES)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Amount {value} has more than {MONEY_DECIMAL_PLACES} decimal places"
        )
    return int(scaled)


def from_minor_units(value: int) -> Decimal:
    """
    Create a major-unit Decimal from integer minor units.

    Example:
        from_minor_units(1050) -> Decimal("10.50")
    """
    return Decimal(value).scaleb(-MONEY_DECIMAL_PLACES).quantize(_QUANTUM)


class MoneyAmount(TypeDecorator):
    """
    Decimal money amount stored as a BIGINT count of minor units.

    Contract:
        Binds a Decimal (or int/str) as minor units and loads it back as a
        Decimal quantized to MONEY_DECIMAL_PLACES.

    Guarantees:
        - Lossless on SQLite and PostgreSQL alike.
        - Sub-minor-unit values are rejected at bind time (ValueError).
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
        return from_minor_units(value)
