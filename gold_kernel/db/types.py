"""
Module: gold_kernel.db.types
Responsibility: Exact decimal column type and the rounding helpers shared by
    every model, service and engine.  Centralizes storage precision and the
    reporting precision for weight and money.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and engines.  MUST NOT import from any of those layers.

Invariants enforced:
    - Storage precision: every weight, quantity and amount is stored with
      STORAGE_DECIMAL_PLACES (9) fractional digits.  quantize_storage() is the
      one function used to bring a computed delta to that precision, so the
      sum of stored movement deltas equals the stored lot balance exactly.
    - Reporting precision: round_weight() (3 places) and round_money()
      (2 places) are applied only to reported results, never to balances.
    - No floats: LedgerDecimal refuses float binds.

Failure modes:
    - TypeError if a float is bound to a LedgerDecimal column.
    - decimal.InvalidOperation if a value exceeds Numeric(38, 9).

Audit relevance:
    Replay of the movement history must reproduce the lot balances to the
    last stored digit.  SQLite has no exact NUMERIC storage, so LedgerDecimal
    stores the canonical string there and Numeric(38, 9) everywhere else.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String
from sqlalchemy.types import TypeDecorator

STORAGE_DECIMAL_PLACES = 9
WEIGHT_DECIMAL_PLACES = 3
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")

_STORAGE_QUANTUM = Decimal(1).scaleb(-STORAGE_DECIMAL_PLACES)


class LedgerDecimal(TypeDecorator):
    """
    Exact Decimal column portable across PostgreSQL and SQLite.

    Contract:
        Values round-trip as Decimal with exactly STORAGE_DECIMAL_PLACES
        fractional digits.

    Guarantees:
        - PostgreSQL (and any other dialect): Numeric(38, 9), asdecimal.
        - SQLite: String(48) holding the canonical decimal string, so
          values are never coerced through float.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = Numeric(38, STORAGE_DECIMAL_PLACES)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(48))
        return dialect.type_descriptor(Numeric(38, STORAGE_DECIMAL_PLACES))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            raise TypeError("LedgerDecimal refuses float values")
        quantized = quantize_storage(Decimal(value))
        if dialect.name == "sqlite":
            return str(quantized)
        return quantized

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return quantize_storage(Decimal(str(value)))


# Annotated aliases used by the models
Weight = Annotated[Decimal, LedgerDecimal()]
Amount = Annotated[Decimal, LedgerDecimal()]
CurrencyCode = Annotated[str, String(3)]


def quantize_storage(value: Decimal) -> Decimal:
    """
    Quantize a computed value to storage precision.

    Preconditions: value is a Decimal.
    Postconditions: Returns value with exactly 9 fractional digits,
        rounded ROUND_HALF_UP.
    """
    return value.quantize(_STORAGE_QUANTUM, rounding=DEFAULT_ROUNDING)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value for reporting.

    This is the ONLY sanctioned rounding function for reported money.
    Ledger balances are never passed through it.
    """
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def round_weight(
    value: Decimal,
    decimal_places: int = WEIGHT_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a weight (grams) or quantity for reporting."""
    return value.quantize(Decimal(1).scaleb(-decimal_places), rounding=rounding)


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Coerce caller input into Decimal.

    Raises:
        TypeError: If value is a float (binary floats are not exact).
    """
    if isinstance(value, float):
        raise TypeError("Ledger amounts must be Decimal, int or str, not float")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)
