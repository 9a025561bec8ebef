"""
Typed exception hierarchy for the gold ownership ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the POS sale flow, the purchasing screens, the reporting jobs) must
react differently to "not enough gold on hand" and "supplier is over its credit
limit".  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE class attribute (machine-readable, API-safe)
  3. Exceptions carry the balance figures they were raised over

Example:
    try:
        ledger.apply_sale(item, branch, Decimal("4"), "INV-1", actor)
    except InsufficientOwnershipError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GoldLedgerError (base)
    |
    +-- OwnershipError
    |   +-- InsufficientOwnershipError
    |   +-- InvalidMovementError
    |   +-- LotNotFoundError
    |   +-- IncompatibleWaiverError
    |
    +-- PaymentError
    |   +-- PaymentExceedsOwedError
    |
    +-- ConversionError
    |   +-- InvalidConversionWeightError
    |   +-- UnknownKaratError
    |
    +-- ConsolidationError
    |   +-- InvalidConsolidationInputError
    |
    +-- CreditError
    |   +-- CreditLimitExceededError
    |
    +-- ConcurrencyError
    |   +-- ConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                          | When Raised
--------------|-------------------------------|-----------------------------------
Ownership     | INSUFFICIENT_OWNERSHIP        | Sale / waiver / costing asks for
              |                               | more than is on hand
              | INVALID_MOVEMENT              | Balance would go negative or paid
              |                               | would leave [0, total cost]
              | LOT_NOT_FOUND                 | Lot id does not exist
              | INCOMPATIBLE_WAIVER           | Waiver source/target mismatch
              | MIXED_UNIT_BASIS              | Averaging lots priced per gram and
              |                               | per unit together
--------------|-------------------------------|-----------------------------------
Payment       | PAYMENT_EXCEEDS_OWED          | Payment or waiver value > owed
--------------|-------------------------------|-----------------------------------
Conversion    | INVALID_CONVERSION_WEIGHT     | Weight <= 0 or same karat
              | UNKNOWN_KARAT                 | Karat id not in purity table
--------------|-------------------------------|-----------------------------------
Consolidation | INVALID_CONSOLIDATION_INPUT   | < 2 lots, mixed currency/basis
--------------|-------------------------------|-----------------------------------
Credit        | CREDIT_LIMIT_EXCEEDED         | Enforced supplier over limit
--------------|-------------------------------|-----------------------------------
Concurrency   | CONFLICT                      | Lock timeout / stale lot version
--------------|-------------------------------|-----------------------------------
Immutability  | IMMUTABILITY_VIOLATION        | Update/delete of audit history
--------------|-------------------------------|-----------------------------------
Configuration | CONFIGURATION_ERROR           | Invalid ledger configuration

===============================================================================
HANDLING PATTERNS
===============================================================================

Only ConflictError is retryable (``retryable = True``); see
``gold_kernel.services.retry.retry_on_conflict``.  Everything else is a
business rejection and must be surfaced to the operator unchanged.
"""

from decimal import Decimal
from typing import Any

from gold_kernel.db.types import round_weight


class GoldLedgerError(Exception):
    """
    Base exception for all gold ledger errors.

    All subclasses have a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "GOLD_LEDGER_ERROR"
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for API responses and logs."""
        payload: dict[str, Any] = {"code": self.code, "message": str(self)}
        for key, val in vars(self).items():
            if key.startswith("_"):
                continue
            payload[key] = str(val) if isinstance(val, Decimal) else val
        return payload


# Ownership-related exceptions


class OwnershipError(GoldLedgerError):
    """Base exception for lot ownership errors."""

    code: str = "OWNERSHIP_ERROR"


class InsufficientOwnershipError(OwnershipError):
    """Requested weight or quantity exceeds what is on hand.

    The message reports both figures at reporting precision; the attributes
    keep them exact.
    """

    code: str = "INSUFFICIENT_OWNERSHIP"

    def __init__(
        self,
        item_ref: str,
        branch_id: str,
        available: Decimal,
        requested: Decimal,
    ):
        self.item_ref = item_ref
        self.branch_id = branch_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient ownership of {item_ref} at branch {branch_id}: "
            f"available {round_weight(available)}, requested {round_weight(requested)}"
        )


class InvalidMovementError(OwnershipError):
    """A movement would break a lot balance invariant."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, lot_id: str, reason: str):
        self.lot_id = lot_id
        self.reason = reason
        super().__init__(f"Invalid movement on lot {lot_id}: {reason}")


class LotNotFoundError(OwnershipError):
    """Lot with the given id does not exist."""

    code: str = "LOT_NOT_FOUND"

    def __init__(self, lot_id: str):
        self.lot_id = lot_id
        super().__init__(f"Ownership lot not found: {lot_id}")


class IncompatibleWaiverError(OwnershipError):
    """Waiver source and target lots cannot be paired."""

    code: str = "INCOMPATIBLE_WAIVER"

    def __init__(self, source_lot_id: str, target_lot_id: str, reason: str):
        self.source_lot_id = source_lot_id
        self.target_lot_id = target_lot_id
        self.reason = reason
        super().__init__(
            f"Cannot waive from lot {source_lot_id} to lot {target_lot_id}: {reason}"
        )


class MixedUnitBasisError(OwnershipError):
    """Lots priced per gram and per unit cannot be averaged together."""

    code: str = "MIXED_UNIT_BASIS"

    def __init__(self, lot_ids: list[str], unit_bases: list[str]):
        self.lot_ids = lot_ids
        self.unit_bases = unit_bases
        super().__init__(
            f"Cannot average lots with different unit bases: {', '.join(unit_bases)}"
        )


# Payment-related exceptions


class PaymentError(GoldLedgerError):
    """Base exception for supplier payment errors."""

    code: str = "PAYMENT_ERROR"


class PaymentExceedsOwedError(PaymentError):
    """Payment (or waiver value) is larger than the outstanding balance."""

    code: str = "PAYMENT_EXCEEDS_OWED"

    def __init__(self, lot_id: str, owed: Decimal, amount: Decimal):
        self.lot_id = lot_id
        self.owed = owed
        self.amount = amount
        super().__init__(
            f"Payment {amount} exceeds outstanding {owed} on lot {lot_id}"
        )


# Karat conversion exceptions


class ConversionError(GoldLedgerError):
    """Base exception for karat conversion errors."""

    code: str = "CONVERSION_ERROR"


class InvalidConversionWeightError(ConversionError):
    """Conversion weight is not positive, or source and target karat match."""

    code: str = "INVALID_CONVERSION_WEIGHT"

    def __init__(self, from_weight: Decimal, reason: str = "weight must be positive"):
        self.from_weight = from_weight
        self.reason = reason
        super().__init__(f"Invalid conversion of {from_weight}g: {reason}")


class UnknownKaratError(ConversionError):
    """Karat id is not present in the purity table."""

    code: str = "UNKNOWN_KARAT"

    def __init__(self, karat_id: str):
        self.karat_id = karat_id
        super().__init__(f"Unknown karat: {karat_id}")


# Consolidation exceptions


class ConsolidationError(GoldLedgerError):
    """Base exception for lot consolidation errors."""

    code: str = "CONSOLIDATION_ERROR"


class InvalidConsolidationInputError(ConsolidationError):
    """Lots cannot be consolidated."""

    code: str = "INVALID_CONSOLIDATION_INPUT"

    def __init__(self, item_ref: str, reason: str, lot_count: int = 0):
        self.item_ref = item_ref
        self.reason = reason
        self.lot_count = lot_count
        super().__init__(f"Cannot consolidate {item_ref}: {reason}")


# Supplier credit exceptions


class CreditError(GoldLedgerError):
    """Base exception for supplier credit errors."""

    code: str = "CREDIT_ERROR"


class CreditLimitExceededError(CreditError):
    """Receipt would push an enforced supplier over its credit limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(
        self,
        supplier_id: str,
        current_balance: Decimal,
        limit: Decimal,
        additional: Decimal,
        reason: str | None = None,
    ):
        self.supplier_id = supplier_id
        self.current_balance = current_balance
        self.limit = limit
        self.additional = additional
        self.reason = reason
        detail = reason or (
            f"balance {current_balance} + {additional} exceeds limit {limit}"
        )
        super().__init__(f"Supplier {supplier_id} credit refused: {detail}")


# Concurrency exceptions


class ConcurrencyError(GoldLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConflictError(ConcurrencyError):
    """Lock could not be acquired in time, or the lot changed underneath us."""

    code: str = "CONFLICT"
    retryable: bool = True

    def __init__(self, resource: str, reason: str):
        self.resource = resource
        self.reason = reason
        super().__init__(f"Conflict on {resource}: {reason}")


# Immutability exceptions


class ImmutabilityError(GoldLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(GoldLedgerError):
    """Ledger configuration is missing or invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration '{key}': {reason}")
