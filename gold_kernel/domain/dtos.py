"""
DTOs -- Immutable data transfer objects for the ownership ledger.

Responsibility:
    Defines the frozen value objects returned by every ledger operation and
    selector: LotSnapshot, MovementRecord, and the operation results
    (SaleResult, ConversionResult, ConsolidationResult, WaiverResult).

Architecture position:
    Kernel > Domain -- zero I/O.  ``from_model()`` class methods are the
    boundary converters from ORM rows; they are only invoked from services
    and selectors, never from engines.

Invariants enforced:
    - Callers never receive ORM entities, so nothing outside a
      LedgerTransaction can mutate a lot.
    - Timestamps are normalized to aware UTC (SQLite drops tzinfo).

Data flow:
    OwnershipLot (ORM) -> LotSnapshot -> engines / mappers -> API dicts
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from gold_kernel.db.types import ZERO
from gold_kernel.domain.clock import as_utc
from gold_kernel.domain.values import ItemRef, LotIdentity
from gold_kernel.models.ownership_lot import UnitBasis
from gold_kernel.models.ownership_movement import MovementType

if TYPE_CHECKING:
    from gold_kernel.models.ownership_lot import OwnershipLot
    from gold_kernel.models.ownership_movement import OwnershipMovement

_HUNDRED = Decimal("100")


class PaymentStatus:
    """Supplier payment status of a lot, as shown on sale-risk reports."""

    PAID = "Paid"
    PARTIAL = "Partial"
    UNPAID = "Unpaid"


@dataclass(frozen=True, slots=True)
class LotSnapshot:
    """
    Point-in-time view of one ownership lot.

    Guarantees:
        - amount_owed == total_cost - amount_paid.
        - measure is total_weight for gram lots, total_quantity for unit lots.
    """

    lot_id: UUID
    item: ItemRef
    branch_id: str
    supplier_id: str | None
    lot_key: str
    unit_basis: str
    currency: str
    total_weight: Decimal
    total_quantity: Decimal
    total_cost: Decimal
    unit_cost: Decimal
    amount_paid: Decimal
    amount_owed: Decimal
    layer_date: datetime
    created_at: datetime
    last_movement_at: datetime | None
    depleted_at: datetime | None
    movement_seq: int
    version: int

    @classmethod
    def from_model(cls, lot: OwnershipLot) -> LotSnapshot:
        return cls(
            lot_id=lot.id,
            item=ItemRef(kind=lot.item_kind, item_id=lot.item_id),
            branch_id=lot.branch_id,
            supplier_id=lot.supplier_id,
            lot_key=lot.lot_key,
            unit_basis=lot.unit_basis,
            currency=lot.currency,
            total_weight=lot.total_weight,
            total_quantity=lot.total_quantity,
            total_cost=lot.total_cost,
            unit_cost=lot.unit_cost,
            amount_paid=lot.amount_paid,
            amount_owed=lot.amount_owed,
            layer_date=as_utc(lot.layer_date),
            created_at=as_utc(lot.created_at),
            last_movement_at=as_utc(lot.last_movement_at),
            depleted_at=as_utc(lot.depleted_at),
            movement_seq=lot.movement_seq,
            version=lot.version,
        )

    @property
    def identity(self) -> LotIdentity:
        return LotIdentity(item=self.item, branch_id=self.branch_id, supplier_id=self.supplier_id)

    @property
    def measure(self) -> Decimal:
        if self.unit_basis == UnitBasis.UNIT:
            return self.total_quantity
        return self.total_weight

    @property
    def is_active(self) -> bool:
        return not (
            self.total_weight == 0 and self.total_quantity == 0 and self.amount_owed == 0
        )

    @property
    def is_merchant_owned(self) -> bool:
        return self.supplier_id is None

    @property
    def paid_measure(self) -> Decimal:
        """Share of the measure that is paid for (unrounded)."""
        if self.total_cost == 0:
            return self.measure
        return self.measure * self.amount_paid / self.total_cost

    @property
    def ownership_percentage(self) -> Decimal:
        """Paid share of cost, in percent. A zero-cost lot counts as fully owned."""
        if self.total_cost == 0:
            return _HUNDRED
        return self.amount_paid * _HUNDRED / self.total_cost

    @property
    def payment_status(self) -> str:
        if self.amount_owed == 0:
            return PaymentStatus.PAID
        if self.amount_paid == 0:
            return PaymentStatus.UNPAID
        return PaymentStatus.PARTIAL


@dataclass(frozen=True, slots=True)
class MovementRecord:
    """One immutable lot movement."""

    movement_id: UUID
    lot_id: UUID
    sequence: int
    movement_type: MovementType
    weight_change: Decimal
    quantity_change: Decimal
    cost_change: Decimal
    paid_change: Decimal
    amount_change: Decimal
    weight_balance_after: Decimal
    quantity_balance_after: Decimal
    cost_balance_after: Decimal
    amount_paid_after: Decimal
    amount_owed_after: Decimal
    reference_number: str
    created_by: str
    timestamp: datetime
    correlation_id: UUID | None = None
    notes: str | None = None

    @classmethod
    def from_model(cls, movement: OwnershipMovement) -> MovementRecord:
        return cls(
            movement_id=movement.id,
            lot_id=movement.lot_id,
            sequence=movement.sequence,
            movement_type=MovementType(movement.movement_type),
            weight_change=movement.weight_change,
            quantity_change=movement.quantity_change,
            cost_change=movement.cost_change,
            paid_change=movement.paid_change,
            amount_change=movement.amount_change,
            weight_balance_after=movement.weight_balance_after,
            quantity_balance_after=movement.quantity_balance_after,
            cost_balance_after=movement.cost_balance_after,
            amount_paid_after=movement.amount_paid_after,
            amount_owed_after=movement.amount_owed_after,
            reference_number=movement.reference_number,
            created_by=movement.created_by,
            timestamp=as_utc(movement.timestamp),
            correlation_id=movement.correlation_id,
            notes=movement.notes,
        )


@dataclass(frozen=True, slots=True)
class MovementResult:
    """A single-lot operation: the lot after it, the movement, any warnings."""

    lot: LotSnapshot
    movement: MovementRecord
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LotDepletion:
    """What one sale took out of one lot."""

    lot_id: UUID
    supplier_id: str | None
    weight: Decimal
    quantity: Decimal
    cost_released: Decimal
    paid_released: Decimal
    owed_released: Decimal
    movement: MovementRecord


@dataclass(frozen=True, slots=True)
class SaleResult:
    """
    Outcome of a sale.

    ``cost_of_sale`` is the cost basis released from the depleted lots.
    """

    item: ItemRef
    branch_id: str
    requested: Decimal
    depletions: tuple[LotDepletion, ...]

    @property
    def cost_of_sale(self) -> Decimal:
        return sum((d.cost_released for d in self.depletions), ZERO)

    @property
    def unpaid_released(self) -> Decimal:
        return sum((d.owed_released for d in self.depletions), ZERO)


@dataclass(frozen=True, slots=True)
class ConversionResult:
    """
    Outcome of a karat conversion; every leg shares conversion_id.

    ``source_lots`` and ``debits`` are in draw order (oldest layer first),
    one debit per source lot touched.
    """

    conversion_id: UUID
    from_karat: str
    to_karat: str
    from_weight: Decimal
    to_weight: Decimal
    rate: Decimal
    cost_transferred: Decimal
    paid_transferred: Decimal
    source_lots: tuple[LotSnapshot, ...]
    target_lot: LotSnapshot
    debits: tuple[MovementRecord, ...]
    credit: MovementRecord


@dataclass(frozen=True, slots=True)
class ConsolidationResult:
    """Outcome of a consolidation; all movements share batch_id."""

    batch_id: UUID
    source_lot_ids: tuple[UUID, ...]
    target_lot: LotSnapshot
    total_weight: Decimal
    total_quantity: Decimal
    total_cost: Decimal
    total_paid: Decimal
    total_owed: Decimal
    weighted_average_cost: Decimal
    movements: tuple[MovementRecord, ...]


@dataclass(frozen=True, slots=True)
class WaiverResult:
    """Outcome of waiving merchant gold against a supplier balance."""

    waiver_id: UUID
    source_lot: LotSnapshot
    target_lot: LotSnapshot
    weight: Decimal
    value_applied: Decimal
    debit: MovementRecord
    credit: MovementRecord
