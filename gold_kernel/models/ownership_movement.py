"""
Module: gold_kernel.models.ownership_movement
Responsibility: ORM persistence for the append-only movement history of
    ownership lots.  Every change to a lot balance is one row here.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only.  UPDATE and DELETE are blocked by ORM listeners
      (db/immutability.py).
    - Per-lot ordering.  UNIQUE(lot_id, sequence); sequence is taken from
      the lot's movement_seq under the lot lock.
    - Balance-after columns equal the lot balances at the moment the
      movement was written.

Failure modes:
    - IntegrityError on duplicate (lot_id, sequence).
    - ImmutabilityViolationError on any UPDATE/DELETE.

Audit relevance:
    Movements are the ledger.  Lot balances can be rebuilt from them, and the
    correlation_id ties the two legs of a karat conversion, consolidation or
    waiver together.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gold_kernel.db.base import Base, UUIDString
from gold_kernel.db.types import ZERO, LedgerDecimal


class MovementType(str, Enum):
    """Kinds of lot movement."""

    RECEIPT = "Receipt"
    SALE = "Sale"
    PAYMENT = "Payment"
    CONSOLIDATION = "Consolidation"
    KARAT_CONVERSION_DEBIT = "KaratConversionDebit"
    KARAT_CONVERSION_CREDIT = "KaratConversionCredit"
    WAIVER = "Waiver"
    ADJUSTMENT = "Adjustment"


class OwnershipMovement(Base):
    """
    One immutable change to an ownership lot.

    Contract:
        Written only by MovementRecorder, in the same flush as the lot update.

    Guarantees:
        - amount_change is the signed change of amount_owed and always equals
      cost_change - paid_change.
        - *_after columns hold the lot balances after this movement.
    """

    __tablename__ = "ownership_movements"

    __table_args__ = (
        UniqueConstraint("lot_id", "sequence", name="uq_ownership_movement_seq"),
        Index("idx_ownership_movement_lot_time", "lot_id", "timestamp"),
        Index("idx_ownership_movement_correlation", "correlation_id"),
        Index("idx_ownership_movement_reference", "reference_number"),
    )

    lot_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ownership_lots.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # Persisted as MovementType.value
    movement_type: Mapped[str] = mapped_column(String(30), nullable=False)

    weight_change: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    quantity_change: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    cost_change: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    paid_change: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    amount_change: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)

    weight_balance_after: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    quantity_balance_after: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    cost_balance_after: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    amount_paid_after: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    amount_owed_after: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)

    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Conversion id / consolidation batch id / waiver id
    correlation_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<OwnershipMovement {self.lot_id}#{self.sequence} {self.movement_type} "
            f"w={self.weight_change} owed={self.amount_change}>"
        )
