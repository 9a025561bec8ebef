"""
Module: gold_kernel.models.correlation
Responsibility: ORM persistence for the records that tie multi-leg ledger
    operations together: karat conversions, consolidation batches and waivers.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only.  None of these records is ever updated or deleted
      (db/immutability.py).
    - Each record id is also the correlation_id stamped on every movement
      of the operation, so legs can be found from either side.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE.

Audit relevance:
    A conversion record preserves the purity rate used; a consolidation batch
    preserves which lots were merged and at what weighted-average cost.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from gold_kernel.db.base import Base, UUIDString
from gold_kernel.db.types import LedgerDecimal


class KaratConversion(Base):
    """
    Correlation record for one karat conversion.

    Guarantees:
        - rate == from_purity / to_purity.
        - to_weight == from_weight * rate (storage precision).
        - source_lot_ids lists every lot debited, in draw order;
          source_lot_id is the first of them.
    """

    __tablename__ = "karat_conversions"

    __table_args__ = (
        Index("idx_karat_conversion_branch", "branch_id", "created_at"),
    )

    branch_id: Mapped[str] = mapped_column(String(100), nullable=False)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    from_karat: Mapped[str] = mapped_column(String(20), nullable=False)
    to_karat: Mapped[str] = mapped_column(String(20), nullable=False)
    from_weight: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    to_weight: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    from_purity: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    to_purity: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    rate: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    cost_transferred: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    paid_transferred: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)

    source_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ownership_lots.id"), nullable=False
    )
    source_lot_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    target_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ownership_lots.id"), nullable=False
    )

    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ConsolidationBatch(Base):
    """
    Correlation record for one consolidation.

    Guarantees:
        - source_lot_ids lists every lot debited to zero.
        - weighted_average_cost == total_cost / total measure.
    """

    __tablename__ = "consolidation_batches"

    item_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(100), nullable=False)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    source_lot_ids: Mapped[list] = mapped_column(JSON, nullable=False)
    target_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ownership_lots.id"), nullable=False
    )

    total_weight: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    total_quantity: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    total_paid: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    total_owed: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    weighted_average_cost: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class WaiverRecord(Base):
    """Correlation record for one waiver of merchant gold against a supplier balance."""

    __tablename__ = "ownership_waivers"

    source_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ownership_lots.id"), nullable=False
    )
    target_lot_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ownership_lots.id"), nullable=False
    )
    weight: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)
    value_applied: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False)

    reference_number: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
