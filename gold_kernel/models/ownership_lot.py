"""
Module: gold_kernel.models.ownership_lot
Responsibility: ORM persistence for ownership lots.  A lot is the running
    balance of one (item, branch, supplier, lot key) combination: weight and
    quantity on hand, cost basis, and how much of that cost has been paid.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - amount_owed == total_cost - amount_paid after every movement.
    - total_weight, total_quantity, total_cost, amount_paid >= 0 and
      amount_paid <= total_cost (checked by MovementRecorder before write).
    - Lot identity is unique: UNIQUE(identity_key).
    - Lots are never deleted; a depleted lot keeps depleted_at set and is
      excluded from active queries (ORM listener blocks DELETE).
    - Optimistic versioning: version is the SQLAlchemy version_id_col, so
      a concurrent write on a stale copy raises StaleDataError.

Failure modes:
    - IntegrityError on duplicate identity_key (two creators racing).
    - StaleDataError on a stale version (translated to ConflictError).

Audit relevance:
    The balance columns are a cache of the movement history.  Replaying
    ownership_movements in (timestamp, sequence) order reproduces them exactly.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gold_kernel.db.base import Base
from gold_kernel.db.types import ZERO, LedgerDecimal


class UnitBasis:
    """Measure that cost is expressed against."""

    GRAM = "gram"
    UNIT = "unit"


class ItemKind:
    """What an item reference points at."""

    RAW_GOLD = "raw_gold"
    PRODUCT = "product"


class OwnershipLot(Base):
    """
    One ownership lot.

    Contract:
        Created by OwnershipLedger.get_or_create_lot on the first inbound
        movement and mutated ONLY by MovementRecorder.  Balance columns are
        never edited directly.

    Guarantees:
        - identity_key encodes (item_kind, item_id, branch_id, supplier_id,
      lot_key) and is unique.
        - group_key encodes (item_kind, item_id, branch_id, supplier_id); it
      is the lock key shared by every lot of that identity.
        - unit_cost == total_cost / measure (0 when the measure is 0), where
      measure is total_weight for gram lots and total_quantity for unit lots.

    Non-goals:
        - Does not store retail price, making charges or tax.
    """

    __tablename__ = "ownership_lots"

    __table_args__ = (
        UniqueConstraint("identity_key", name="uq_ownership_lot_identity"),
        Index("idx_ownership_lot_group", "group_key"),
        Index("idx_ownership_lot_item_branch", "item_kind", "item_id", "branch_id"),
        Index("idx_ownership_lot_supplier", "supplier_id"),
        Index("idx_ownership_lot_layer_date", "layer_date"),
    )

    item_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    branch_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # None for merchant-owned stock (customer buy-ins)
    supplier_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lot_key: Mapped[str] = mapped_column(String(150), nullable=False, default="")
    identity_key: Mapped[str] = mapped_column(String(500), nullable=False)
    group_key: Mapped[str] = mapped_column(String(400), nullable=False)

    unit_basis: Mapped[str] = mapped_column(String(10), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Balances (INVARIANT O1/O2)
    total_weight: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    total_quantity: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    total_cost: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    unit_cost: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    amount_paid: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)
    amount_owed: Mapped[Decimal] = mapped_column(LedgerDecimal(), nullable=False, default=ZERO)

    # FIFO/LIFO ordering date
    layer_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    last_movement_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    depleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Per-lot monotonic movement counter
    movement_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # INVARIANT O5
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def measure(self) -> Decimal:
        """Balance the cost basis is expressed against."""
        if self.unit_basis == UnitBasis.UNIT:
            return self.total_quantity
        return self.total_weight

    @property
    def is_depleted(self) -> bool:
        return (
            self.total_weight == 0
            and self.total_quantity == 0
            and self.amount_owed == 0
        )

    def __repr__(self) -> str:
        return (
            f"<OwnershipLot {self.id}: {self.item_kind}:{self.item_id} "
            f"branch={self.branch_id} supplier={self.supplier_id} "
            f"weight={self.total_weight} owed={self.amount_owed} {self.currency}>"
        )
