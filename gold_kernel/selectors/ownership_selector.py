"""
Module: gold_kernel.selectors.ownership_selector
Responsibility: Read-only queries over ownership lots, movements and
    correlation records.  Returns frozen DTOs, never ORM rows.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only: never adds, flushes or commits.
    - Active means not depleted: ``depleted_at IS NULL`` narrows in SQL, and
      ``LotSnapshot.is_active`` drops empty never-used lots.
    - Money aggregates are summed in Python over Decimals so that SQLite's
      string storage of exact decimals never leaks into arithmetic.

Failure modes:
    - LotNotFoundError from get_lot for an unknown id.

Audit relevance:
    ``replay`` rebuilds a lot's balances from its movements and reports any
    drift from the stored balances; it is the conservation check.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select

from gold_kernel.db.types import ZERO
from gold_kernel.domain.clock import as_utc
from gold_kernel.domain.dtos import LotSnapshot, MovementRecord
from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import LotNotFoundError
from gold_kernel.models.correlation import ConsolidationBatch, KaratConversion, WaiverRecord
from gold_kernel.models.ownership_lot import OwnershipLot
from gold_kernel.models.ownership_movement import OwnershipMovement
from gold_kernel.selectors.base import BaseSelector


@dataclass(frozen=True, slots=True)
class ReplayResult:
    """Balances rebuilt from movements, next to the stored ones."""

    lot_id: UUID
    movement_count: int
    weight: Decimal
    quantity: Decimal
    cost: Decimal
    paid: Decimal
    owed: Decimal
    stored: LotSnapshot

    @property
    def matches(self) -> bool:
        return (
            self.weight == self.stored.total_weight
            and self.quantity == self.stored.total_quantity
            and self.cost == self.stored.total_cost
            and self.paid == self.stored.amount_paid
            and self.owed == self.stored.amount_owed
        )


@dataclass(frozen=True, slots=True)
class ConversionHistoryEntry:
    conversion_id: UUID
    branch_id: str
    supplier_id: str | None
    from_karat: str
    to_karat: str
    from_weight: Decimal
    to_weight: Decimal
    rate: Decimal
    source_lot_ids: tuple[UUID, ...]
    target_lot_id: UUID
    reference_number: str
    created_by: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class WaiverHistoryEntry:
    waiver_id: UUID
    item: ItemRef
    branch_id: str
    supplier_id: str | None
    source_lot_id: UUID
    target_lot_id: UUID
    weight: Decimal
    value_applied: Decimal
    reference_number: str
    created_by: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class BatchSummary:
    batch_id: UUID
    item: ItemRef
    branch_id: str
    supplier_id: str | None
    source_lot_ids: tuple[UUID, ...]
    target_lot_id: UUID
    total_weight: Decimal
    total_cost: Decimal
    weighted_average_cost: Decimal
    created_by: str
    created_at: datetime


class OwnershipSelector(BaseSelector):
    """Queries for lots, their history and multi-leg operation records."""

    def get_lot(self, lot_id: UUID) -> LotSnapshot:
        lot = self.session.get(OwnershipLot, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return LotSnapshot.from_model(lot)

    def find_lot(self, identity_key: str) -> LotSnapshot | None:
        lot = self.session.execute(
            select(OwnershipLot).where(OwnershipLot.identity_key == identity_key)
        ).scalar_one_or_none()
        return LotSnapshot.from_model(lot) if lot is not None else None

    def active_lots(
        self,
        item: ItemRef | None = None,
        branch_id: str | None = None,
        supplier_id: str | None = None,
        *,
        merchant_only: bool = False,
        group_keys: Iterable[str] | None = None,
    ) -> list[LotSnapshot]:
        """
        Active lots, optionally narrowed.

        ``supplier_id=None`` means "any supplier"; pass ``merchant_only=True``
        for merchant-owned lots only.
        """
        stmt = select(OwnershipLot).where(OwnershipLot.depleted_at.is_(None))
        if item is not None:
            stmt = stmt.where(
                OwnershipLot.item_kind == item.kind,
                OwnershipLot.item_id == item.item_id,
            )
        if branch_id is not None:
            stmt = stmt.where(OwnershipLot.branch_id == branch_id)
        if merchant_only:
            stmt = stmt.where(OwnershipLot.supplier_id.is_(None))
        elif supplier_id is not None:
            stmt = stmt.where(OwnershipLot.supplier_id == supplier_id)
        if group_keys is not None:
            stmt = stmt.where(OwnershipLot.group_key.in_(list(group_keys)))
        stmt = stmt.order_by(OwnershipLot.layer_date, OwnershipLot.created_at)

        lots = self.session.execute(stmt).scalars().all()
        return [s for s in (LotSnapshot.from_model(lot) for lot in lots) if s.is_active]

    def all_lots(self, item: ItemRef, branch_id: str) -> list[LotSnapshot]:
        """Every lot including depleted ones, oldest first."""
        stmt = (
            select(OwnershipLot)
            .where(
                OwnershipLot.item_kind == item.kind,
                OwnershipLot.item_id == item.item_id,
                OwnershipLot.branch_id == branch_id,
            )
            .order_by(OwnershipLot.created_at)
        )
        return [LotSnapshot.from_model(lot) for lot in self.session.execute(stmt).scalars()]

    def supplier_outstanding(self, supplier_id: str) -> Decimal:
        """Total amount owed to a supplier across every active lot."""
        return sum(
            (lot.amount_owed for lot in self.active_lots(supplier_id=supplier_id)),
            ZERO,
        )

    def movements(self, lot_id: UUID) -> list[MovementRecord]:
        """A lot's history in replay order."""
        stmt = (
            select(OwnershipMovement)
            .where(OwnershipMovement.lot_id == lot_id)
            .order_by(OwnershipMovement.timestamp, OwnershipMovement.sequence)
        )
        return [MovementRecord.from_model(m) for m in self.session.execute(stmt).scalars()]

    def movements_for_correlation(self, correlation_id: UUID) -> list[MovementRecord]:
        stmt = (
            select(OwnershipMovement)
            .where(OwnershipMovement.correlation_id == correlation_id)
            .order_by(OwnershipMovement.timestamp, OwnershipMovement.sequence)
        )
        return [MovementRecord.from_model(m) for m in self.session.execute(stmt).scalars()]

    def replay(self, lot_id: UUID) -> ReplayResult:
        """Rebuild a lot's balances from its movement history."""
        stored = self.get_lot(lot_id)
        weight = quantity = cost = paid = owed = ZERO
        history = self.movements(lot_id)
        for movement in history:
            weight += movement.weight_change
            quantity += movement.quantity_change
            cost += movement.cost_change
            paid += movement.paid_change
            owed += movement.amount_change
        return ReplayResult(
            lot_id=lot_id,
            movement_count=len(history),
            weight=weight,
            quantity=quantity,
            cost=cost,
            paid=paid,
            owed=owed,
            stored=stored,
        )

    def conversion_history(self, branch_id: str | None = None) -> list[ConversionHistoryEntry]:
        stmt = select(KaratConversion).order_by(KaratConversion.created_at.desc())
        if branch_id is not None:
            stmt = stmt.where(KaratConversion.branch_id == branch_id)
        return [
            ConversionHistoryEntry(
                conversion_id=row.id,
                branch_id=row.branch_id,
                supplier_id=row.supplier_id,
                from_karat=row.from_karat,
                to_karat=row.to_karat,
                from_weight=row.from_weight,
                to_weight=row.to_weight,
                rate=row.rate,
                source_lot_ids=tuple(UUID(s) for s in row.source_lot_ids),
                target_lot_id=row.target_lot_id,
                reference_number=row.reference_number,
                created_by=row.created_by,
                created_at=as_utc(row.created_at),
            )
            for row in self.session.execute(stmt).scalars()
        ]

    def waiver_history(self, branch_id: str | None = None) -> list[WaiverHistoryEntry]:
        """Waivers newest first; item, branch and supplier are the target lot's."""
        stmt = (
            select(WaiverRecord, OwnershipLot)
            .join(OwnershipLot, OwnershipLot.id == WaiverRecord.target_lot_id)
            .order_by(WaiverRecord.created_at.desc())
        )
        if branch_id is not None:
            stmt = stmt.where(OwnershipLot.branch_id == branch_id)
        return [
            WaiverHistoryEntry(
                waiver_id=waiver.id,
                item=ItemRef(kind=target.item_kind, item_id=target.item_id),
                branch_id=target.branch_id,
                supplier_id=target.supplier_id,
                source_lot_id=waiver.source_lot_id,
                target_lot_id=waiver.target_lot_id,
                weight=waiver.weight,
                value_applied=waiver.value_applied,
                reference_number=waiver.reference_number,
                created_by=waiver.created_by,
                created_at=as_utc(waiver.created_at),
            )
            for waiver, target in self.session.execute(stmt).all()
        ]

    def consolidation_batches(self, branch_id: str | None = None) -> list[BatchSummary]:
        stmt = select(ConsolidationBatch).order_by(ConsolidationBatch.created_at)
        if branch_id is not None:
            stmt = stmt.where(ConsolidationBatch.branch_id == branch_id)
        return [
            BatchSummary(
                batch_id=row.id,
                item=ItemRef(kind=row.item_kind, item_id=row.item_id),
                branch_id=row.branch_id,
                supplier_id=row.supplier_id,
                source_lot_ids=tuple(UUID(s) for s in row.source_lot_ids),
                target_lot_id=row.target_lot_id,
                total_weight=row.total_weight,
                total_cost=row.total_cost,
                weighted_average_cost=row.weighted_average_cost,
                created_by=row.created_by,
                created_at=as_utc(row.created_at),
            )
            for row in self.session.execute(stmt).scalars()
        ]
