"""
LotWriter -- session-bound lot creation, row locking and proportional depletion.

Responsibility:
    The building blocks every mutating ledger operation shares once it holds
    its identity locks: get-or-create a lot, load lots FOR UPDATE, and take a
    measure out of a lot together with its proportional share of cost and
    paid amount.

Architecture position:
    Kernel > Services -- imperative shell.  Used by OwnershipLedger and by
    the karat conversion and consolidation services, always inside a
    LedgerTransaction scope.

Invariants enforced:
    - Idempotent creation: get_or_create on an existing identity key returns
      the existing lot (never a second one).
    - Proportional release: taking t of a lot's measure M releases
      cost * t / M and leaves paid at min(paid * (M - t) / M, remaining cost);
      taking all of M releases everything, so nothing is stranded by rounding.
    - Owed follows cost: the unpaid share of the released cost is what leaves
      amount_owed.

Failure modes:
    - InvalidMovementError when an existing lot's currency or unit basis
      disagrees with the request.
    - ConflictError when a concurrent creator wins the identity key.
    - LotNotFoundError for unknown ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from gold_kernel.db.types import ZERO, quantize_storage
from gold_kernel.domain.dtos import MovementRecord
from gold_kernel.domain.values import ItemRef, LotIdentity
from gold_kernel.exceptions import ConflictError, InvalidMovementError, LotNotFoundError
from gold_kernel.logging_config import get_logger
from gold_kernel.models.ownership_lot import OwnershipLot, UnitBasis
from gold_kernel.models.ownership_movement import MovementType
from gold_kernel.services.base import BaseService
from gold_kernel.services.movement_recorder import MovementRecorder

logger = get_logger("services.lot_writer")


@dataclass(frozen=True, slots=True)
class ReleasedShare:
    """Balances leaving a lot when part of its measure is taken."""

    weight: Decimal
    quantity: Decimal
    cost: Decimal
    paid: Decimal

    @property
    def owed(self) -> Decimal:
        return self.cost - self.paid


def released_share(lot: OwnershipLot, take: Decimal) -> ReleasedShare:
    """Share of weight, quantity, cost and paid released by taking ``take``."""
    measure = lot.measure
    if take == measure:
        return ReleasedShare(
            weight=lot.total_weight,
            quantity=lot.total_quantity,
            cost=lot.total_cost,
            paid=lot.amount_paid,
        )

    remaining = measure - take
    if lot.unit_basis == UnitBasis.UNIT:
        quantity = quantize_storage(take)
        weight = quantize_storage(lot.total_weight * take / measure)
    else:
        weight = quantize_storage(take)
        quantity = quantize_storage(lot.total_quantity * take / measure)

    cost = quantize_storage(lot.total_cost * take / measure)
    cost_after = lot.total_cost - cost
    paid_after = min(quantize_storage(lot.amount_paid * remaining / measure), cost_after)
    return ReleasedShare(
        weight=weight,
        quantity=quantity,
        cost=cost,
        paid=lot.amount_paid - paid_after,
    )


class LotWriter(BaseService):
    """
    Lot-level write helpers bound to one LedgerTransaction session.

    Contract:
        Callers hold the identity locks for every lot they pass in or
        create.  Nothing here commits.
    """

    @property
    def recorder(self) -> MovementRecorder:
        return MovementRecorder(self.session, self.clock)

    def get_or_create(
        self,
        identity: LotIdentity,
        *,
        actor: str,
        currency: str,
        lot_key: str = "",
        unit_basis: str | None = None,
        layer_date: datetime | None = None,
    ) -> OwnershipLot:
        """
        Return the lot for ``identity``/``lot_key``, creating it empty if absent.

        Postconditions: the returned lot is flushed (has an id) and row-locked
            on PostgreSQL.
        """
        identity_key = identity.identity_key(lot_key)
        basis = unit_basis or identity.item.default_unit_basis

        lot = self.find_for_update(identity_key)
        if lot is not None:
            if lot.currency != currency:
                raise InvalidMovementError(
                    str(lot.id), f"lot currency {lot.currency} != {currency}"
                )
            if lot.unit_basis != basis:
                raise InvalidMovementError(
                    str(lot.id), f"lot unit basis {lot.unit_basis} != {basis}"
                )
            return lot

        now = self.clock.now()
        lot = OwnershipLot(
            id=uuid4(),
            item_kind=identity.item.kind,
            item_id=identity.item.item_id,
            branch_id=identity.branch_id,
            supplier_id=identity.supplier_id,
            lot_key=lot_key,
            identity_key=identity_key,
            group_key=identity.group_key,
            unit_basis=basis,
            currency=currency,
            total_weight=ZERO,
            total_quantity=ZERO,
            total_cost=ZERO,
            unit_cost=ZERO,
            amount_paid=ZERO,
            amount_owed=ZERO,
            layer_date=layer_date or now,
            created_at=now,
            created_by=actor,
            movement_seq=0,
        )
        self.session.add(lot)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ConflictError(identity_key, "lot created concurrently") from exc

        logger.info(
            "ownership_lot_created",
            extra={
                "lot_id": str(lot.id),
                "identity_key": identity_key,
                "unit_basis": basis,
                "currency": currency,
                "created_by": actor,
            },
        )
        return lot

    def load_for_update(self, lot_id: UUID) -> OwnershipLot:
        lot = self.session.execute(
            select(OwnershipLot).where(OwnershipLot.id == lot_id).with_for_update()
        ).scalar_one_or_none()
        if lot is None:
            raise LotNotFoundError(str(lot_id))
        return lot

    def find_for_update(self, identity_key: str) -> OwnershipLot | None:
        return self.session.execute(
            select(OwnershipLot)
            .where(OwnershipLot.identity_key == identity_key)
            .with_for_update()
        ).scalar_one_or_none()

    def lock_active(
        self,
        item: ItemRef,
        branch_id: str,
        group_keys: Iterable[str],
        *,
        supplier_id: str | None = None,
        unit_basis: str | None = None,
    ) -> list[OwnershipLot]:
        """Active lots of ``item`` at ``branch_id`` within the held groups, row-locked."""
        stmt = (
            select(OwnershipLot)
            .where(
                OwnershipLot.item_kind == item.kind,
                OwnershipLot.item_id == item.item_id,
                OwnershipLot.branch_id == branch_id,
                OwnershipLot.group_key.in_(list(group_keys)),
                OwnershipLot.depleted_at.is_(None),
            )
            .order_by(OwnershipLot.id)
            .with_for_update()
        )
        if supplier_id is not None:
            stmt = stmt.where(OwnershipLot.supplier_id == supplier_id)
        if unit_basis is not None:
            stmt = stmt.where(OwnershipLot.unit_basis == unit_basis)
        return [lot for lot in self.session.execute(stmt).scalars() if not lot.is_depleted]

    def deplete(
        self,
        lot: OwnershipLot,
        take: Decimal,
        movement_type: MovementType,
        *,
        reference: str,
        actor: str,
        correlation_id: UUID | None = None,
        notes: str | None = None,
    ) -> tuple[ReleasedShare, MovementRecord]:
        """Take ``take`` of the lot's measure out, with its cost and paid share."""
        if take <= 0 or take > lot.measure:
            raise InvalidMovementError(
                str(lot.id), f"cannot take {take} from measure {lot.measure}"
            )
        share = released_share(lot, take)
        movement = self.recorder.record(
            lot.id,
            movement_type,
            reference=reference,
            actor=actor,
            weight_change=-share.weight,
            quantity_change=-share.quantity,
            cost_change=-share.cost,
            paid_change=-share.paid,
            correlation_id=correlation_id,
            notes=notes,
        )
        return share, movement
