"""
MovementRecorder -- the only writer of lot balances.

Responsibility:
    Append one OwnershipMovement and apply its deltas to the lot, inside the
    caller's LedgerTransaction.  Computes the after-balances from the lot's
    state at the moment of recording.

Architecture position:
    Kernel > Services -- imperative shell.  Called by OwnershipLedger,
    KaratConversionService and ConsolidationService; never by callers
    outside the kernel and services packages.

Invariants enforced:
    - Non-negativity: total_weight, total_quantity, total_cost and
      amount_paid stay >= 0; amount_paid stays <= total_cost.
    - Owed identity: amount_owed == total_cost - amount_paid, and the
      movement's amount_change == cost_change - paid_change.
    - Exact replay: deltas are quantized to storage precision BEFORE the
      balances are derived, so summing the stored deltas reproduces the
      stored balances digit for digit.
    - No stock without cost and no cost without stock: a lot whose measure
      is zero carries no cost.
    - Per-lot ordering: sequence = lot.movement_seq + 1.

Failure modes:
    - LotNotFoundError if the lot id is unknown in this session.
    - InvalidMovementError for an empty movement or any balance violation.
      Nothing is written in either case.

Audit relevance:
    Logs ``movement_recorded`` with lot id, type, deltas and balances.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from gold_kernel.db.types import ZERO, quantize_storage, to_decimal
from gold_kernel.domain.clock import Clock
from gold_kernel.domain.dtos import MovementRecord
from gold_kernel.exceptions import InvalidMovementError, LotNotFoundError
from gold_kernel.logging_config import get_logger
from gold_kernel.models.ownership_lot import OwnershipLot, UnitBasis
from gold_kernel.models.ownership_movement import MovementType, OwnershipMovement
from gold_kernel.services.base import BaseService

logger = get_logger("services.movement_recorder")


class MovementRecorder(BaseService):
    """
    Append-only movement writer.

    Contract:
        ``record`` either writes exactly one movement and the matching lot
        update (flushed, not committed) or raises without touching the
        session.

    Guarantees:
        - Returns a frozen MovementRecord of what was written.
        - unit_cost is recomputed as total_cost / measure after every
          movement (weighted average on receipts).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def record(
        self,
        lot_id: UUID,
        movement_type: MovementType,
        *,
        reference: str,
        actor: str,
        weight_change: Decimal | int | str = ZERO,
        quantity_change: Decimal | int | str = ZERO,
        cost_change: Decimal | int | str = ZERO,
        paid_change: Decimal | int | str = ZERO,
        amount_change: Decimal | int | str | None = None,
        correlation_id: UUID | None = None,
        notes: str | None = None,
    ) -> MovementRecord:
        """
        Record one movement against a lot.

        Args:
            lot_id: Target lot (must be loaded/lockable in this session).
            movement_type: Kind of movement.
            reference: Business reference (invoice, PO, payment slip).
            actor: Who performed it.
            weight_change: Signed grams.
            quantity_change: Signed units.
            cost_change: Signed change of the lot's cost basis.
            paid_change: Signed change of amount_paid.
            amount_change: Signed change of amount_owed.  Derived as
                cost_change - paid_change when omitted; rejected when given
                and inconsistent.
            correlation_id: Shared id of a multi-leg operation.
            notes: Free text.

        Raises:
            LotNotFoundError, InvalidMovementError.
        """
        lot = self.session.get(OwnershipLot, lot_id)
        if lot is None:
            raise LotNotFoundError(str(lot_id))

        d_weight = quantize_storage(to_decimal(weight_change))
        d_quantity = quantize_storage(to_decimal(quantity_change))
        d_cost = quantize_storage(to_decimal(cost_change))
        d_paid = quantize_storage(to_decimal(paid_change))
        d_owed = d_cost - d_paid

        if amount_change is not None:
            given = quantize_storage(to_decimal(amount_change))
            if given != d_owed:
                raise InvalidMovementError(
                    str(lot_id),
                    f"amount_change {given} != cost_change - paid_change {d_owed}",
                )

        if not any((d_weight, d_quantity, d_cost, d_paid)):
            raise InvalidMovementError(str(lot_id), "movement changes nothing")

        if not reference:
            raise InvalidMovementError(str(lot_id), "reference is required")
        if not actor:
            raise InvalidMovementError(str(lot_id), "actor is required")

        new_weight = lot.total_weight + d_weight
        new_quantity = lot.total_quantity + d_quantity
        new_cost = lot.total_cost + d_cost
        new_paid = lot.amount_paid + d_paid
        new_owed = new_cost - new_paid

        self._validate(lot, new_weight, new_quantity, new_cost, new_paid)

        now = self.clock.now()
        sequence = lot.movement_seq + 1

        movement = OwnershipMovement(
            id=uuid4(),
            lot_id=lot.id,
            sequence=sequence,
            movement_type=MovementType(movement_type).value,
            weight_change=d_weight,
            quantity_change=d_quantity,
            cost_change=d_cost,
            paid_change=d_paid,
            amount_change=d_owed,
            weight_balance_after=new_weight,
            quantity_balance_after=new_quantity,
            cost_balance_after=new_cost,
            amount_paid_after=new_paid,
            amount_owed_after=new_owed,
            reference_number=reference,
            created_by=actor,
            timestamp=now,
            correlation_id=correlation_id,
            notes=notes,
        )
        self.session.add(movement)

        lot.total_weight = new_weight
        lot.total_quantity = new_quantity
        lot.total_cost = new_cost
        lot.amount_paid = new_paid
        lot.amount_owed = new_owed
        lot.unit_cost = self._unit_cost(lot)
        lot.movement_seq = sequence
        lot.last_movement_at = now
        if lot.is_depleted:
            lot.depleted_at = now
        else:
            lot.depleted_at = None

        self.session.flush()

        logger.info(
            "movement_recorded",
            extra={
                "lot_id": str(lot.id),
                "movement_id": str(movement.id),
                "movement_type": movement.movement_type,
                "sequence": sequence,
                "weight_change": str(d_weight),
                "quantity_change": str(d_quantity),
                "cost_change": str(d_cost),
                "paid_change": str(d_paid),
                "weight_balance_after": str(new_weight),
                "amount_owed_after": str(new_owed),
                "reference_number": reference,
                "created_by": actor,
            },
        )

        return MovementRecord.from_model(movement)

    @staticmethod
    def _unit_cost(lot: OwnershipLot) -> Decimal:
        measure = lot.measure
        if measure == 0:
            return ZERO
        return quantize_storage(lot.total_cost / measure)

    @staticmethod
    def _validate(
        lot: OwnershipLot,
        new_weight: Decimal,
        new_quantity: Decimal,
        new_cost: Decimal,
        new_paid: Decimal,
    ) -> None:
        lot_id = str(lot.id)
        if new_weight < 0:
            raise InvalidMovementError(lot_id, f"weight would become {new_weight}")
        if new_quantity < 0:
            raise InvalidMovementError(lot_id, f"quantity would become {new_quantity}")
        if new_cost < 0:
            raise InvalidMovementError(lot_id, f"cost basis would become {new_cost}")
        if new_paid < 0:
            raise InvalidMovementError(lot_id, f"amount paid would become {new_paid}")
        if new_paid > new_cost:
            raise InvalidMovementError(
                lot_id, f"amount paid {new_paid} would exceed cost basis {new_cost}"
            )
        measure = new_quantity if lot.unit_basis == UnitBasis.UNIT else new_weight
        if measure == 0 and new_cost != 0:
            raise InvalidMovementError(
                lot_id, f"cost basis {new_cost} would remain on an empty lot"
            )
