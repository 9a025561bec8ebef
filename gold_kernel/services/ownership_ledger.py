"""
OwnershipLedger -- receipts, buy-ins, sales, payments, waivers and adjustments.

Responsibility:
    The command surface over ownership lots.  Each operation takes the
    identity locks it needs, validates against freshly read balances, and
    writes its movements through MovementRecorder in one LedgerTransaction.

Architecture position:
    Kernel > Services -- imperative shell.  Consumed by gold_services (API,
    conversion, consolidation) and by tests.  Reads go through
    OwnershipSelector; writes go through LotWriter / MovementRecorder.

Invariants enforced:
    - Atomicity: lock -> read -> validate -> write movements -> write lots ->
      commit, or nothing.
    - Weighted average on receipt: a lot's unit cost after a receipt is
      (old measure * old cost + new measure * new cost) / total measure.
    - No double spend: sale candidates are re-read under their identity
      locks, so two sales of the last gram cannot both succeed.
    - Payments never exceed owed; waivers never exceed the target's owed.
    - Credit: receipts from a supplier consult the credit policy before
      anything is written, holding the supplier lock key as well as the
      identity lock, so concurrent receipts for different items of one
      supplier are checked one after the other.

Failure modes:
    - InsufficientOwnershipError, PaymentExceedsOwedError,
      IncompatibleWaiverError, CreditLimitExceededError,
      InvalidMovementError, LotNotFoundError -- all before any write.
    - ConflictError (retryable) on lock timeout or stale lot version.

Audit relevance:
    Every operation logs ``<operation>_started`` and
    ``<operation>_completed`` with lot ids, references and amounts.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from gold_kernel.db.types import ZERO, quantize_storage, to_decimal
from gold_kernel.domain.clock import Clock, SystemClock
from gold_kernel.domain.dtos import (
    LotDepletion,
    LotSnapshot,
    MovementRecord,
    MovementResult,
    SaleResult,
    WaiverResult,
)
from gold_kernel.domain.lot_selection import (
    FifoSelection,
    LotSelectionStrategy,
    SpecificSupplierSelection,
    plan_depletion,
)
from gold_kernel.domain.values import ItemRef, LotIdentity, supplier_lock_key
from gold_kernel.exceptions import (
    IncompatibleWaiverError,
    InsufficientOwnershipError,
    InvalidMovementError,
    PaymentExceedsOwedError,
)
from gold_kernel.logging_config import LogContext, get_logger
from gold_kernel.models.correlation import WaiverRecord
from gold_kernel.models.ownership_lot import UnitBasis
from gold_kernel.models.ownership_movement import MovementType
from gold_kernel.selectors.ownership_selector import (
    OwnershipSelector,
    ReplayResult,
    WaiverHistoryEntry,
)
from gold_kernel.services.lock_scope import LedgerTransaction
from gold_kernel.services.lot_writer import LotWriter, released_share

logger = get_logger("services.ownership_ledger")


class ReceiptCreditPolicy(Protocol):
    """
    Consulted before a supplier receipt is written.

    Returns non-blocking warnings, or raises CreditLimitExceededError.
    """

    def check_receipt(
        self, session: Session, supplier_id: str, additional_owed: Decimal
    ) -> tuple[str, ...]:
        ...


class OwnershipLedger:
    """
    Ledger commands over ownership lots.

    Contract:
        Every public method is one atomic LedgerTransaction and returns
        frozen DTOs.  ``actor`` is required on every mutation.

    Guarantees:
        - Depleted lots are never deleted; a later receipt on the same
          identity and lot key re-activates the same lot.
        - Lots of different identities never block each other.

    Non-goals:
        - Retail pricing, making charges, tax.
        - Retrying conflicts (see gold_kernel.services.retry).
    """

    def __init__(
        self,
        transaction: LedgerTransaction,
        *,
        clock: Clock | None = None,
        default_currency: str = "EGP",
        credit_policy: ReceiptCreditPolicy | None = None,
        default_strategy: LotSelectionStrategy | None = None,
    ):
        self.transaction = transaction
        self.clock = clock or SystemClock()
        self.default_currency = default_currency
        self.credit_policy = credit_policy
        self.default_strategy = default_strategy or FifoSelection()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_lot(self, lot_id: UUID) -> LotSnapshot:
        with self.transaction.read_session() as session:
            return OwnershipSelector(session).get_lot(lot_id)

    def active_lots(
        self,
        item: ItemRef | None = None,
        branch_id: str | None = None,
        supplier_id: str | None = None,
    ) -> list[LotSnapshot]:
        with self.transaction.read_session() as session:
            return OwnershipSelector(session).active_lots(item, branch_id, supplier_id)

    def movement_history(self, lot_id: UUID) -> list[MovementRecord]:
        with self.transaction.read_session() as session:
            return OwnershipSelector(session).movements(lot_id)

    def replay(self, lot_id: UUID) -> ReplayResult:
        """Rebuild a lot from its movements; ``matches`` is the conservation check."""
        with self.transaction.read_session() as session:
            return OwnershipSelector(session).replay(lot_id)

    def waiver_history(self, branch_id: str | None = None) -> list[WaiverHistoryEntry]:
        with self.transaction.read_session() as session:
            return OwnershipSelector(session).waiver_history(branch_id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def get_or_create_lot(
        self,
        item: ItemRef,
        branch_id: str,
        supplier_id: str | None,
        actor: str,
        *,
        lot_key: str = "",
        currency: str | None = None,
        unit_basis: str | None = None,
    ) -> LotSnapshot:
        """Idempotent: the same identity and lot key always yield the same lot."""
        identity = LotIdentity(item=item, branch_id=branch_id, supplier_id=supplier_id)
        with self.transaction.scope([identity.group_key], "get_or_create_lot") as session:
            lot = self._writer(session).get_or_create(
                identity,
                actor=actor,
                currency=currency or self.default_currency,
                lot_key=lot_key,
                unit_basis=unit_basis,
            )
            return LotSnapshot.from_model(lot)

    def apply_receipt(
        self,
        item: ItemRef,
        branch_id: str,
        supplier_id: str | None,
        *,
        weight: Decimal | int | str = ZERO,
        quantity: Decimal | int | str = ZERO,
        unit_cost: Decimal | int | str,
        reference: str,
        actor: str,
        lot_key: str = "",
        currency: str | None = None,
    ) -> MovementResult:
        """
        Receive stock from a supplier (or, with supplier_id None, unpaid
        merchant stock).

        The cost added is measure * unit_cost, where measure is weight for
        raw gold and quantity for products.
        """
        return self._receive(
            item,
            branch_id,
            supplier_id,
            weight=weight,
            quantity=quantity,
            unit_cost=unit_cost,
            reference=reference,
            actor=actor,
            lot_key=lot_key,
            currency=currency,
            fully_paid=False,
        )

    def apply_customer_buy_in(
        self,
        item: ItemRef,
        branch_id: str,
        *,
        weight: Decimal | int | str = ZERO,
        quantity: Decimal | int | str = ZERO,
        unit_cost: Decimal | int | str,
        reference: str,
        actor: str,
        lot_key: str = "",
        currency: str | None = None,
    ) -> MovementResult:
        """Gold bought from a walk-in customer: merchant-owned and paid on the spot."""
        return self._receive(
            item,
            branch_id,
            None,
            weight=weight,
            quantity=quantity,
            unit_cost=unit_cost,
            reference=reference,
            actor=actor,
            lot_key=lot_key,
            currency=currency,
            fully_paid=True,
        )

    def apply_sale(
        self,
        item: ItemRef,
        branch_id: str,
        amount: Decimal | int | str,
        *,
        reference: str,
        actor: str,
        supplier_id: str | None = None,
        strategy: LotSelectionStrategy | None = None,
    ) -> SaleResult:
        """
        Deplete ``amount`` (grams for raw gold, units for products) from the
        item's active lots at the branch.

        Lots are drawn in the order of ``strategy`` (default FIFO).  Passing
        ``supplier_id`` restricts the sale to that supplier's lots.
        """
        requested = quantize_storage(to_decimal(amount))
        if requested <= 0:
            raise InvalidMovementError(item.key, f"sale amount must be positive, got {requested}")

        chosen = strategy or self.default_strategy
        if supplier_id is not None:
            chosen = SpecificSupplierSelection(supplier_id, then=chosen)
        basis = item.default_unit_basis

        with self.transaction.read_session() as session:
            candidates = OwnershipSelector(session).active_lots(item, branch_id)
        group_keys = {
            lot.identity.group_key
            for lot in candidates
            if lot.unit_basis == basis and (supplier_id is None or lot.supplier_id == supplier_id)
        }
        if not group_keys:
            self._reject_insufficient(item, branch_id, ZERO, requested)

        logger.info(
            "sale_started",
            extra={
                "item_ref": item.key,
                "branch_id": branch_id,
                "requested": str(requested),
                "strategy": chosen.name,
                "reference_number": reference,
            },
        )

        with LogContext.bind(reference=reference, actor_id=actor):
            with self.transaction.scope(group_keys, "sale") as session:
                writer = self._writer(session)
                locked = writer.lock_active(
                    item, branch_id, group_keys, supplier_id=supplier_id, unit_basis=basis
                )
                by_id = {lot.id: lot for lot in locked}
                ordered = chosen.order([LotSnapshot.from_model(lot) for lot in locked])
                plan = plan_depletion(ordered, requested)
                if not plan.is_satisfied:
                    self._reject_insufficient(item, branch_id, plan.available, requested)

                depletions = []
                for planned in plan.takes:
                    lot = by_id[planned.lot.lot_id]
                    share, movement = writer.deplete(
                        lot,
                        planned.take,
                        MovementType.SALE,
                        reference=reference,
                        actor=actor,
                    )
                    depletions.append(
                        LotDepletion(
                            lot_id=lot.id,
                            supplier_id=lot.supplier_id,
                            weight=share.weight,
                            quantity=share.quantity,
                            cost_released=share.cost,
                            paid_released=share.paid,
                            owed_released=share.owed,
                            movement=movement,
                        )
                    )

        result = SaleResult(
            item=item,
            branch_id=branch_id,
            requested=requested,
            depletions=tuple(depletions),
        )
        logger.info(
            "sale_completed",
            extra={
                "item_ref": item.key,
                "branch_id": branch_id,
                "lots_touched": len(depletions),
                "cost_of_sale": str(result.cost_of_sale),
                "unpaid_released": str(result.unpaid_released),
                "reference_number": reference,
            },
        )
        return result

    def apply_payment(
        self,
        lot_id: UUID,
        amount: Decimal | int | str,
        *,
        reference: str,
        actor: str,
    ) -> MovementResult:
        """Pay down a lot's owed balance."""
        paid = quantize_storage(to_decimal(amount))
        if paid <= 0:
            raise InvalidMovementError(str(lot_id), f"payment must be positive, got {paid}")

        snapshot = self.get_lot(lot_id)
        with LogContext.bind(lot_id=str(lot_id), reference=reference, actor_id=actor):
            logger.info(
                "payment_started",
                extra={"amount": str(paid), "owed_before": str(snapshot.amount_owed)},
            )
            with self.transaction.scope([snapshot.identity.group_key], "payment") as session:
                writer = self._writer(session)
                lot = writer.load_for_update(lot_id)
                if paid > lot.amount_owed:
                    logger.warning(
                        "payment_rejected",
                        extra={"amount": str(paid), "owed": str(lot.amount_owed)},
                    )
                    raise PaymentExceedsOwedError(str(lot_id), lot.amount_owed, paid)
                movement = writer.recorder.record(
                    lot.id,
                    MovementType.PAYMENT,
                    reference=reference,
                    actor=actor,
                    paid_change=paid,
                )
                result = MovementResult(lot=LotSnapshot.from_model(lot), movement=movement)
            logger.info(
                "payment_completed",
                extra={"amount": str(paid), "owed_after": str(result.lot.amount_owed)},
            )
        return result

    def apply_waiver(
        self,
        source_lot_id: UUID,
        target_lot_id: UUID,
        weight: Decimal | int | str,
        *,
        reference: str,
        actor: str,
    ) -> WaiverResult:
        """
        Give merchant-owned gold to a supplier in settlement of what we owe.

        ``weight`` is taken from the source lot's measure (grams for raw
        gold, units for products).  The target's owed drops by
        weight * target unit cost; its stock is unchanged.
        """
        moved = quantize_storage(to_decimal(weight))
        if moved <= 0:
            raise InvalidMovementError(str(source_lot_id), f"waiver weight must be positive, got {moved}")

        source_snap = self.get_lot(source_lot_id)
        target_snap = self.get_lot(target_lot_id)
        self._check_waiver_pair(source_snap, target_snap)

        keys = [source_snap.identity.group_key, target_snap.identity.group_key]
        waiver_id = uuid4()
        with LogContext.bind(correlation_id=str(waiver_id), reference=reference, actor_id=actor):
            logger.info(
                "waiver_started",
                extra={
                    "source_lot_id": str(source_lot_id),
                    "target_lot_id": str(target_lot_id),
                    "weight": str(moved),
                },
            )
            with self.transaction.scope(keys, "waiver") as session:
                writer = self._writer(session)
                source = writer.load_for_update(source_lot_id)
                target = writer.load_for_update(target_lot_id)

                if moved > source.measure:
                    raise InsufficientOwnershipError(
                        f"{source.item_kind}:{source.item_id}", source.branch_id, source.measure, moved
                    )
                value = quantize_storage(moved * target.unit_cost)
                if value > target.amount_owed:
                    raise PaymentExceedsOwedError(str(target.id), target.amount_owed, value)
                if value <= 0:
                    raise InvalidMovementError(str(target.id), "waiver value is zero")

                _, debit = writer.deplete(
                    source,
                    moved,
                    MovementType.WAIVER,
                    reference=reference,
                    actor=actor,
                    correlation_id=waiver_id,
                    notes=f"waived to lot {target.id}",
                )
                credit = writer.recorder.record(
                    target.id,
                    MovementType.WAIVER,
                    reference=reference,
                    actor=actor,
                    paid_change=value,
                    correlation_id=waiver_id,
                    notes=f"waived from lot {source.id}",
                )
                session.add(
                    WaiverRecord(
                        id=waiver_id,
                        source_lot_id=source.id,
                        target_lot_id=target.id,
                        weight=moved,
                        value_applied=value,
                        reference_number=reference,
                        created_by=actor,
                        created_at=self.clock.now(),
                    )
                )
                session.flush()
                result = WaiverResult(
                    waiver_id=waiver_id,
                    source_lot=LotSnapshot.from_model(source),
                    target_lot=LotSnapshot.from_model(target),
                    weight=moved,
                    value_applied=value,
                    debit=debit,
                    credit=credit,
                )
            logger.info(
                "waiver_completed",
                extra={"value_applied": str(value), "target_owed_after": str(result.target_lot.amount_owed)},
            )
        return result

    def apply_adjustment(
        self,
        lot_id: UUID,
        *,
        weight_change: Decimal | int | str = ZERO,
        quantity_change: Decimal | int | str = ZERO,
        reference: str,
        actor: str,
        notes: str | None = None,
        unit_cost: Decimal | int | str | None = None,
    ) -> MovementResult:
        """
        Stock-count correction.

        A decrease releases cost and paid proportionally, like a sale.  An
        increase adds cost at ``unit_cost`` (default: the lot's current unit
        cost); for merchant-owned lots the added cost is also marked paid.
        """
        d_weight = quantize_storage(to_decimal(weight_change))
        d_quantity = quantize_storage(to_decimal(quantity_change))
        if d_weight == 0 and d_quantity == 0:
            raise InvalidMovementError(str(lot_id), "adjustment changes nothing")

        snapshot = self.get_lot(lot_id)
        with LogContext.bind(lot_id=str(lot_id), reference=reference, actor_id=actor):
            with self.transaction.scope([snapshot.identity.group_key], "adjustment") as session:
                writer = self._writer(session)
                lot = writer.load_for_update(lot_id)
                measure_change = d_quantity if lot.unit_basis == UnitBasis.UNIT else d_weight

                if measure_change < 0:
                    take = -measure_change
                    if take > lot.measure:
                        raise InvalidMovementError(
                            str(lot.id), f"adjustment {measure_change} exceeds measure {lot.measure}"
                        )
                    share = released_share(lot, take)
                    cost_change, paid_change = -share.cost, -share.paid
                elif measure_change > 0:
                    rate = lot.unit_cost if unit_cost is None else to_decimal(unit_cost)
                    if rate < 0:
                        raise InvalidMovementError(str(lot.id), "unit cost must not be negative")
                    cost_change = quantize_storage(measure_change * rate)
                    paid_change = cost_change if lot.supplier_id is None else ZERO
                else:
                    cost_change = paid_change = ZERO

                movement = writer.recorder.record(
                    lot.id,
                    MovementType.ADJUSTMENT,
                    reference=reference,
                    actor=actor,
                    weight_change=d_weight,
                    quantity_change=d_quantity,
                    cost_change=cost_change,
                    paid_change=paid_change,
                    notes=notes,
                )
                result = MovementResult(lot=LotSnapshot.from_model(lot), movement=movement)
            logger.info(
                "adjustment_completed",
                extra={
                    "weight_change": str(d_weight),
                    "quantity_change": str(d_quantity),
                    "cost_change": str(movement.cost_change),
                },
            )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _writer(self, session: Session) -> LotWriter:
        return LotWriter(session, self.clock)

    def _receive(
        self,
        item: ItemRef,
        branch_id: str,
        supplier_id: str | None,
        *,
        weight: Decimal | int | str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        reference: str,
        actor: str,
        lot_key: str,
        currency: str | None,
        fully_paid: bool,
    ) -> MovementResult:
        d_weight = quantize_storage(to_decimal(weight))
        d_quantity = quantize_storage(to_decimal(quantity))
        rate = to_decimal(unit_cost)
        identity = LotIdentity(item=item, branch_id=branch_id, supplier_id=supplier_id)
        basis = item.default_unit_basis
        measure = d_quantity if basis == UnitBasis.UNIT else d_weight

        if d_weight < 0 or d_quantity < 0:
            raise InvalidMovementError(identity.identity_key(lot_key), "receipt amounts must not be negative")
        if measure <= 0:
            raise InvalidMovementError(
                identity.identity_key(lot_key),
                f"receipt {'quantity' if basis == UnitBasis.UNIT else 'weight'} must be positive",
            )
        if rate < 0:
            raise InvalidMovementError(identity.identity_key(lot_key), "unit cost must not be negative")

        cost = quantize_storage(measure * rate)
        operation = "customer_buy_in" if fully_paid else "receipt"

        checks_credit = supplier_id is not None and self.credit_policy is not None and not fully_paid
        keys = [identity.group_key]
        if checks_credit:
            # Receipts of one supplier share one credit balance.
            keys.append(supplier_lock_key(supplier_id))

        with LogContext.bind(reference=reference, actor_id=actor):
            logger.info(
                f"{operation}_started",
                extra={
                    "identity_key": identity.identity_key(lot_key),
                    "weight": str(d_weight),
                    "quantity": str(d_quantity),
                    "unit_cost": str(rate),
                    "cost": str(cost),
                },
            )
            with self.transaction.scope(keys, operation) as session:
                warnings: tuple[str, ...] = ()
                if checks_credit:
                    warnings = self.credit_policy.check_receipt(session, supplier_id, cost)

                writer = self._writer(session)
                lot = writer.get_or_create(
                    identity,
                    actor=actor,
                    currency=currency or self.default_currency,
                    lot_key=lot_key,
                    unit_basis=basis,
                )
                movement = writer.recorder.record(
                    lot.id,
                    MovementType.RECEIPT,
                    reference=reference,
                    actor=actor,
                    weight_change=d_weight,
                    quantity_change=d_quantity,
                    cost_change=cost,
                    paid_change=cost if fully_paid else ZERO,
                )
                result = MovementResult(
                    lot=LotSnapshot.from_model(lot), movement=movement, warnings=warnings
                )
            logger.info(
                f"{operation}_completed",
                extra={
                    "lot_id": str(result.lot.lot_id),
                    "unit_cost_after": str(result.lot.unit_cost),
                    "amount_owed_after": str(result.lot.amount_owed),
                    "warning_count": len(warnings),
                },
            )
        return result

    @staticmethod
    def _check_waiver_pair(source: LotSnapshot, target: LotSnapshot) -> None:
        def reject(reason: str) -> None:
            raise IncompatibleWaiverError(str(source.lot_id), str(target.lot_id), reason)

        if source.lot_id == target.lot_id:
            reject("source and target are the same lot")
        if not source.is_merchant_owned:
            reject("source lot must be merchant-owned")
        if target.is_merchant_owned:
            reject("target lot must belong to a supplier")
        if source.item != target.item:
            reject(f"item mismatch: {source.item.key} vs {target.item.key}")
        if source.branch_id != target.branch_id:
            reject(f"branch mismatch: {source.branch_id} vs {target.branch_id}")
        if source.currency != target.currency:
            reject(f"currency mismatch: {source.currency} vs {target.currency}")
        if source.unit_basis != target.unit_basis:
            reject(f"unit basis mismatch: {source.unit_basis} vs {target.unit_basis}")

    @staticmethod
    def _reject_insufficient(
        item: ItemRef, branch_id: str, available: Decimal, requested: Decimal
    ) -> None:
        logger.warning(
            "sale_rejected_insufficient_ownership",
            extra={
                "item_ref": item.key,
                "branch_id": branch_id,
                "available": str(available),
                "requested": str(requested),
            },
        )
        raise InsufficientOwnershipError(item.key, branch_id, available, requested)
