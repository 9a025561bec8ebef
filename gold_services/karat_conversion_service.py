"""
gold_services.karat_conversion_service -- Move raw gold between karats.

Responsibility:
    Convert a weight of one karat held for a (branch, supplier) into the
    equivalent fine-gold weight of another karat: one debit movement per
    source lot drawn, one credit movement on the destination lot, one
    KaratConversion correlation record, all sharing ``conversion_id``.

Architecture position:
    Services -- orchestrates gold_engines.karat (math) with LotWriter and
    MovementRecorder (writes) inside one LedgerTransaction.

Invariants enforced:
    - Atomic: every debit and the credit commit together or not at all.
    - Identity balance: the weight is drawn from all active lots of the
      source (branch, supplier, karat), oldest layer first, so consolidated
      and lot-keyed stock converts like any other.
    - Fine gold conserved: to_weight = from_weight * purity(from) / purity(to).
    - Value conserved: the cost and paid share released by the debits are
      exactly what the credit adds, so amount_owed moves with the gold.
    - Both identities are locked (sorted) before any lot is read.

Failure modes:
    - InvalidConversionWeightError, UnknownKaratError -- before any lock.
    - InsufficientOwnershipError -- the source identity lacks the weight.
    - ConflictError -- lock timeout or stale lot.

Audit relevance:
    ``karat_conversion_completed`` logs the lot ids, rate and the value
    carried.  The KaratConversion row is the permanent record.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping
from uuid import uuid4

from gold_engines.karat import KaratCalculator, KaratQuote
from gold_kernel.db.types import ZERO, quantize_storage, to_decimal
from gold_kernel.domain.clock import Clock, SystemClock
from gold_kernel.domain.dtos import ConversionResult, LotSnapshot
from gold_kernel.domain.lot_selection import FifoSelection, plan_depletion
from gold_kernel.domain.values import ItemRef, LotIdentity
from gold_kernel.exceptions import InsufficientOwnershipError
from gold_kernel.logging_config import LogContext, get_logger
from gold_kernel.models.correlation import KaratConversion
from gold_kernel.models.ownership_lot import UnitBasis
from gold_kernel.models.ownership_movement import MovementType
from gold_kernel.selectors.ownership_selector import ConversionHistoryEntry, OwnershipSelector
from gold_kernel.services.lock_scope import LedgerTransaction
from gold_kernel.services.lot_writer import LotWriter
from gold_services.collaborators import PurityTable

logger = get_logger("services.karat_conversion")


class KaratConversionService:
    """
    Karat conversions for raw gold.

    Contract:
        ``supplier_id`` None converts merchant-owned gold.  The destination
        is the default lot of the target identity, created on first use.

    Non-goals:
        - Refining losses.  Conversions are lossless in fine gold.
    """

    def __init__(
        self,
        transaction: LedgerTransaction,
        purity_table: PurityTable | Mapping[str, Decimal],
        *,
        clock: Clock | None = None,
    ):
        self.transaction = transaction
        purities = purity_table if isinstance(purity_table, Mapping) else purity_table.purities()
        self.calculator = KaratCalculator(purities)
        self.clock = clock or SystemClock()

    def quote(self, from_karat: str, to_karat: str, from_weight: Decimal | int | str) -> KaratQuote:
        """Read-only preview of a conversion."""
        return self.calculator.quote(
            from_karat, to_karat, quantize_storage(to_decimal(from_weight))
        )

    def history(self, branch_id: str | None = None) -> list[ConversionHistoryEntry]:
        with self.transaction.read_session() as session:
            return OwnershipSelector(session).conversion_history(branch_id)

    def convert(
        self,
        branch_id: str,
        supplier_id: str | None,
        from_karat: str,
        to_karat: str,
        from_weight: Decimal | int | str,
        actor: str,
        reference: str | None = None,
        *,
        lot_key: str | None = None,
    ) -> ConversionResult:
        """
        Convert ``from_weight`` of the (branch, supplier, from_karat) balance.

        The weight is drawn oldest layer first across every active lot of the
        source identity; ``lot_key`` narrows the draw to that one lot.
        """
        quote = self.quote(from_karat, to_karat, from_weight)
        source_identity = LotIdentity(ItemRef.raw_gold(from_karat), branch_id, supplier_id)
        target_identity = LotIdentity(ItemRef.raw_gold(to_karat), branch_id, supplier_id)
        conversion_id = uuid4()
        reference = reference or f"KC-{conversion_id.hex[:12].upper()}"
        keys = [source_identity.group_key, target_identity.group_key]
        notes = f"{from_karat} -> {to_karat}"

        with LogContext.bind(correlation_id=str(conversion_id), reference=reference, actor_id=actor):
            logger.info(
                "karat_conversion_started",
                extra={
                    "branch_id": branch_id,
                    "supplier_id": supplier_id,
                    "from_karat": from_karat,
                    "to_karat": to_karat,
                    "from_weight": str(quote.from_weight),
                    "to_weight": str(quote.to_weight),
                },
            )
            with self.transaction.scope(keys, "karat_conversion") as session:
                writer = LotWriter(session, self.clock)
                locked = writer.lock_active(
                    source_identity.item,
                    branch_id,
                    [source_identity.group_key],
                    unit_basis=UnitBasis.GRAM,
                )
                if lot_key is not None:
                    locked = [lot for lot in locked if lot.lot_key == lot_key]
                by_id = {lot.id: lot for lot in locked}
                ordered = FifoSelection().order([LotSnapshot.from_model(lot) for lot in locked])
                plan = plan_depletion(ordered, quote.from_weight)
                if not plan.is_satisfied:
                    raise InsufficientOwnershipError(
                        source_identity.item.key, branch_id, plan.available, quote.from_weight
                    )

                target = writer.get_or_create(
                    target_identity,
                    actor=actor,
                    currency=by_id[plan.takes[0].lot.lot_id].currency,
                    unit_basis=UnitBasis.GRAM,
                )
                sources = []
                debits = []
                cost = paid = ZERO
                for planned in plan.takes:
                    lot = by_id[planned.lot.lot_id]
                    share, debit = writer.deplete(
                        lot,
                        planned.take,
                        MovementType.KARAT_CONVERSION_DEBIT,
                        reference=reference,
                        actor=actor,
                        correlation_id=conversion_id,
                        notes=notes,
                    )
                    sources.append(lot)
                    debits.append(debit)
                    cost += share.cost
                    paid += share.paid

                credit = writer.recorder.record(
                    target.id,
                    MovementType.KARAT_CONVERSION_CREDIT,
                    reference=reference,
                    actor=actor,
                    weight_change=quote.to_weight,
                    cost_change=cost,
                    paid_change=paid,
                    correlation_id=conversion_id,
                    notes=notes,
                )
                session.add(
                    KaratConversion(
                        id=conversion_id,
                        branch_id=branch_id,
                        supplier_id=supplier_id,
                        from_karat=from_karat,
                        to_karat=to_karat,
                        from_weight=quote.from_weight,
                        to_weight=quote.to_weight,
                        from_purity=quote.from_purity,
                        to_purity=quote.to_purity,
                        rate=quote.rate,
                        cost_transferred=cost,
                        paid_transferred=paid,
                        source_lot_id=sources[0].id,
                        source_lot_ids=[str(lot.id) for lot in sources],
                        target_lot_id=target.id,
                        reference_number=reference,
                        created_by=actor,
                        created_at=self.clock.now(),
                    )
                )
                session.flush()
                result = ConversionResult(
                    conversion_id=conversion_id,
                    from_karat=from_karat,
                    to_karat=to_karat,
                    from_weight=quote.from_weight,
                    to_weight=quote.to_weight,
                    rate=quote.rate,
                    cost_transferred=cost,
                    paid_transferred=paid,
                    source_lots=tuple(LotSnapshot.from_model(lot) for lot in sources),
                    target_lot=LotSnapshot.from_model(target),
                    debits=tuple(debits),
                    credit=credit,
                )
            logger.info(
                "karat_conversion_completed",
                extra={
                    "source_lot_ids": [str(lot.lot_id) for lot in result.source_lots],
                    "target_lot_id": str(result.target_lot.lot_id),
                    "rate": str(result.rate),
                    "cost_transferred": str(result.cost_transferred),
                    "paid_transferred": str(result.paid_transferred),
                },
            )
        return result
