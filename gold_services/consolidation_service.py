"""
gold_services.consolidation_service -- Merge an identity's lots into one.

Responsibility:
    Replace two or more active lots of one (item, branch, supplier)
    identity with a single lot carrying their summed weight, quantity,
    cost and paid amount, at the weighted-average unit cost.  Also finds
    where consolidation is possible and consolidates a whole supplier.

Architecture position:
    Services -- orchestrates LotWriter / MovementRecorder inside one
    LedgerTransaction per consolidated identity.

Invariants enforced:
    - Conservation: target totals equal the sum of the sources exactly;
      every source is debited to zero by a Consolidation movement and the
      target receives one Consolidation credit.
    - Homogeneity: sources share currency and unit basis.
    - Ordering: the target's layer_date is the earliest source layer_date,
      so FIFO still sees the consolidated stock as the oldest layer.
    - Sources are never deleted; they remain as depleted lots.

Failure modes:
    - InvalidConsolidationInputError -- fewer than two active lots, or
      mixed currency or unit basis.
    - ConflictError -- lock timeout or stale lot.

Audit relevance:
    The ConsolidationBatch row and every movement carry ``batch_id``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from gold_kernel.db.types import ZERO, quantize_storage
from gold_kernel.domain.clock import Clock, SystemClock
from gold_kernel.domain.dtos import ConsolidationResult, LotSnapshot
from gold_kernel.domain.values import ItemRef, LotIdentity
from gold_kernel.exceptions import InvalidConsolidationInputError
from gold_kernel.logging_config import LogContext, get_logger
from gold_kernel.models.correlation import ConsolidationBatch
from gold_kernel.models.ownership_movement import MovementType
from gold_kernel.selectors.ownership_selector import BatchSummary, OwnershipSelector
from gold_kernel.services.lock_scope import LedgerTransaction
from gold_kernel.services.lot_writer import LotWriter

logger = get_logger("services.consolidation")

CONSOLIDATED_LOT_PREFIX = "consolidated:"


@dataclass(frozen=True, slots=True)
class ConsolidationOpportunity:
    """An identity with two or more active lots."""

    item: ItemRef
    branch_id: str
    supplier_id: str | None
    lot_count: int
    total_weight: Decimal
    total_quantity: Decimal
    total_cost: Decimal
    total_owed: Decimal


class ConsolidationService:
    """
    Lot consolidation.

    Contract:
        ``supplier_id`` None consolidates merchant-owned lots.
    """

    def __init__(self, transaction: LedgerTransaction, *, clock: Clock | None = None):
        self.transaction = transaction
        self.clock = clock or SystemClock()

    def consolidate(
        self,
        item: ItemRef,
        supplier_id: str | None,
        branch_id: str,
        actor: str,
        *,
        reference: str | None = None,
    ) -> ConsolidationResult:
        identity = LotIdentity(item=item, branch_id=branch_id, supplier_id=supplier_id)
        batch_id = uuid4()
        reference = reference or f"CONS-{batch_id.hex[:12].upper()}"

        with LogContext.bind(correlation_id=str(batch_id), reference=reference, actor_id=actor):
            logger.info(
                "consolidation_started",
                extra={"identity": identity.group_key},
            )
            with self.transaction.scope([identity.group_key], "consolidation") as session:
                writer = LotWriter(session, self.clock)
                sources = [
                    lot
                    for lot in writer.lock_active(item, branch_id, [identity.group_key])
                    if lot.measure > 0
                ]
                self._check_sources(item, sources)
                sources.sort(key=lambda lot: (lot.layer_date, lot.created_at, str(lot.id)))

                target = writer.get_or_create(
                    identity,
                    actor=actor,
                    currency=sources[0].currency,
                    lot_key=f"{CONSOLIDATED_LOT_PREFIX}{batch_id}",
                    unit_basis=sources[0].unit_basis,
                    layer_date=sources[0].layer_date,
                )

                movements = []
                weight = quantity = cost = paid = ZERO
                for lot in sources:
                    share, movement = writer.deplete(
                        lot,
                        lot.measure,
                        MovementType.CONSOLIDATION,
                        reference=reference,
                        actor=actor,
                        correlation_id=batch_id,
                        notes=f"consolidated into lot {target.id}",
                    )
                    movements.append(movement)
                    weight += share.weight
                    quantity += share.quantity
                    cost += share.cost
                    paid += share.paid

                credit = writer.recorder.record(
                    target.id,
                    MovementType.CONSOLIDATION,
                    reference=reference,
                    actor=actor,
                    weight_change=weight,
                    quantity_change=quantity,
                    cost_change=cost,
                    paid_change=paid,
                    correlation_id=batch_id,
                    notes=f"consolidated from {len(sources)} lots",
                )
                movements.append(credit)

                average = quantize_storage(cost / target.measure)
                session.add(
                    ConsolidationBatch(
                        id=batch_id,
                        item_kind=item.kind,
                        item_id=item.item_id,
                        branch_id=branch_id,
                        supplier_id=supplier_id,
                        source_lot_ids=[str(lot.id) for lot in sources],
                        target_lot_id=target.id,
                        total_weight=weight,
                        total_quantity=quantity,
                        total_cost=cost,
                        total_paid=paid,
                        total_owed=cost - paid,
                        weighted_average_cost=average,
                        created_by=actor,
                        created_at=self.clock.now(),
                    )
                )
                session.flush()
                result = ConsolidationResult(
                    batch_id=batch_id,
                    source_lot_ids=tuple(lot.id for lot in sources),
                    target_lot=LotSnapshot.from_model(target),
                    total_weight=weight,
                    total_quantity=quantity,
                    total_cost=cost,
                    total_paid=paid,
                    total_owed=cost - paid,
                    weighted_average_cost=average,
                    movements=tuple(movements),
                )
            logger.info(
                "consolidation_completed",
                extra={
                    "target_lot_id": str(result.target_lot.lot_id),
                    "source_count": len(result.source_lot_ids),
                    "total_weight": str(weight),
                    "total_cost": str(cost),
                    "weighted_average_cost": str(average),
                },
            )
        return result

    def consolidate_supplier(
        self, supplier_id: str | None, branch_id: str, actor: str
    ) -> list[ConsolidationResult]:
        """Consolidate every item the supplier has two or more active lots of."""
        results = []
        for opportunity in self.find_opportunities(branch_id):
            if opportunity.supplier_id != supplier_id:
                continue
            results.append(self.consolidate(opportunity.item, supplier_id, branch_id, actor))
        logger.info(
            "supplier_consolidation_completed",
            extra={
                "supplier_id": supplier_id,
                "branch_id": branch_id,
                "batch_count": len(results),
            },
        )
        return results

    def find_opportunities(self, branch_id: str | None = None) -> list[ConsolidationOpportunity]:
        with self.transaction.read_session() as session:
            lots = OwnershipSelector(session).active_lots(branch_id=branch_id)

        groups: dict[tuple, list[LotSnapshot]] = defaultdict(list)
        for lot in lots:
            if lot.measure > 0:
                groups[(lot.item, lot.branch_id, lot.supplier_id, lot.unit_basis, lot.currency)].append(lot)

        opportunities = [
            ConsolidationOpportunity(
                item=item,
                branch_id=branch,
                supplier_id=supplier,
                lot_count=len(group),
                total_weight=sum((lot.total_weight for lot in group), ZERO),
                total_quantity=sum((lot.total_quantity for lot in group), ZERO),
                total_cost=sum((lot.total_cost for lot in group), ZERO),
                total_owed=sum((lot.amount_owed for lot in group), ZERO),
            )
            for (item, branch, supplier, _, _), group in groups.items()
            if len(group) >= 2
        ]
        opportunities.sort(key=lambda o: (o.branch_id, o.item.key, o.supplier_id or ""))
        return opportunities

    def batches(self, branch_id: str | None = None) -> list[BatchSummary]:
        with self.transaction.read_session() as session:
            return OwnershipSelector(session).consolidation_batches(branch_id)

    @staticmethod
    def _check_sources(item: ItemRef, sources: list) -> None:
        if len(sources) < 2:
            raise InvalidConsolidationInputError(
                item.key, "at least two active lots are required", lot_count=len(sources)
            )
        if len({lot.currency for lot in sources}) > 1:
            raise InvalidConsolidationInputError(
                item.key, "lots have different currencies", lot_count=len(sources)
            )
        if len({lot.unit_basis for lot in sources}) > 1:
            raise InvalidConsolidationInputError(
                item.key, "lots have different unit bases", lot_count=len(sources)
            )
