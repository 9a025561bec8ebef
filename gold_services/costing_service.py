"""
gold_services.costing_service -- CostingEngine: cost quotes over the live ledger.

Responsibility:
    Read an item's active lots at a branch and price them with the pure
    CostingCalculator: weighted average, FIFO, LIFO, a three-way analysis,
    and the weighted average of an explicit set of lots.

Architecture position:
    Services -- stateful read orchestration over gold_engines.costing and
    OwnershipSelector.  Never writes and never takes identity locks.

Invariants enforced:
    - Only lots in the item's own unit basis are priced (grams for raw
      gold, units for products).
    - A FIFO/LIFO quote is refused, never truncated, when the lots cannot
      cover the request.

Failure modes:
    - InsufficientOwnershipError when requested exceeds available.
    - InvalidMovementError for a non-positive request.
    - LotNotFoundError from ``weighted_average_for_lots`` for unknown ids.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from gold_engines.costing import CostAnalysis, CostingCalculator, CostQuote, WeightedAverage
from gold_kernel.db.types import ZERO, quantize_storage, to_decimal
from gold_kernel.domain.dtos import LotSnapshot
from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import (
    InsufficientOwnershipError,
    InvalidMovementError,
    MixedUnitBasisError,
)
from gold_kernel.logging_config import get_logger
from gold_kernel.selectors.ownership_selector import OwnershipSelector
from gold_kernel.services.lock_scope import LedgerTransaction

logger = get_logger("services.costing")


class CostingEngine:
    """
    Cost-basis queries for one ledger.

    Contract:
        Every method reads a consistent snapshot in one read session and
        returns frozen quotes rounded for reporting.
    """

    def __init__(self, transaction: LedgerTransaction, calculator: CostingCalculator | None = None):
        self.transaction = transaction
        self.calculator = calculator or CostingCalculator()

    def weighted_average_cost(self, item: ItemRef, branch_id: str) -> WeightedAverage:
        lots = self._lots(item, branch_id)
        result = self.calculator.weighted_average(lots)
        logger.info(
            "weighted_average_cost_computed",
            extra={
                "item_ref": item.key,
                "branch_id": branch_id,
                "lot_count": result.lot_count,
                "unit_cost": str(result.unit_cost),
            },
        )
        return result

    def fifo_cost(self, item: ItemRef, branch_id: str, requested: Decimal | int | str) -> CostQuote:
        amount = self._requested(item, requested)
        lots = self._covering_lots(item, branch_id, amount)
        return self.calculator.fifo_quote(lots, amount)

    def lifo_cost(self, item: ItemRef, branch_id: str, requested: Decimal | int | str) -> CostQuote:
        amount = self._requested(item, requested)
        lots = self._covering_lots(item, branch_id, amount)
        return self.calculator.lifo_quote(lots, amount)

    def cost_analysis(
        self, item: ItemRef, branch_id: str, requested: Decimal | int | str
    ) -> CostAnalysis:
        amount = self._requested(item, requested)
        lots = self._covering_lots(item, branch_id, amount)
        analysis = self.calculator.analyze(lots, amount)
        logger.info(
            "cost_analysis_completed",
            extra={
                "item_ref": item.key,
                "branch_id": branch_id,
                "requested": str(amount),
                "recommended": analysis.recommended.value,
            },
        )
        return analysis

    def weighted_average_for_lots(self, lot_ids: Iterable[UUID]) -> WeightedAverage:
        """
        Weighted average over exactly the given lots.

        Raises:
            MixedUnitBasisError: if the lots do not share one unit basis.
        """
        with self.transaction.read_session() as session:
            selector = OwnershipSelector(session)
            lots = [selector.get_lot(lot_id) for lot_id in lot_ids]
        bases = sorted({lot.unit_basis for lot in lots})
        if len(bases) > 1:
            raise MixedUnitBasisError([str(lot.lot_id) for lot in lots], bases)
        return self.calculator.weighted_average(lots)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lots(self, item: ItemRef, branch_id: str) -> list[LotSnapshot]:
        basis = item.default_unit_basis
        with self.transaction.read_session() as session:
            lots = OwnershipSelector(session).active_lots(item, branch_id)
        return [lot for lot in lots if lot.unit_basis == basis]

    def _covering_lots(self, item: ItemRef, branch_id: str, requested: Decimal) -> list[LotSnapshot]:
        lots = self._lots(item, branch_id)
        available = sum((lot.measure for lot in lots), ZERO)
        if available < requested:
            logger.warning(
                "cost_quote_insufficient_ownership",
                extra={
                    "item_ref": item.key,
                    "branch_id": branch_id,
                    "available": str(available),
                    "requested": str(requested),
                },
            )
            raise InsufficientOwnershipError(item.key, branch_id, available, requested)
        return lots

    @staticmethod
    def _requested(item: ItemRef, requested: Decimal | int | str) -> Decimal:
        amount = quantize_storage(to_decimal(requested))
        if amount <= 0:
            raise InvalidMovementError(item.key, f"requested amount must be positive, got {amount}")
        return amount
