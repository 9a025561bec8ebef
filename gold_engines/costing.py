"""
gold_engines.costing -- Weighted-average, FIFO and LIFO cost quotes over lots.

Responsibility:
    Compute what a requested weight (or quantity) of an item costs under
    each costing method, from a snapshot of its active lots, together with
    the per-lot cost sources behind the figure.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Takes LotSnapshots and
    returns frozen quotes.  The stateful CostingEngine that reads lots
    lives in gold_services.costing_service.

Invariants enforced:
    - FIFO and LIFO quotes consume lots in exactly the order a sale would
      (gold_kernel.domain.lot_selection), and a layer's cost share is the
      cost a sale of the same take would release.
    - Exact arithmetic until the end: sums and ratios are computed on
      unrounded Decimals; weights are rounded to ``weight_decimals`` and
      money to ``money_decimals`` (ROUND_HALF_UP) only in the quote.
    - Lots are never mixed across unit bases: the measure of a gram lot is
      its weight, of a unit lot its quantity.

Failure modes:
    - None raised here.  A quote whose lots cannot cover the request comes
      back with ``is_complete`` False and a ``shortfall``; the service
      turns that into InsufficientOwnershipError.

Audit relevance:
    Every quote carries its cost sources (lot id, supplier, layer date,
    measure taken, cost) so a reported cost of sale can be traced to the
    lots that produced it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Sequence
from uuid import UUID

from gold_engines.tracer import traced_engine
from gold_kernel.db.types import (
    MONEY_DECIMAL_PLACES,
    WEIGHT_DECIMAL_PLACES,
    ZERO,
    quantize_storage,
    round_money,
    round_weight,
)
from gold_kernel.domain.dtos import LotSnapshot
from gold_kernel.domain.lot_selection import (
    FifoSelection,
    LifoSelection,
    LotSelectionStrategy,
    plan_depletion,
)
from gold_kernel.logging_config import get_logger

logger = get_logger("engines.costing")

_HUNDRED = Decimal("100")


class CostMethod(str, Enum):
    """Cost valuation methods."""

    WEIGHTED_AVERAGE = "weighted_average"
    FIFO = "fifo"
    LIFO = "lifo"


@dataclass(frozen=True, slots=True)
class CostSource:
    """One lot's contribution to a cost figure."""

    lot_id: UUID
    supplier_id: str | None
    lot_key: str
    layer_date: datetime
    measure: Decimal
    cost: Decimal
    unit_cost: Decimal
    contribution_percentage: Decimal


@dataclass(frozen=True, slots=True)
class CostQuote:
    """
    Cost of ``requested`` under one method.

    Guarantees:
        - total_cost == sum of source costs before rounding.
        - unit_cost == total_cost / requested (zero when nothing requested).
    """

    method: CostMethod
    requested: Decimal
    available: Decimal
    total_cost: Decimal
    unit_cost: Decimal
    sources: tuple[CostSource, ...]

    @property
    def shortfall(self) -> Decimal:
        return max(ZERO, self.requested - self.available)

    @property
    def is_complete(self) -> bool:
        return self.available >= self.requested


@dataclass(frozen=True, slots=True)
class WeightedAverage:
    """Weighted-average cost of a set of lots, with per-lot breakdown."""

    lot_count: int
    total_weight: Decimal
    total_quantity: Decimal
    total_measure: Decimal
    total_cost: Decimal
    unit_cost: Decimal
    sources: tuple[CostSource, ...]


@dataclass(frozen=True, slots=True)
class CostAnalysis:
    """All three quotes for one request, plus the cheapest method."""

    requested: Decimal
    weighted_average: CostQuote
    fifo: CostQuote
    lifo: CostQuote
    recommended: CostMethod

    def quote(self, method: CostMethod) -> CostQuote:
        return {
            CostMethod.WEIGHTED_AVERAGE: self.weighted_average,
            CostMethod.FIFO: self.fifo,
            CostMethod.LIFO: self.lifo,
        }[method]


def _layer_cost(lot: LotSnapshot, take: Decimal) -> Decimal:
    """Cost a sale of ``take`` would release from ``lot``."""
    if take == lot.measure:
        return lot.total_cost
    return quantize_storage(lot.total_cost * take / lot.measure)


class CostingCalculator:
    """
    Pure cost calculator.

    Contract:
        Inputs are active LotSnapshots of one item at one branch sharing a
        unit basis; the caller filters.  Outputs are rounded for reporting.

    Non-goals:
        - Retail pricing.  This prices stock at cost basis only.
    """

    def __init__(
        self,
        weight_decimals: int = WEIGHT_DECIMAL_PLACES,
        money_decimals: int = MONEY_DECIMAL_PLACES,
    ):
        self.weight_decimals = weight_decimals
        self.money_decimals = money_decimals

    # ------------------------------------------------------------------
    # Weighted average
    # ------------------------------------------------------------------

    @traced_engine("costing", "1.0", fingerprint_fields=("lots",))
    def weighted_average(self, lots: Sequence[LotSnapshot]) -> WeightedAverage:
        """
        Weighted-average unit cost: total cost / total measure.

        An empty lot set yields zero totals and a zero unit cost.
        """
        measured = [lot for lot in lots if lot.measure > 0]
        total_measure = sum((lot.measure for lot in measured), ZERO)
        total_cost = sum((lot.total_cost for lot in measured), ZERO)
        unit_cost = total_cost / total_measure if total_measure else ZERO

        sources = tuple(
            self._source(lot, lot.measure, lot.total_cost, total_cost) for lot in measured
        )
        return WeightedAverage(
            lot_count=len(measured),
            total_weight=self._weight(sum((lot.total_weight for lot in measured), ZERO)),
            total_quantity=self._weight(sum((lot.total_quantity for lot in measured), ZERO)),
            total_measure=self._weight(total_measure),
            total_cost=self._money(total_cost),
            unit_cost=self._money(unit_cost),
            sources=sources,
        )

    @traced_engine("costing", "1.0", fingerprint_fields=("lots", "requested"))
    def weighted_average_quote(
        self, lots: Sequence[LotSnapshot], requested: Decimal
    ) -> CostQuote:
        """Cost of ``requested`` at the weighted-average unit cost."""
        measured = [lot for lot in lots if lot.measure > 0]
        available = sum((lot.measure for lot in measured), ZERO)
        pool_cost = sum((lot.total_cost for lot in measured), ZERO)
        total_cost = pool_cost * requested / available if available else ZERO

        sources = []
        for lot in measured:
            share = lot.measure * requested / available
            cost = lot.total_cost * requested / available
            sources.append(self._source(lot, share, cost, total_cost))
        return self._quote(CostMethod.WEIGHTED_AVERAGE, requested, available, total_cost, sources)

    # ------------------------------------------------------------------
    # Layered (FIFO / LIFO)
    # ------------------------------------------------------------------

    @traced_engine("costing", "1.0", fingerprint_fields=("lots", "requested"))
    def fifo_quote(self, lots: Sequence[LotSnapshot], requested: Decimal) -> CostQuote:
        return self.layered_quote(lots, requested, CostMethod.FIFO, FifoSelection())

    @traced_engine("costing", "1.0", fingerprint_fields=("lots", "requested"))
    def lifo_quote(self, lots: Sequence[LotSnapshot], requested: Decimal) -> CostQuote:
        return self.layered_quote(lots, requested, CostMethod.LIFO, LifoSelection())

    def layered_quote(
        self,
        lots: Sequence[LotSnapshot],
        requested: Decimal,
        method: CostMethod,
        strategy: LotSelectionStrategy,
    ) -> CostQuote:
        """Walk lots in ``strategy`` order, costing each take at its layer."""
        plan = plan_depletion(strategy.order(lots), requested)
        taken = [(p.lot, p.take, _layer_cost(p.lot, p.take)) for p in plan.takes]
        total_cost = sum((cost for _, _, cost in taken), ZERO)
        sources = [self._source(lot, take, cost, total_cost) for lot, take, cost in taken]
        return self._quote(method, requested, plan.available, total_cost, sources)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(self, lots: Sequence[LotSnapshot], requested: Decimal) -> CostAnalysis:
        """
        Quote ``requested`` under all three methods.

        The recommended method is the one with the lowest total cost;
        weighted average wins ties, then FIFO.
        """
        wac = self.weighted_average_quote(lots, requested)
        fifo = self.fifo_quote(lots, requested)
        lifo = self.lifo_quote(lots, requested)
        recommended = min(
            (wac, fifo, lifo),
            key=lambda q: q.total_cost,
        ).method
        logger.debug(
            "cost_analysis_computed",
            extra={
                "requested": str(requested),
                "weighted_average_cost": str(wac.total_cost),
                "fifo_cost": str(fifo.total_cost),
                "lifo_cost": str(lifo.total_cost),
                "recommended": recommended.value,
            },
        )
        return CostAnalysis(
            requested=requested,
            weighted_average=wac,
            fifo=fifo,
            lifo=lifo,
            recommended=recommended,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _quote(
        self,
        method: CostMethod,
        requested: Decimal,
        available: Decimal,
        total_cost: Decimal,
        sources: list[CostSource],
    ) -> CostQuote:
        unit_cost = total_cost / requested if requested > 0 else ZERO
        return CostQuote(
            method=method,
            requested=self._weight(requested),
            available=self._weight(available),
            total_cost=self._money(total_cost),
            unit_cost=self._money(unit_cost),
            sources=tuple(sources),
        )

    def _source(
        self, lot: LotSnapshot, measure: Decimal, cost: Decimal, total_cost: Decimal
    ) -> CostSource:
        contribution = cost * _HUNDRED / total_cost if total_cost else ZERO
        return CostSource(
            lot_id=lot.lot_id,
            supplier_id=lot.supplier_id,
            lot_key=lot.lot_key,
            layer_date=lot.layer_date,
            measure=self._weight(measure),
            cost=self._money(cost),
            unit_cost=self._money(cost / measure if measure else ZERO),
            contribution_percentage=round_money(contribution),
        )

    def _weight(self, value: Decimal) -> Decimal:
        return round_weight(value, self.weight_decimals)

    def _money(self, value: Decimal) -> Decimal:
        return round_money(value, self.money_decimals)
