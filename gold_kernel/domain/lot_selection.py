"""
Lot selection -- which lots a sale (or a FIFO/LIFO quote) draws from, in what order.

Responsibility:
    Pluggable ordering strategies over active LotSnapshots plus the shared
    depletion planner that walks an ordered list until a requested measure
    is covered.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Used by OwnershipLedger (write path),
    BalanceValidator and the costing engine (read path), so a quote and the
    sale that follows it consume lots in the same order.

Invariants enforced:
    - Deterministic order: ties on layer_date break on created_at, then on
      lot id, so two runs over the same lots always agree.
    - A plan never takes more from a lot than its measure.

Failure modes:
    - None: planning reports the shortfall; callers decide whether it is an
      error.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from gold_kernel.db.types import ZERO
from gold_kernel.domain.dtos import LotSnapshot


def _fifo_key(lot: LotSnapshot):
    return (lot.layer_date, lot.created_at, str(lot.lot_id))


class LotSelectionStrategy(ABC):
    """Orders (and optionally filters) candidate lots for depletion."""

    name: str = "abstract"

    @abstractmethod
    def order(self, lots: Sequence[LotSnapshot]) -> list[LotSnapshot]:
        ...


class FifoSelection(LotSelectionStrategy):
    """Oldest layer first."""

    name = "fifo"

    def order(self, lots: Sequence[LotSnapshot]) -> list[LotSnapshot]:
        return sorted(lots, key=_fifo_key)


class LifoSelection(LotSelectionStrategy):
    """Newest layer first."""

    name = "lifo"

    def order(self, lots: Sequence[LotSnapshot]) -> list[LotSnapshot]:
        return sorted(lots, key=_fifo_key, reverse=True)


class SpecificSupplierSelection(LotSelectionStrategy):
    """
    Only one supplier's lots (None = merchant-owned stock), ordered by an
    inner strategy (FIFO unless given).
    """

    name = "specific_supplier"

    def __init__(self, supplier_id: str | None, then: LotSelectionStrategy | None = None):
        self.supplier_id = supplier_id
        self.then = then or FifoSelection()

    def order(self, lots: Sequence[LotSnapshot]) -> list[LotSnapshot]:
        return self.then.order([lot for lot in lots if lot.supplier_id == self.supplier_id])


@dataclass(frozen=True, slots=True)
class PlannedTake:
    """How much of one lot's measure a plan consumes."""

    lot: LotSnapshot
    take: Decimal

    @property
    def exhausts_lot(self) -> bool:
        return self.take == self.lot.measure


@dataclass(frozen=True, slots=True)
class DepletionPlan:
    requested: Decimal
    available: Decimal
    takes: tuple[PlannedTake, ...]

    @property
    def shortfall(self) -> Decimal:
        return max(ZERO, self.requested - self.available)

    @property
    def is_satisfied(self) -> bool:
        return self.available >= self.requested


def plan_depletion(ordered: Sequence[LotSnapshot], requested: Decimal) -> DepletionPlan:
    """
    Walk ``ordered`` lots taking their measure until ``requested`` is covered.

    ``available`` is the total measure of all lots, not just those taken.
    """
    available = sum((lot.measure for lot in ordered), ZERO)
    remaining = requested
    takes: list[PlannedTake] = []
    for lot in ordered:
        if remaining <= 0:
            break
        if lot.measure <= 0:
            continue
        take = min(remaining, lot.measure)
        takes.append(PlannedTake(lot=lot, take=take))
        remaining -= take
    return DepletionPlan(requested=requested, available=available, takes=tuple(takes))


def strategy_for(name: str, supplier_id: str | None = None) -> LotSelectionStrategy:
    """Resolve a strategy by its configured name."""
    if name == FifoSelection.name:
        return FifoSelection()
    if name == LifoSelection.name:
        return LifoSelection()
    if name == SpecificSupplierSelection.name:
        return SpecificSupplierSelection(supplier_id)
    raise ValueError(f"Unknown lot selection strategy: {name!r}")
