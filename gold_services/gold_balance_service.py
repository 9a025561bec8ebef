"""
gold_services.gold_balance_service -- Raw gold balances per branch and karat.

Responsibility:
    Summarize raw gold a branch holds: per (supplier, karat) how much has
    been received and what is still owed for it, per karat how much
    merchant-owned gold is on hand, and the net of the two.  Also lists the
    merchant gold available to waive against supplier balances.

Architecture position:
    Services -- read-only, built on OwnershipSelector.active_lots.  Never
    takes identity locks.

Invariants enforced:
    - Only raw gold lots with weight on hand are counted.
    - net_balance = merchant gold value - outstanding supplier debt.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from gold_kernel.db.types import ZERO, quantize_storage
from gold_kernel.domain.clock import Clock, SystemClock
from gold_kernel.domain.dtos import LotSnapshot
from gold_kernel.logging_config import get_logger
from gold_kernel.selectors.ownership_selector import OwnershipSelector
from gold_kernel.services.lock_scope import LedgerTransaction

logger = get_logger("services.gold_balance")


@dataclass(frozen=True, slots=True)
class SupplierKaratBalance:
    """Supplier-owned raw gold of one karat at one branch."""

    branch_id: str
    supplier_id: str
    karat_id: str
    lot_count: int
    total_weight: Decimal
    total_cost: Decimal
    amount_paid: Decimal
    amount_owed: Decimal
    average_cost: Decimal
    last_movement_at: datetime | None


@dataclass(frozen=True, slots=True)
class MerchantKaratBalance:
    """Merchant-owned raw gold of one karat at one branch."""

    branch_id: str
    karat_id: str
    lot_ids: tuple[UUID, ...]
    available_weight: Decimal
    average_cost: Decimal
    total_value: Decimal
    last_movement_at: datetime | None


@dataclass(frozen=True, slots=True)
class GoldBalanceSummary:
    branch_id: str
    supplier_balances: tuple[SupplierKaratBalance, ...]
    merchant_balances: tuple[MerchantKaratBalance, ...]
    total_debt: Decimal
    total_credit: Decimal
    generated_at: datetime

    @property
    def net_balance(self) -> Decimal:
        return self.total_credit - self.total_debt


def _average(cost: Decimal, weight: Decimal) -> Decimal:
    return quantize_storage(cost / weight) if weight > 0 else ZERO


def _latest(lots: Iterable[LotSnapshot]) -> datetime | None:
    stamps = [lot.last_movement_at for lot in lots if lot.last_movement_at is not None]
    return max(stamps) if stamps else None


class GoldBalanceService:
    """
    Branch-level raw gold balances.

    Contract:
        Every method reads committed state through one read session.
        ``supplier_id`` narrows supplier balances; ``karat_id`` narrows the
        waivable list.
    """

    def __init__(self, transaction: LedgerTransaction, *, clock: Clock | None = None):
        self.transaction = transaction
        self.clock = clock or SystemClock()

    def supplier_balances(
        self, branch_id: str, supplier_id: str | None = None
    ) -> list[SupplierKaratBalance]:
        groups: dict[tuple[str, str], list[LotSnapshot]] = defaultdict(list)
        for lot in self._raw_gold(branch_id):
            if lot.is_merchant_owned:
                continue
            if supplier_id is not None and lot.supplier_id != supplier_id:
                continue
            groups[(lot.supplier_id, lot.item.item_id)].append(lot)

        balances = []
        for (supplier, karat_id), lots in sorted(groups.items()):
            weight = sum((lot.total_weight for lot in lots), ZERO)
            cost = sum((lot.total_cost for lot in lots), ZERO)
            paid = sum((lot.amount_paid for lot in lots), ZERO)
            balances.append(
                SupplierKaratBalance(
                    branch_id=branch_id,
                    supplier_id=supplier,
                    karat_id=karat_id,
                    lot_count=len(lots),
                    total_weight=weight,
                    total_cost=cost,
                    amount_paid=paid,
                    amount_owed=sum((lot.amount_owed for lot in lots), ZERO),
                    average_cost=_average(cost, weight),
                    last_movement_at=_latest(lots),
                )
            )
        return balances

    def merchant_balances(self, branch_id: str) -> list[MerchantKaratBalance]:
        groups: dict[str, list[LotSnapshot]] = defaultdict(list)
        for lot in self._raw_gold(branch_id):
            if lot.is_merchant_owned:
                groups[lot.item.item_id].append(lot)

        balances = []
        for karat_id, lots in sorted(groups.items()):
            weight = sum((lot.total_weight for lot in lots), ZERO)
            cost = sum((lot.total_cost for lot in lots), ZERO)
            balances.append(
                MerchantKaratBalance(
                    branch_id=branch_id,
                    karat_id=karat_id,
                    lot_ids=tuple(lot.lot_id for lot in lots),
                    available_weight=weight,
                    average_cost=_average(cost, weight),
                    total_value=cost,
                    last_movement_at=_latest(lots),
                )
            )
        return balances

    def balance_summary(self, branch_id: str) -> GoldBalanceSummary:
        suppliers = self.supplier_balances(branch_id)
        merchant = self.merchant_balances(branch_id)
        summary = GoldBalanceSummary(
            branch_id=branch_id,
            supplier_balances=tuple(suppliers),
            merchant_balances=tuple(merchant),
            total_debt=sum((b.amount_owed for b in suppliers if b.amount_owed > 0), ZERO),
            total_credit=sum((b.total_value for b in merchant), ZERO),
            generated_at=self.clock.now(),
        )
        logger.info(
            "gold_balance_summary_computed",
            extra={
                "branch_id": branch_id,
                "supplier_balance_count": len(suppliers),
                "merchant_balance_count": len(merchant),
                "net_balance": str(summary.net_balance),
            },
        )
        return summary

    def waivable_gold(self, branch_id: str, karat_id: str | None = None) -> list[MerchantKaratBalance]:
        """Merchant gold on hand that can be waived to a supplier."""
        return [
            balance
            for balance in self.merchant_balances(branch_id)
            if balance.available_weight > 0 and (karat_id is None or balance.karat_id == karat_id)
        ]

    def _raw_gold(self, branch_id: str) -> list[LotSnapshot]:
        with self.transaction.read_session() as session:
            lots = OwnershipSelector(session).active_lots(branch_id=branch_id)
        return [lot for lot in lots if lot.item.is_raw_gold and lot.total_weight > 0]
