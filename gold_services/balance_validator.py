"""
gold_services.balance_validator -- Pre-sale ownership check.

Responsibility:
    Answer "can this branch sell this much of this item, and what should
    the cashier be warned about?" from a read-only snapshot of the lots.

Architecture position:
    Services -- read-only.  Uses the same lot selection and depletion
    planner as OwnershipLedger.apply_sale, so the lots it warns about are
    the lots the sale would draw from.

Invariants enforced:
    - Never blocks on unpaid stock unless ``require_paid`` is set; unpaid
      and partially paid lots only produce warnings.
    - Takes no locks and writes nothing.  The answer can be stale by the
      time a sale runs; the sale re-checks under its locks.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from gold_config.schema import AlertThresholds
from gold_kernel.db.types import ZERO, quantize_storage, round_money, round_weight, to_decimal
from gold_kernel.domain.lot_selection import FifoSelection, LotSelectionStrategy, plan_depletion
from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import InvalidMovementError
from gold_kernel.logging_config import get_logger
from gold_kernel.selectors.ownership_selector import OwnershipSelector
from gold_kernel.services.lock_scope import LedgerTransaction
from gold_services.collaborators import SupplierRegistry

logger = get_logger("services.balance_validator")

_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class SaleValidation:
    can_sell: bool
    requested: Decimal
    available_quantity: Decimal
    paid_quantity: Decimal
    shortfall: Decimal
    ownership_percentage: Decimal
    warnings: tuple[str, ...] = ()

    @property
    def message(self) -> str:
        if not self.can_sell:
            return "Sale not allowed"
        if self.warnings:
            return "Sale allowed with payment warnings"
        return "Sale validated successfully"


class BalanceValidator:
    def __init__(
        self,
        transaction: LedgerTransaction,
        *,
        thresholds: AlertThresholds | None = None,
        strategy: LotSelectionStrategy | None = None,
        suppliers: SupplierRegistry | None = None,
    ):
        self.transaction = transaction
        self.thresholds = thresholds or AlertThresholds()
        self.strategy = strategy or FifoSelection()
        self.suppliers = suppliers

    def validate_sale(
        self,
        item: ItemRef,
        branch_id: str,
        requested: Decimal | int | str,
        require_paid: bool = False,
    ) -> SaleValidation:
        amount = quantize_storage(to_decimal(requested))
        if amount <= 0:
            raise InvalidMovementError(item.key, f"requested amount must be positive, got {amount}")

        basis = item.default_unit_basis
        with self.transaction.read_session() as session:
            lots = [
                lot
                for lot in OwnershipSelector(session).active_lots(item, branch_id)
                if lot.unit_basis == basis
            ]

        available = sum((lot.measure for lot in lots), ZERO)
        paid = sum((lot.paid_measure for lot in lots), ZERO)
        total_cost = sum((lot.total_cost for lot in lots), ZERO)
        total_paid = sum((lot.amount_paid for lot in lots), ZERO)
        ownership = total_paid * _HUNDRED / total_cost if total_cost else _HUNDRED

        can_sell = available >= amount and (not require_paid or paid >= amount)
        shortfall = max(ZERO, amount - (paid if require_paid else available))

        warnings: list[str] = []
        plan = plan_depletion(self.strategy.order(lots), amount)
        for planned in plan.takes:
            lot = planned.lot
            if lot.amount_owed <= 0:
                continue
            supplier = self._supplier_name(lot.supplier_id)
            owed = round_money(lot.amount_owed)
            if lot.amount_paid == 0:
                warnings.append(f"WARNING: {item.key} from {supplier} is completely UNPAID (Outstanding: {owed})")
            else:
                warnings.append(
                    f"WARNING: {item.key} from {supplier} is PARTIALLY PAID "
                    f"(Outstanding: {owed}, Paid: {round_money(lot.amount_paid)})"
                )
        if lots and ownership < self.thresholds.low_ownership_percent:
            warnings.append(
                f"WARNING: low ownership of {item.key} at branch {branch_id}: {round_money(ownership)}% paid"
            )

        result = SaleValidation(
            can_sell=can_sell,
            requested=round_weight(amount),
            available_quantity=round_weight(available),
            paid_quantity=round_weight(paid),
            shortfall=round_weight(shortfall),
            ownership_percentage=round_money(ownership),
            warnings=tuple(warnings),
        )
        logger.info(
            "sale_validated",
            extra={
                "item_ref": item.key,
                "branch_id": branch_id,
                "requested": str(amount),
                "can_sell": can_sell,
                "require_paid": require_paid,
                "warning_count": len(warnings),
            },
        )
        return result

    def _supplier_name(self, supplier_id: str | None) -> str:
        if supplier_id is None:
            return "merchant stock"
        if self.suppliers is not None:
            info = self.suppliers.get_supplier(supplier_id)
            if info is not None:
                return info.name
        return f"supplier {supplier_id}"
