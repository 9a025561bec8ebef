"""
gold_services.ownership_alerts -- Ownership alerts and the sale-risk report.

Responsibility:
    Scan active lots and supplier master data for conditions a branch
    manager should act on: low paid-for share, outstanding supplier
    balances, suppliers near or over their credit limit.  Also report the
    items that would be sold while still owed to a supplier.

Architecture position:
    Services -- read-only.  Thresholds come from gold_config
    (AlertThresholds); supplier data from the SupplierRegistry collaborator.

Invariants enforced:
    - Alerts are ordered by severity (Critical, High, Medium), then type.
    - Inactive suppliers never produce credit alerts.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from gold_config.schema import AlertThresholds
from gold_kernel.db.types import ZERO, round_money, round_weight
from gold_kernel.domain.dtos import LotSnapshot, PaymentStatus
from gold_kernel.domain.values import ItemRef
from gold_kernel.logging_config import get_logger
from gold_kernel.selectors.ownership_selector import OwnershipSelector
from gold_kernel.services.lock_scope import LedgerTransaction
from gold_services.collaborators import Catalog, SupplierRegistry

logger = get_logger("services.ownership_alerts")

_HUNDRED = Decimal("100")


class AlertType:
    LOW_OWNERSHIP = "LowOwnership"
    OUTSTANDING_PAYMENT = "OutstandingPayment"
    SUPPLIER_NEAR_CREDIT_LIMIT = "SupplierNearCreditLimit"
    SUPPLIER_OVER_CREDIT_LIMIT = "SupplierOverCreditLimit"


class Severity:
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"


_SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.HIGH: 1, Severity.MEDIUM: 2}


@dataclass(frozen=True, slots=True)
class OwnershipAlert:
    alert_type: str
    severity: str
    message: str
    item: ItemRef | None = None
    branch_id: str | None = None
    supplier_id: str | None = None
    lot_id: UUID | None = None
    ownership_percentage: Decimal | None = None
    outstanding_amount: Decimal = ZERO


@dataclass(frozen=True, slots=True)
class SupplierExposure:
    supplier_id: str | None
    supplier_name: str
    outstanding_amount: Decimal
    amount_paid: Decimal
    total_cost: Decimal
    payment_status: str


@dataclass(frozen=True, slots=True)
class SaleRiskItem:
    item: ItemRef
    item_name: str
    branch_id: str
    available_quantity: Decimal
    total_outstanding: Decimal
    suppliers: tuple[SupplierExposure, ...]


class OwnershipAlertService:
    def __init__(
        self,
        transaction: LedgerTransaction,
        *,
        suppliers: SupplierRegistry | None = None,
        catalog: Catalog | None = None,
        thresholds: AlertThresholds | None = None,
    ):
        self.transaction = transaction
        self.suppliers = suppliers
        self.catalog = catalog
        self.thresholds = thresholds or AlertThresholds()

    def ownership_alerts(self, branch_id: str | None = None) -> list[OwnershipAlert]:
        with self.transaction.read_session() as session:
            selector = OwnershipSelector(session)
            lots = selector.active_lots(branch_id=branch_id)
            alerts = [a for lot in lots for a in self._lot_alerts(lot)]
            alerts.extend(self._supplier_alerts(selector))

        alerts.sort(key=lambda a: (_SEVERITY_RANK[a.severity], a.alert_type))
        logger.info(
            "ownership_alerts_computed",
            extra={"branch_id": branch_id, "alert_count": len(alerts)},
        )
        return alerts

    def sale_risk_report(self, branch_id: str | None = None) -> list[SaleRiskItem]:
        """Items with unpaid supplier balances, per (item, branch)."""
        with self.transaction.read_session() as session:
            lots = OwnershipSelector(session).active_lots(branch_id=branch_id)

        groups: dict[tuple[ItemRef, str], list[LotSnapshot]] = defaultdict(list)
        for lot in lots:
            if lot.amount_owed > 0:
                groups[(lot.item, lot.branch_id)].append(lot)

        report = []
        for (item, branch), group in groups.items():
            by_supplier: dict[str | None, list[LotSnapshot]] = defaultdict(list)
            for lot in group:
                by_supplier[lot.supplier_id].append(lot)
            exposures = tuple(
                self._exposure(supplier_id, supplier_lots)
                for supplier_id, supplier_lots in sorted(
                    by_supplier.items(), key=lambda kv: kv[0] or ""
                )
            )
            report.append(
                SaleRiskItem(
                    item=item,
                    item_name=self._item_name(item),
                    branch_id=branch,
                    available_quantity=round_weight(sum((lot.measure for lot in group), ZERO)),
                    total_outstanding=round_money(sum((lot.amount_owed for lot in group), ZERO)),
                    suppliers=exposures,
                )
            )
        report.sort(key=lambda r: (r.branch_id, r.item.key))
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lot_alerts(self, lot: LotSnapshot) -> list[OwnershipAlert]:
        alerts = []
        ownership = lot.ownership_percentage
        if lot.total_cost > 0 and ownership < self.thresholds.low_ownership_percent:
            alerts.append(
                OwnershipAlert(
                    alert_type=AlertType.LOW_OWNERSHIP,
                    severity=(
                        Severity.HIGH
                        if ownership < self.thresholds.critical_ownership_percent
                        else Severity.MEDIUM
                    ),
                    message=f"Low ownership percentage: {round_money(ownership)}%",
                    item=lot.item,
                    branch_id=lot.branch_id,
                    supplier_id=lot.supplier_id,
                    lot_id=lot.lot_id,
                    ownership_percentage=round_money(ownership),
                    outstanding_amount=round_money(lot.amount_owed),
                )
            )
        if lot.amount_owed > 0:
            alerts.append(
                OwnershipAlert(
                    alert_type=AlertType.OUTSTANDING_PAYMENT,
                    severity=(
                        Severity.HIGH
                        if lot.amount_owed > self.thresholds.outstanding_high_amount
                        else Severity.MEDIUM
                    ),
                    message=f"Outstanding payment: {round_money(lot.amount_owed)}",
                    item=lot.item,
                    branch_id=lot.branch_id,
                    supplier_id=lot.supplier_id,
                    lot_id=lot.lot_id,
                    ownership_percentage=round_money(ownership),
                    outstanding_amount=round_money(lot.amount_owed),
                )
            )
        return alerts

    def _supplier_alerts(self, selector: OwnershipSelector) -> list[OwnershipAlert]:
        if self.suppliers is None:
            return []
        alerts = []
        for supplier in self.suppliers.suppliers():
            if not supplier.is_active or not supplier.credit_limit or supplier.credit_limit <= 0:
                continue
            balance = supplier.current_balance
            if balance is None:
                balance = selector.supplier_outstanding(supplier.supplier_id)
            limit = supplier.credit_limit
            if balance > limit:
                alerts.append(
                    OwnershipAlert(
                        alert_type=AlertType.SUPPLIER_OVER_CREDIT_LIMIT,
                        severity=Severity.CRITICAL,
                        message=(
                            f"Supplier {supplier.name} over credit limit by "
                            f"{round_money(balance - limit)}. Current balance: {round_money(balance)}"
                        ),
                        supplier_id=supplier.supplier_id,
                        outstanding_amount=round_money(balance),
                    )
                )
                continue
            utilization = balance * _HUNDRED / limit
            if utilization >= self.thresholds.credit_near_limit_percent:
                alerts.append(
                    OwnershipAlert(
                        alert_type=AlertType.SUPPLIER_NEAR_CREDIT_LIMIT,
                        severity=(
                            Severity.HIGH
                            if utilization >= self.thresholds.credit_high_percent
                            else Severity.MEDIUM
                        ),
                        message=(
                            f"Supplier {supplier.name} near credit limit: "
                            f"{round_money(utilization)}% utilized, "
                            f"available {round_money(limit - balance)}"
                        ),
                        supplier_id=supplier.supplier_id,
                        outstanding_amount=round_money(balance),
                    )
                )
        return alerts

    def _exposure(self, supplier_id: str | None, lots: list[LotSnapshot]) -> SupplierExposure:
        owed = sum((lot.amount_owed for lot in lots), ZERO)
        paid = sum((lot.amount_paid for lot in lots), ZERO)
        if owed == 0:
            status = PaymentStatus.PAID
        elif paid == 0:
            status = PaymentStatus.UNPAID
        else:
            status = PaymentStatus.PARTIAL
        return SupplierExposure(
            supplier_id=supplier_id,
            supplier_name=self._supplier_name(supplier_id),
            outstanding_amount=round_money(owed),
            amount_paid=round_money(paid),
            total_cost=round_money(sum((lot.total_cost for lot in lots), ZERO)),
            payment_status=status,
        )

    def _supplier_name(self, supplier_id: str | None) -> str:
        if supplier_id is None:
            return "Merchant"
        if self.suppliers is not None:
            info = self.suppliers.get_supplier(supplier_id)
            if info is not None:
                return info.name
        return "Unknown Supplier"

    def _item_name(self, item: ItemRef) -> str:
        if self.catalog is not None:
            info = self.catalog.describe(item)
            if info is not None:
                return info.name
        return item.key
