"""
gold_services.supplier_credit_guard -- Supplier credit checks before receipts.

Responsibility:
    Decide whether a supplier may take on ``additional_owed`` more debt,
    and produce the non-blocking warnings a buyer should see.  Plugs into
    OwnershipLedger as its ReceiptCreditPolicy.

Architecture position:
    Services.  Reads SupplierRegistry (collaborator) and the ledger's
    outstanding owed through OwnershipSelector.  Never writes.

Invariants enforced:
    - Enforced suppliers never exceed their limit through a receipt:
      ``check_receipt`` raises before the ledger writes anything.
    - Inactive or unregistered suppliers are refused.
    - The balance is the registry's figure when it keeps one, otherwise
      the sum of amount_owed over the supplier's active lots read in the
      caller's session (so it sees the caller's locks).

Failure modes:
    - CreditLimitExceededError from ``check_receipt`` when the check is
      not allowed.

Audit relevance:
    Every refusal logs ``credit_check_refused`` with the balance, limit
    and requested addition; warnings log ``credit_check_warning``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from gold_config.schema import AlertThresholds
from gold_kernel.db.types import ZERO, round_money, to_decimal
from gold_kernel.exceptions import CreditLimitExceededError
from gold_kernel.logging_config import get_logger
from gold_kernel.selectors.ownership_selector import OwnershipSelector
from gold_kernel.services.lock_scope import LedgerTransaction
from gold_services.collaborators import SupplierRegistry

logger = get_logger("services.supplier_credit_guard")

_HUNDRED = Decimal("100")


@dataclass(frozen=True, slots=True)
class CreditCheck:
    """Outcome of a credit check."""

    supplier_id: str
    allowed: bool
    current_balance: Decimal
    limit: Decimal | None
    additional: Decimal
    would_exceed: bool
    enforced: bool
    available_credit: Decimal | None
    utilization_after: Decimal | None
    warnings: tuple[str, ...] = ()
    reason: str | None = None


class SupplierCreditGuard:
    """
    Credit limit checks for supplier receipts.

    Contract:
        ``check_credit`` is a standalone read; ``check_receipt`` runs inside
        the ledger's transaction scope and raises on refusal.

    Guarantees:
        - ``check_receipt`` runs while the ledger holds the supplier lock
          key, so no other receipt can raise the balance it reads.
    """

    def __init__(
        self,
        registry: SupplierRegistry,
        transaction: LedgerTransaction,
        thresholds: AlertThresholds | None = None,
    ):
        self.registry = registry
        self.transaction = transaction
        self.thresholds = thresholds or AlertThresholds()

    def check_credit(self, supplier_id: str, additional_owed: Decimal | int | str) -> CreditCheck:
        additional = to_decimal(additional_owed)
        with self.transaction.read_session() as session:
            return self.evaluate(session, supplier_id, additional)

    def check_receipt(
        self, session: Session, supplier_id: str, additional_owed: Decimal
    ) -> tuple[str, ...]:
        check = self.evaluate(session, supplier_id, additional_owed)
        if not check.allowed:
            logger.warning(
                "credit_check_refused",
                extra={
                    "supplier_id": supplier_id,
                    "current_balance": str(check.current_balance),
                    "limit": str(check.limit),
                    "additional": str(additional_owed),
                    "reason": check.reason,
                },
            )
            raise CreditLimitExceededError(
                supplier_id,
                check.current_balance,
                check.limit if check.limit is not None else ZERO,
                additional_owed,
                reason=check.reason,
            )
        for warning in check.warnings:
            logger.warning("credit_check_warning", extra={"supplier_id": supplier_id, "warning": warning})
        return check.warnings

    def evaluate(self, session: Session, supplier_id: str, additional: Decimal) -> CreditCheck:
        """Pure decision given a session to read the ledger balance from."""
        supplier = self.registry.get_supplier(supplier_id)
        if supplier is None:
            return self._refused(supplier_id, additional, "supplier is not registered")

        balance = supplier.current_balance
        if balance is None:
            balance = OwnershipSelector(session).supplier_outstanding(supplier_id)

        if not supplier.is_active:
            return self._refused(
                supplier_id,
                additional,
                "supplier is inactive",
                balance=balance,
                limit=supplier.credit_limit,
                enforced=supplier.credit_limit_enforced,
            )

        limit = supplier.credit_limit
        if limit is None:
            return CreditCheck(
                supplier_id=supplier_id,
                allowed=True,
                current_balance=balance,
                limit=None,
                additional=additional,
                would_exceed=False,
                enforced=supplier.credit_limit_enforced,
                available_credit=None,
                utilization_after=None,
            )

        after = balance + additional
        would_exceed = after > limit
        utilization = after * _HUNDRED / limit if limit > 0 else None
        warnings: list[str] = []
        allowed = True
        reason = None

        if would_exceed and supplier.credit_limit_enforced:
            allowed = False
            reason = (
                f"balance {round_money(balance)} + {round_money(additional)} "
                f"exceeds enforced limit {round_money(limit)}"
            )
        elif would_exceed:
            warnings.append(
                f"Supplier {supplier.name} will exceed credit limit {round_money(limit)} "
                f"(balance after receipt {round_money(after)}); limit is not enforced"
            )
        elif utilization is not None and utilization >= self.thresholds.credit_near_limit_percent:
            warnings.append(
                f"Supplier {supplier.name} near credit limit: "
                f"{round_money(utilization)}% utilized after receipt"
            )

        return CreditCheck(
            supplier_id=supplier_id,
            allowed=allowed,
            current_balance=balance,
            limit=limit,
            additional=additional,
            would_exceed=would_exceed,
            enforced=supplier.credit_limit_enforced,
            available_credit=max(ZERO, limit - balance),
            utilization_after=round_money(utilization) if utilization is not None else None,
            warnings=tuple(warnings),
            reason=reason,
        )

    @staticmethod
    def _refused(
        supplier_id: str,
        additional: Decimal,
        reason: str,
        *,
        balance: Decimal = ZERO,
        limit: Decimal | None = None,
        enforced: bool = True,
    ) -> CreditCheck:
        return CreditCheck(
            supplier_id=supplier_id,
            allowed=False,
            current_balance=balance,
            limit=limit,
            additional=additional,
            would_exceed=limit is not None and balance + additional > limit,
            enforced=enforced,
            available_credit=max(ZERO, limit - balance) if limit is not None else None,
            utilization_after=None,
            reason=reason,
        )
