"""
gold_services.ownership_api -- OwnershipApi: the ledger's outward surface.

Responsibility:
    One object exposing every ledger query and command to an outer layer
    (HTTP handlers, jobs, a POS client), taking plain strings for ids,
    item references and amounts and returning plain dicts built by
    gold_services.mappers.

Architecture position:
    Services -- outermost layer of this package.  Wires OwnershipLedger,
    CostingEngine, KaratConversionService, ConsolidationService,
    BalanceValidator, OwnershipAlertService, SupplierCreditGuard and
    GoldBalanceService over one LedgerTransaction.  Authentication and
    routing live elsewhere.

Invariants enforced:
    - Commands retry only on ConflictError, with the configured attempts
      and backoff; every other error propagates unchanged.
    - ``actor`` is required by every command.

Failure modes:
    - Any GoldLedgerError from the wrapped services; callers render it
      with ``exc.to_dict()``.
    - ValueError for malformed item references.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from gold_config import get_active_config
from gold_config.schema import LedgerConfig
from gold_engines.costing import CostingCalculator
from gold_kernel.db.immutability import register_immutability_listeners
from gold_kernel.domain.clock import Clock, SystemClock
from gold_kernel.domain.lot_selection import strategy_for
from gold_kernel.domain.values import ItemRef
from gold_kernel.logging_config import get_logger
from gold_kernel.services.lock_scope import LedgerTransaction
from gold_kernel.services.ownership_ledger import OwnershipLedger
from gold_kernel.services.retry import retry_on_conflict
from gold_services import mappers
from gold_services.balance_validator import BalanceValidator
from gold_services.collaborators import (
    Catalog,
    ConfigPurityTable,
    InMemorySupplierRegistry,
    SupplierRegistry,
)
from gold_services.consolidation_service import ConsolidationService
from gold_services.costing_service import CostingEngine
from gold_services.gold_balance_service import GoldBalanceService
from gold_services.karat_conversion_service import KaratConversionService
from gold_services.ownership_alerts import OwnershipAlertService
from gold_services.supplier_credit_guard import SupplierCreditGuard

logger = get_logger("services.ownership_api")

Amount = Decimal | int | str


def _item(item_ref: str | ItemRef) -> ItemRef:
    return item_ref if isinstance(item_ref, ItemRef) else ItemRef.parse(item_ref)


def _uuid(value: str | UUID) -> UUID:
    return value if isinstance(value, UUID) else UUID(value)


class OwnershipApi:
    """
    Query and command surface over one ownership ledger.

    Contract:
        Build with ``OwnershipApi.create(session_factory, ...)`` or pass the
        wired services in directly.

    Non-goals:
        - Authentication, authorization, HTTP.
        - Idempotent replays of commands by reference number.
    """

    def __init__(
        self,
        config: LedgerConfig,
        ledger: OwnershipLedger,
        costing: CostingEngine,
        conversions: KaratConversionService,
        consolidation: ConsolidationService,
        validator: BalanceValidator,
        alerts: OwnershipAlertService,
        credit_guard: SupplierCreditGuard,
        balances: GoldBalanceService,
    ):
        self.config = config
        self.ledger = ledger
        self.costing = costing
        self.conversions = conversions
        self.consolidation = consolidation
        self.validator = validator
        self.alerts = alerts
        self.credit_guard = credit_guard
        self.balances = balances

    @classmethod
    def create(
        cls,
        session_factory: sessionmaker[Session],
        *,
        config: LedgerConfig | None = None,
        suppliers: SupplierRegistry | None = None,
        catalog: Catalog | None = None,
        clock: Clock | None = None,
    ) -> OwnershipApi:
        """Wire every service over one LedgerTransaction from configuration."""
        register_immutability_listeners()
        config = config or get_active_config()
        clock = clock or SystemClock()
        suppliers = suppliers if suppliers is not None else InMemorySupplierRegistry()
        transaction = LedgerTransaction(
            session_factory, lock_timeout=config.concurrency.lock_timeout_seconds
        )
        credit_guard = SupplierCreditGuard(suppliers, transaction, config.alerts)
        strategy = strategy_for(config.default_lot_selection)
        return cls(
            config=config,
            ledger=OwnershipLedger(
                transaction,
                clock=clock,
                default_currency=config.currency,
                credit_policy=credit_guard,
                default_strategy=strategy,
            ),
            costing=CostingEngine(
                transaction,
                CostingCalculator(config.rounding.weight_decimals, config.rounding.money_decimals),
            ),
            conversions=KaratConversionService(transaction, ConfigPurityTable(config), clock=clock),
            consolidation=ConsolidationService(transaction, clock=clock),
            validator=BalanceValidator(
                transaction, thresholds=config.alerts, strategy=strategy, suppliers=suppliers
            ),
            alerts=OwnershipAlertService(
                transaction, suppliers=suppliers, catalog=catalog, thresholds=config.alerts
            ),
            credit_guard=credit_guard,
            balances=GoldBalanceService(transaction, clock=clock),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_lot(self, lot_id: str | UUID) -> dict[str, Any]:
        return mappers.lot_to_dict(self.ledger.get_lot(_uuid(lot_id)))

    def active_lots(
        self,
        item_ref: str | ItemRef | None = None,
        branch_id: str | None = None,
        supplier_id: str | None = None,
    ) -> list[dict[str, Any]]:
        item = _item(item_ref) if item_ref is not None else None
        return [mappers.lot_to_dict(lot) for lot in self.ledger.active_lots(item, branch_id, supplier_id)]

    def movement_history(self, lot_id: str | UUID) -> list[dict[str, Any]]:
        return [mappers.movement_to_dict(m) for m in self.ledger.movement_history(_uuid(lot_id))]

    def replay_lot(self, lot_id: str | UUID) -> dict[str, Any]:
        return mappers.replay_to_dict(self.ledger.replay(_uuid(lot_id)))

    def weighted_average_cost(self, item_ref: str | ItemRef, branch_id: str) -> dict[str, Any]:
        return mappers.weighted_average_to_dict(
            self.costing.weighted_average_cost(_item(item_ref), branch_id)
        )

    def weighted_average_for_lots(self, lot_ids: Iterable[str | UUID]) -> dict[str, Any]:
        return mappers.weighted_average_to_dict(
            self.costing.weighted_average_for_lots([_uuid(i) for i in lot_ids])
        )

    def fifo_cost(self, item_ref: str | ItemRef, branch_id: str, requested: Amount) -> dict[str, Any]:
        return mappers.cost_quote_to_dict(self.costing.fifo_cost(_item(item_ref), branch_id, requested))

    def lifo_cost(self, item_ref: str | ItemRef, branch_id: str, requested: Amount) -> dict[str, Any]:
        return mappers.cost_quote_to_dict(self.costing.lifo_cost(_item(item_ref), branch_id, requested))

    def cost_analysis(self, item_ref: str | ItemRef, branch_id: str, requested: Amount) -> dict[str, Any]:
        return mappers.cost_analysis_to_dict(
            self.costing.cost_analysis(_item(item_ref), branch_id, requested)
        )

    def validate_sale(
        self,
        item_ref: str | ItemRef,
        branch_id: str,
        requested: Amount,
        require_paid: bool = False,
    ) -> dict[str, Any]:
        return mappers.validation_to_dict(
            self.validator.validate_sale(_item(item_ref), branch_id, requested, require_paid)
        )

    def check_credit(self, supplier_id: str, additional_owed: Amount) -> dict[str, Any]:
        return mappers.credit_check_to_dict(self.credit_guard.check_credit(supplier_id, additional_owed))

    def ownership_alerts(self, branch_id: str | None = None) -> list[dict[str, Any]]:
        return [mappers.alert_to_dict(a) for a in self.alerts.ownership_alerts(branch_id)]

    def sale_risk_report(self, branch_id: str | None = None) -> list[dict[str, Any]]:
        return [mappers.sale_risk_to_dict(r) for r in self.alerts.sale_risk_report(branch_id)]

    def conversion_quote(self, from_karat: str, to_karat: str, from_weight: Amount) -> dict[str, Any]:
        return mappers.karat_quote_to_dict(self.conversions.quote(from_karat, to_karat, from_weight))

    def conversion_history(self, branch_id: str | None = None) -> list[dict[str, Any]]:
        return [mappers.conversion_history_to_dict(e) for e in self.conversions.history(branch_id)]

    def consolidation_opportunities(self, branch_id: str | None = None) -> list[dict[str, Any]]:
        return [mappers.opportunity_to_dict(o) for o in self.consolidation.find_opportunities(branch_id)]

    def consolidation_batches(self, branch_id: str | None = None) -> list[dict[str, Any]]:
        return [mappers.batch_to_dict(b) for b in self.consolidation.batches(branch_id)]

    def waiver_history(self, branch_id: str | None = None) -> list[dict[str, Any]]:
        return [mappers.waiver_history_to_dict(e) for e in self.ledger.waiver_history(branch_id)]

    def supplier_balances(self, branch_id: str, supplier_id: str | None = None) -> list[dict[str, Any]]:
        return [
            mappers.supplier_balance_to_dict(b)
            for b in self.balances.supplier_balances(branch_id, supplier_id)
        ]

    def balance_summary(self, branch_id: str) -> dict[str, Any]:
        return mappers.balance_summary_to_dict(self.balances.balance_summary(branch_id))

    def waivable_gold(self, branch_id: str, karat_id: str | None = None) -> list[dict[str, Any]]:
        return [
            mappers.merchant_balance_to_dict(b)
            for b in self.balances.waivable_gold(branch_id, karat_id)
        ]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def get_or_create_lot(
        self,
        item_ref: str | ItemRef,
        branch_id: str,
        supplier_id: str | None,
        actor: str,
        lot_key: str = "",
    ) -> dict[str, Any]:
        lot = self._run(
            "get_or_create_lot",
            lambda: self.ledger.get_or_create_lot(
                _item(item_ref), branch_id, supplier_id, actor, lot_key=lot_key
            ),
        )
        return mappers.lot_to_dict(lot)

    def receive(
        self,
        item_ref: str | ItemRef,
        branch_id: str,
        supplier_id: str | None,
        *,
        weight: Amount = 0,
        quantity: Amount = 0,
        unit_cost: Amount,
        reference: str,
        actor: str,
        lot_key: str = "",
    ) -> dict[str, Any]:
        result = self._run(
            "receipt",
            lambda: self.ledger.apply_receipt(
                _item(item_ref),
                branch_id,
                supplier_id,
                weight=weight,
                quantity=quantity,
                unit_cost=unit_cost,
                reference=reference,
                actor=actor,
                lot_key=lot_key,
            ),
        )
        return mappers.movement_result_to_dict(result)

    def customer_buy_in(
        self,
        item_ref: str | ItemRef,
        branch_id: str,
        *,
        weight: Amount = 0,
        quantity: Amount = 0,
        unit_cost: Amount,
        reference: str,
        actor: str,
    ) -> dict[str, Any]:
        result = self._run(
            "customer_buy_in",
            lambda: self.ledger.apply_customer_buy_in(
                _item(item_ref),
                branch_id,
                weight=weight,
                quantity=quantity,
                unit_cost=unit_cost,
                reference=reference,
                actor=actor,
            ),
        )
        return mappers.movement_result_to_dict(result)

    def sell(
        self,
        item_ref: str | ItemRef,
        branch_id: str,
        amount: Amount,
        *,
        reference: str,
        actor: str,
        supplier_id: str | None = None,
        strategy: str | None = None,
    ) -> dict[str, Any]:
        chosen = strategy_for(strategy) if strategy is not None else None
        result = self._run(
            "sale",
            lambda: self.ledger.apply_sale(
                _item(item_ref),
                branch_id,
                amount,
                reference=reference,
                actor=actor,
                supplier_id=supplier_id,
                strategy=chosen,
            ),
        )
        return mappers.sale_to_dict(result)

    def pay(self, lot_id: str | UUID, amount: Amount, *, reference: str, actor: str) -> dict[str, Any]:
        result = self._run(
            "payment",
            lambda: self.ledger.apply_payment(_uuid(lot_id), amount, reference=reference, actor=actor),
        )
        return mappers.movement_result_to_dict(result)

    def waive(
        self,
        source_lot_id: str | UUID,
        target_lot_id: str | UUID,
        weight: Amount,
        *,
        reference: str,
        actor: str,
    ) -> dict[str, Any]:
        result = self._run(
            "waiver",
            lambda: self.ledger.apply_waiver(
                _uuid(source_lot_id), _uuid(target_lot_id), weight, reference=reference, actor=actor
            ),
        )
        return mappers.waiver_to_dict(result)

    def adjust(
        self,
        lot_id: str | UUID,
        *,
        weight_change: Amount = 0,
        quantity_change: Amount = 0,
        reference: str,
        actor: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        result = self._run(
            "adjustment",
            lambda: self.ledger.apply_adjustment(
                _uuid(lot_id),
                weight_change=weight_change,
                quantity_change=quantity_change,
                reference=reference,
                actor=actor,
                notes=notes,
            ),
        )
        return mappers.movement_result_to_dict(result)

    def convert_karat(
        self,
        branch_id: str,
        supplier_id: str | None,
        from_karat: str,
        to_karat: str,
        from_weight: Amount,
        *,
        actor: str,
        reference: str | None = None,
    ) -> dict[str, Any]:
        result = self._run(
            "karat_conversion",
            lambda: self.conversions.convert(
                branch_id, supplier_id, from_karat, to_karat, from_weight, actor, reference
            ),
        )
        return mappers.conversion_to_dict(result)

    def consolidate(
        self, item_ref: str | ItemRef, supplier_id: str | None, branch_id: str, *, actor: str
    ) -> dict[str, Any]:
        result = self._run(
            "consolidation",
            lambda: self.consolidation.consolidate(_item(item_ref), supplier_id, branch_id, actor),
        )
        return mappers.consolidation_to_dict(result)

    def consolidate_supplier(
        self, supplier_id: str | None, branch_id: str, *, actor: str
    ) -> list[dict[str, Any]]:
        results = self._run(
            "supplier_consolidation",
            lambda: self.consolidation.consolidate_supplier(supplier_id, branch_id, actor),
        )
        return [mappers.consolidation_to_dict(r) for r in results]

    def _run(self, name: str, operation):
        return retry_on_conflict(
            operation,
            max_attempts=self.config.concurrency.max_retry_attempts,
            backoff_seconds=self.config.concurrency.retry_backoff_seconds,
            operation_name=name,
        )
