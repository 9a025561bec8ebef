"""
Hand-written mappers from ledger value objects to plain dicts.

Money is reported to 2 places and weights/quantities to 3, as strings so
that no float ever carries a ledger figure.  Ids are strings, datetimes
ISO 8601.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from gold_engines.costing import CostAnalysis, CostQuote, CostSource, WeightedAverage
from gold_engines.karat import KaratQuote
from gold_kernel.db.types import round_money, round_weight
from gold_kernel.domain.dtos import (
    ConsolidationResult,
    ConversionResult,
    LotSnapshot,
    MovementRecord,
    MovementResult,
    SaleResult,
    WaiverResult,
)
from gold_kernel.selectors.ownership_selector import (
    BatchSummary,
    ConversionHistoryEntry,
    ReplayResult,
    WaiverHistoryEntry,
)
from gold_services.balance_validator import SaleValidation
from gold_services.consolidation_service import ConsolidationOpportunity
from gold_services.gold_balance_service import (
    GoldBalanceSummary,
    MerchantKaratBalance,
    SupplierKaratBalance,
)
from gold_services.ownership_alerts import OwnershipAlert, SaleRiskItem, SupplierExposure
from gold_services.supplier_credit_guard import CreditCheck


def _money(value: Decimal | None) -> str | None:
    return None if value is None else str(round_money(value))


def _weight(value: Decimal | None) -> str | None:
    return None if value is None else str(round_weight(value))


def _id(value: UUID | None) -> str | None:
    return None if value is None else str(value)


def _ts(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


def lot_to_dict(lot: LotSnapshot) -> dict[str, Any]:
    return {
        "lot_id": str(lot.lot_id),
        "item_ref": lot.item.key,
        "branch_id": lot.branch_id,
        "supplier_id": lot.supplier_id,
        "lot_key": lot.lot_key,
        "unit_basis": lot.unit_basis,
        "currency": lot.currency,
        "total_weight": _weight(lot.total_weight),
        "total_quantity": _weight(lot.total_quantity),
        "total_cost": _money(lot.total_cost),
        "unit_cost": _money(lot.unit_cost),
        "amount_paid": _money(lot.amount_paid),
        "amount_owed": _money(lot.amount_owed),
        "ownership_percentage": _money(lot.ownership_percentage),
        "payment_status": lot.payment_status,
        "is_active": lot.is_active,
        "layer_date": _ts(lot.layer_date),
        "created_at": _ts(lot.created_at),
        "last_movement_at": _ts(lot.last_movement_at),
        "depleted_at": _ts(lot.depleted_at),
    }


def movement_to_dict(movement: MovementRecord) -> dict[str, Any]:
    return {
        "movement_id": str(movement.movement_id),
        "lot_id": str(movement.lot_id),
        "sequence": movement.sequence,
        "movement_type": movement.movement_type.value,
        "weight_change": _weight(movement.weight_change),
        "quantity_change": _weight(movement.quantity_change),
        "cost_change": _money(movement.cost_change),
        "paid_change": _money(movement.paid_change),
        "amount_change": _money(movement.amount_change),
        "weight_balance_after": _weight(movement.weight_balance_after),
        "quantity_balance_after": _weight(movement.quantity_balance_after),
        "amount_owed_after": _money(movement.amount_owed_after),
        "reference_number": movement.reference_number,
        "created_by": movement.created_by,
        "timestamp": _ts(movement.timestamp),
        "correlation_id": _id(movement.correlation_id),
        "notes": movement.notes,
    }


def movement_result_to_dict(result: MovementResult) -> dict[str, Any]:
    return {
        "lot": lot_to_dict(result.lot),
        "movement": movement_to_dict(result.movement),
        "warnings": list(result.warnings),
    }


def sale_to_dict(result: SaleResult) -> dict[str, Any]:
    return {
        "item_ref": result.item.key,
        "branch_id": result.branch_id,
        "requested": _weight(result.requested),
        "cost_of_sale": _money(result.cost_of_sale),
        "unpaid_released": _money(result.unpaid_released),
        "depletions": [
            {
                "lot_id": str(d.lot_id),
                "supplier_id": d.supplier_id,
                "weight": _weight(d.weight),
                "quantity": _weight(d.quantity),
                "cost_released": _money(d.cost_released),
                "paid_released": _money(d.paid_released),
                "owed_released": _money(d.owed_released),
                "movement_id": str(d.movement.movement_id),
            }
            for d in result.depletions
        ],
    }


def waiver_to_dict(result: WaiverResult) -> dict[str, Any]:
    return {
        "waiver_id": str(result.waiver_id),
        "source_lot": lot_to_dict(result.source_lot),
        "target_lot": lot_to_dict(result.target_lot),
        "weight": _weight(result.weight),
        "value_applied": _money(result.value_applied),
    }


def conversion_to_dict(result: ConversionResult) -> dict[str, Any]:
    return {
        "conversion_id": str(result.conversion_id),
        "from_karat": result.from_karat,
        "to_karat": result.to_karat,
        "from_weight": _weight(result.from_weight),
        "to_weight": _weight(result.to_weight),
        "rate": str(result.rate.normalize()),
        "cost_transferred": _money(result.cost_transferred),
        "paid_transferred": _money(result.paid_transferred),
        "source_lots": [lot_to_dict(lot) for lot in result.source_lots],
        "target_lot": lot_to_dict(result.target_lot),
        "debit_movement_ids": [str(m.movement_id) for m in result.debits],
        "credit_movement_id": str(result.credit.movement_id),
    }


def waiver_history_to_dict(entry: WaiverHistoryEntry) -> dict[str, Any]:
    return {
        "waiver_id": str(entry.waiver_id),
        "item_ref": entry.item.key,
        "branch_id": entry.branch_id,
        "supplier_id": entry.supplier_id,
        "source_lot_id": str(entry.source_lot_id),
        "target_lot_id": str(entry.target_lot_id),
        "weight": _weight(entry.weight),
        "value_applied": _money(entry.value_applied),
        "reference_number": entry.reference_number,
        "created_by": entry.created_by,
        "created_at": _ts(entry.created_at),
    }


def karat_quote_to_dict(quote: KaratQuote) -> dict[str, Any]:
    return {
        "from_karat": quote.from_karat,
        "to_karat": quote.to_karat,
        "from_weight": _weight(quote.from_weight),
        "fine_weight": _weight(quote.fine_weight),
        "to_weight": _weight(quote.to_weight),
        "from_purity": str(quote.from_purity),
        "to_purity": str(quote.to_purity),
        "rate": str(quote.rate.normalize()),
    }


def conversion_history_to_dict(entry: ConversionHistoryEntry) -> dict[str, Any]:
    return {
        "conversion_id": str(entry.conversion_id),
        "branch_id": entry.branch_id,
        "supplier_id": entry.supplier_id,
        "from_karat": entry.from_karat,
        "to_karat": entry.to_karat,
        "from_weight": _weight(entry.from_weight),
        "to_weight": _weight(entry.to_weight),
        "rate": str(entry.rate.normalize()),
        "source_lot_ids": [str(i) for i in entry.source_lot_ids],
        "target_lot_id": str(entry.target_lot_id),
        "reference_number": entry.reference_number,
        "created_by": entry.created_by,
        "created_at": _ts(entry.created_at),
    }


def consolidation_to_dict(result: ConsolidationResult) -> dict[str, Any]:
    return {
        "batch_id": str(result.batch_id),
        "source_lot_ids": [str(i) for i in result.source_lot_ids],
        "target_lot": lot_to_dict(result.target_lot),
        "total_weight": _weight(result.total_weight),
        "total_quantity": _weight(result.total_quantity),
        "total_cost": _money(result.total_cost),
        "total_paid": _money(result.total_paid),
        "total_owed": _money(result.total_owed),
        "weighted_average_cost": _money(result.weighted_average_cost),
        "movement_count": len(result.movements),
    }


def batch_to_dict(batch: BatchSummary) -> dict[str, Any]:
    return {
        "batch_id": str(batch.batch_id),
        "item_ref": batch.item.key,
        "branch_id": batch.branch_id,
        "supplier_id": batch.supplier_id,
        "source_lot_ids": [str(i) for i in batch.source_lot_ids],
        "target_lot_id": str(batch.target_lot_id),
        "total_weight": _weight(batch.total_weight),
        "total_cost": _money(batch.total_cost),
        "weighted_average_cost": _money(batch.weighted_average_cost),
        "created_by": batch.created_by,
        "created_at": _ts(batch.created_at),
    }


def opportunity_to_dict(opportunity: ConsolidationOpportunity) -> dict[str, Any]:
    return {
        "item_ref": opportunity.item.key,
        "branch_id": opportunity.branch_id,
        "supplier_id": opportunity.supplier_id,
        "lot_count": opportunity.lot_count,
        "total_weight": _weight(opportunity.total_weight),
        "total_quantity": _weight(opportunity.total_quantity),
        "total_cost": _money(opportunity.total_cost),
        "total_owed": _money(opportunity.total_owed),
    }


def cost_source_to_dict(source: CostSource) -> dict[str, Any]:
    return {
        "lot_id": str(source.lot_id),
        "supplier_id": source.supplier_id,
        "lot_key": source.lot_key,
        "layer_date": _ts(source.layer_date),
        "measure": str(source.measure),
        "cost": str(source.cost),
        "unit_cost": str(source.unit_cost),
        "contribution_percentage": str(source.contribution_percentage),
    }


def cost_quote_to_dict(quote: CostQuote) -> dict[str, Any]:
    return {
        "method": quote.method.value,
        "requested": str(quote.requested),
        "available": str(quote.available),
        "total_cost": str(quote.total_cost),
        "unit_cost": str(quote.unit_cost),
        "sources": [cost_source_to_dict(s) for s in quote.sources],
    }


def weighted_average_to_dict(result: WeightedAverage) -> dict[str, Any]:
    return {
        "lot_count": result.lot_count,
        "total_weight": str(result.total_weight),
        "total_quantity": str(result.total_quantity),
        "total_cost": str(result.total_cost),
        "unit_cost": str(result.unit_cost),
        "sources": [cost_source_to_dict(s) for s in result.sources],
    }


def cost_analysis_to_dict(analysis: CostAnalysis) -> dict[str, Any]:
    return {
        "requested": str(analysis.requested),
        "weighted_average": cost_quote_to_dict(analysis.weighted_average),
        "fifo": cost_quote_to_dict(analysis.fifo),
        "lifo": cost_quote_to_dict(analysis.lifo),
        "recommended_method": analysis.recommended.value,
    }


def validation_to_dict(validation: SaleValidation) -> dict[str, Any]:
    return {
        "can_sell": validation.can_sell,
        "message": validation.message,
        "requested": str(validation.requested),
        "available_quantity": str(validation.available_quantity),
        "paid_quantity": str(validation.paid_quantity),
        "shortfall": str(validation.shortfall),
        "ownership_percentage": str(validation.ownership_percentage),
        "warnings": list(validation.warnings),
    }


def credit_check_to_dict(check: CreditCheck) -> dict[str, Any]:
    return {
        "supplier_id": check.supplier_id,
        "allowed": check.allowed,
        "current_balance": _money(check.current_balance),
        "limit": _money(check.limit),
        "additional": _money(check.additional),
        "would_exceed": check.would_exceed,
        "enforced": check.enforced,
        "available_credit": _money(check.available_credit),
        "utilization_after": _money(check.utilization_after),
        "warnings": list(check.warnings),
        "reason": check.reason,
    }


def alert_to_dict(alert: OwnershipAlert) -> dict[str, Any]:
    return {
        "type": alert.alert_type,
        "severity": alert.severity,
        "message": alert.message,
        "item_ref": alert.item.key if alert.item is not None else None,
        "branch_id": alert.branch_id,
        "supplier_id": alert.supplier_id,
        "lot_id": _id(alert.lot_id),
        "ownership_percentage": _money(alert.ownership_percentage),
        "outstanding_amount": _money(alert.outstanding_amount),
    }


def _exposure_to_dict(exposure: SupplierExposure) -> dict[str, Any]:
    return {
        "supplier_id": exposure.supplier_id,
        "supplier_name": exposure.supplier_name,
        "outstanding_amount": str(exposure.outstanding_amount),
        "amount_paid": str(exposure.amount_paid),
        "total_cost": str(exposure.total_cost),
        "payment_status": exposure.payment_status,
    }


def sale_risk_to_dict(item: SaleRiskItem) -> dict[str, Any]:
    return {
        "item_ref": item.item.key,
        "item_name": item.item_name,
        "branch_id": item.branch_id,
        "available_quantity": str(item.available_quantity),
        "total_outstanding": str(item.total_outstanding),
        "unpaid_suppliers": [_exposure_to_dict(e) for e in item.suppliers],
    }


def replay_to_dict(replay: ReplayResult) -> dict[str, Any]:
    return {
        "lot_id": str(replay.lot_id),
        "movement_count": replay.movement_count,
        "matches": replay.matches,
        "weight": str(replay.weight),
        "quantity": str(replay.quantity),
        "cost": str(replay.cost),
        "paid": str(replay.paid),
        "owed": str(replay.owed),
    }


def supplier_balance_to_dict(balance: SupplierKaratBalance) -> dict[str, Any]:
    return {
        "branch_id": balance.branch_id,
        "supplier_id": balance.supplier_id,
        "karat_id": balance.karat_id,
        "lot_count": balance.lot_count,
        "total_weight": _weight(balance.total_weight),
        "total_cost": _money(balance.total_cost),
        "amount_paid": _money(balance.amount_paid),
        "amount_owed": _money(balance.amount_owed),
        "average_cost": _money(balance.average_cost),
        "last_movement_at": _ts(balance.last_movement_at),
    }


def merchant_balance_to_dict(balance: MerchantKaratBalance) -> dict[str, Any]:
    return {
        "branch_id": balance.branch_id,
        "karat_id": balance.karat_id,
        "lot_ids": [str(i) for i in balance.lot_ids],
        "available_weight": _weight(balance.available_weight),
        "average_cost": _money(balance.average_cost),
        "total_value": _money(balance.total_value),
        "last_movement_at": _ts(balance.last_movement_at),
    }


def balance_summary_to_dict(summary: GoldBalanceSummary) -> dict[str, Any]:
    return {
        "branch_id": summary.branch_id,
        "supplier_balances": [supplier_balance_to_dict(b) for b in summary.supplier_balances],
        "merchant_balances": [merchant_balance_to_dict(b) for b in summary.merchant_balances],
        "total_debt": _money(summary.total_debt),
        "total_credit": _money(summary.total_credit),
        "net_balance": _money(summary.net_balance),
        "generated_at": _ts(summary.generated_at),
    }
