"""
gold_services -- Stateful services over the ownership ledger.

Costing, karat conversion, consolidation, sale validation, alerts and
supplier credit, plus OwnershipApi which wires them together.  Each
service composes gold_kernel (persistence, locking, movements) with the
pure gold_engines calculators.
"""

from gold_services.balance_validator import BalanceValidator, SaleValidation
from gold_services.collaborators import (
    Catalog,
    ConfigPurityTable,
    InMemoryCatalog,
    InMemorySupplierRegistry,
    ItemInfo,
    PurityTable,
    StaticPurityTable,
    SupplierInfo,
    SupplierRegistry,
)
from gold_services.consolidation_service import ConsolidationOpportunity, ConsolidationService
from gold_services.costing_service import CostingEngine
from gold_services.karat_conversion_service import KaratConversionService
from gold_services.ownership_alerts import OwnershipAlert, OwnershipAlertService, SaleRiskItem
from gold_services.supplier_credit_guard import CreditCheck, SupplierCreditGuard
from gold_services.ownership_api import OwnershipApi

__all__ = [
    "BalanceValidator",
    "Catalog",
    "ConfigPurityTable",
    "ConsolidationOpportunity",
    "ConsolidationService",
    "CostingEngine",
    "CreditCheck",
    "InMemoryCatalog",
    "InMemorySupplierRegistry",
    "ItemInfo",
    "KaratConversionService",
    "OwnershipAlert",
    "OwnershipAlertService",
    "OwnershipApi",
    "PurityTable",
    "SaleRiskItem",
    "SaleValidation",
    "StaticPurityTable",
    "SupplierCreditGuard",
    "SupplierInfo",
    "SupplierRegistry",
]
