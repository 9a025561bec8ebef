"""Domain models for the gold ownership ledger."""

from gold_kernel.models.correlation import ConsolidationBatch, KaratConversion, WaiverRecord
from gold_kernel.models.ownership_lot import ItemKind, OwnershipLot, UnitBasis
from gold_kernel.models.ownership_movement import MovementType, OwnershipMovement

__all__ = [
    "ConsolidationBatch",
    "ItemKind",
    "KaratConversion",
    "MovementType",
    "OwnershipLot",
    "OwnershipMovement",
    "UnitBasis",
    "WaiverRecord",
]
