"""
ORM-Level Immutability Enforcement for the ownership ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement history is the ledger.  Lot balances are only a cache of it, so
the history must be append-only and the cache must never move without a
matching history row.  SQLAlchemy fires events before UPDATE/DELETE reach the
database; we intercept them here:

    session.flush()
         |
         v
    [before_flush]  --> _check_lot_balance_changes()  --> ImmutabilityViolationError
         |
         v
    [before_update] --> _reject_update()  ------------+
    [before_delete] --> _reject_delete()  ------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|-----------------------------------------------------
OwnershipMovement   | Never updated, never deleted
KaratConversion     | Never updated, never deleted
ConsolidationBatch  | Never updated, never deleted
WaiverRecord        | Never updated, never deleted
OwnershipLot        | Never deleted; balance columns change only together
                    | with a new OwnershipMovement for that lot in the
                    | same flush

===============================================================================
USAGE
===============================================================================

    from gold_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup; idempotent

Tests that need to tamper with history call unregister_immutability_listeners().
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from gold_kernel.exceptions import ImmutabilityViolationError
from gold_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_LOT_BALANCE_COLUMNS = (
    "total_weight",
    "total_quantity",
    "total_cost",
    "unit_cost",
    "amount_paid",
    "amount_owed",
)


def _block(entity_type: str, entity_id, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _reject_update(mapper, connection, target):
    """Append-only records cannot be updated."""
    _block(type(target).__name__, target.id, "UPDATE", "append-only record")


def _reject_delete(mapper, connection, target):
    """Append-only records and lots cannot be deleted."""
    _block(type(target).__name__, target.id, "DELETE", "ledger records are never deleted")


def _balance_changed(lot) -> bool:
    state = inspect(lot)
    return any(state.attrs[col].history.has_changes() for col in _LOT_BALANCE_COLUMNS)


def _check_lot_balance_changes(session, flush_context, instances):
    """
    Every lot whose balance columns change in this flush must have a new
    movement pointing at it in the same flush.
    """
    from gold_kernel.models.ownership_lot import OwnershipLot
    from gold_kernel.models.ownership_movement import OwnershipMovement

    moved_lot_ids = {
        obj.lot_id for obj in session.new if isinstance(obj, OwnershipMovement)
    }

    for obj in list(session.dirty):
        if not isinstance(obj, OwnershipLot):
            continue
        if obj.id in moved_lot_ids:
            continue
        if _balance_changed(obj):
            _block("OwnershipLot", obj.id, "UPDATE", "balance changed without a movement")

    for obj in list(session.new):
        if not isinstance(obj, OwnershipLot) or obj.id in moved_lot_ids:
            continue
        if any(getattr(obj, col) not in (None, 0) for col in _LOT_BALANCE_COLUMNS):
            _block("OwnershipLot", obj.id, "INSERT", "lot created with balances but no movement")


def _protected_models():
    from gold_kernel.models.correlation import ConsolidationBatch, KaratConversion, WaiverRecord
    from gold_kernel.models.ownership_movement import OwnershipMovement

    return (OwnershipMovement, KaratConversion, ConsolidationBatch, WaiverRecord)


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Call after the models are importable and before any database work.
    Calling twice is harmless.
    """
    from gold_kernel.models.ownership_lot import OwnershipLot

    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)

    if not event.contains(OwnershipLot, "before_delete", _reject_delete):
        event.listen(OwnershipLot, "before_delete", _reject_delete)

    if not event.contains(Session, "before_flush", _check_lot_balance_changes):
        event.listen(Session, "before_flush", _check_lot_balance_changes)

    logger.debug("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    from gold_kernel.models.ownership_lot import OwnershipLot

    for model in _protected_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
    _safe_remove_listener(OwnershipLot, "before_delete", _reject_delete)
    _safe_remove_listener(Session, "before_flush", _check_lot_balance_changes)
