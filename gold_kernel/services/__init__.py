"""Ledger services: transaction scope, movement recording and ledger commands."""

from gold_kernel.services.lock_scope import IdentityLockManager, LedgerTransaction
from gold_kernel.services.movement_recorder import MovementRecorder
from gold_kernel.services.ownership_ledger import OwnershipLedger, ReceiptCreditPolicy
from gold_kernel.services.retry import retry_on_conflict

__all__ = [
    "IdentityLockManager",
    "LedgerTransaction",
    "MovementRecorder",
    "OwnershipLedger",
    "ReceiptCreditPolicy",
    "retry_on_conflict",
]
