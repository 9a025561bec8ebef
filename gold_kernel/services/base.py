"""
BaseService -- abstract base for session-bound ledger services.

Responsibility:
    Common constructor for services that work inside a caller-owned
    session.  They persist with ``session.flush()`` and never commit.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: the caller (LedgerTransaction) owns
      commit/rollback, so a multi-movement operation is atomic.
"""

from abc import ABC

from sqlalchemy.orm import Session

from gold_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for session-bound services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-only queries -- those belong in selectors/.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
