"""
LedgerTransaction -- per-identity locking and the atomic unit of work.

Responsibility:
    Every mutating ledger operation runs inside ``LedgerTransaction.scope``:
    acquire the identity locks it touches (sorted, bounded wait), open a
    fresh session, run the operation, commit, release.  Any exception rolls
    the whole operation back.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Owns the
    commit/rollback boundary; the services it wraps only flush.

Invariants enforced:
    - Serialization: two operations that share an identity key never
      interleave.  Keys are acquired in sorted order, so two operations
      that need overlapping key sets cannot deadlock each other.
    - Atomicity: lock -> read -> validate -> write movements -> write lots ->
      commit, or nothing.
    - Bounded waiting: a lock not acquired within ``lock_timeout`` seconds
      raises ConflictError, which callers may retry.

Failure modes:
    - ConflictError on lock timeout.
    - ConflictError when the lot version check fails at flush
      (StaleDataError) or the database reports a lock timeout.
    - Any other exception propagates unchanged after rollback.

Audit relevance:
    Every scope logs ``ledger_transaction_committed`` or
    ``ledger_transaction_rolled_back`` with its operation name and keys.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from gold_kernel.exceptions import ConflictError
from gold_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.lock_scope")

_DB_LOCK_MARKERS = ("database is locked", "lock timeout", "could not obtain lock", "deadlock")


class IdentityLockManager:
    """
    In-process lock table keyed by lot identity.

    Contract:
        ``hold(keys, timeout)`` blocks until every key is held or the
        timeout elapses.  The timeout bounds the whole acquisition, not each
        key.

    Non-goals:
        - Does NOT coordinate across processes; multi-process deployments
          rely on PostgreSQL row locks and the lot version counter.
    """

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[str], timeout: float) -> Iterator[tuple[str, ...]]:
        ordered = tuple(sorted(set(keys)))
        acquired: list[threading.Lock] = []
        deadline = time.monotonic() + timeout
        try:
            for key in ordered:
                lock = self._lock_for(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    logger.warning(
                        "identity_lock_timeout",
                        extra={"lock_key": key, "timeout_seconds": timeout},
                    )
                    raise ConflictError(key, f"lock not acquired within {timeout}s")
                acquired.append(lock)
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()


def _is_db_lock_error(exc: OperationalError) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _DB_LOCK_MARKERS)


class LedgerTransaction:
    """
    Unit of work for ledger mutations.

    Contract:
        ``with tx.scope(keys, "sale") as session:`` yields a new session with
        the keys held.  The session is committed on normal exit.

    Guarantees:
        - The session is always closed and the keys always released.
        - StaleDataError and database lock timeouts surface as ConflictError.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        lock_manager: IdentityLockManager | None = None,
        lock_timeout: float = 10.0,
    ):
        self._session_factory = session_factory
        self.lock_manager = lock_manager or IdentityLockManager()
        self.lock_timeout = lock_timeout

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """Lock-free session for selectors and pre-reads. Never committed."""
        session = self._session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()

    @contextmanager
    def scope(self, keys: Iterable[str], operation: str) -> Iterator[Session]:
        with self.lock_manager.hold(keys, self.lock_timeout) as held:
            session = self._session_factory()
            with LogContext.bind(operation=operation):
                try:
                    yield session
                    session.commit()
                except StaleDataError as exc:
                    session.rollback()
                    logger.warning(
                        "ledger_transaction_conflict",
                        extra={"operation": operation, "lock_keys": list(held)},
                    )
                    raise ConflictError(",".join(held), "lot changed concurrently") from exc
                except OperationalError as exc:
                    session.rollback()
                    if _is_db_lock_error(exc):
                        logger.warning(
                            "ledger_transaction_db_lock_timeout",
                            extra={"operation": operation, "lock_keys": list(held)},
                        )
                        raise ConflictError(",".join(held), "database lock timeout") from exc
                    raise
                except Exception:
                    session.rollback()
                    logger.info(
                        "ledger_transaction_rolled_back",
                        extra={"operation": operation, "lock_keys": list(held)},
                    )
                    raise
                else:
                    logger.debug(
                        "ledger_transaction_committed",
                        extra={"operation": operation, "lock_keys": list(held)},
                    )
                finally:
                    session.close()
