"""
Retry helper for conflicting ledger operations.

Responsibility:
    Re-run a ledger operation that failed with ConflictError (lock timeout
    or stale lot version), with exponential backoff.

Architecture position:
    Kernel > Services.  Used by the public API layer; ledger services
    themselves never retry.

Invariants enforced:
    - Only exceptions with ``retryable = True`` are retried.  Business
      rejections (insufficient ownership, credit limit, ...) propagate on
      the first attempt.
    - The operation is re-run from scratch each time, inside a new
      LedgerTransaction, so no partial state carries over.

Failure modes:
    - The last ConflictError propagates once ``max_attempts`` is reached.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

from gold_kernel.exceptions import GoldLedgerError
from gold_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
    operation_name: str = "ledger_operation",
) -> T:
    """
    Run ``operation`` and retry it on retryable ledger errors.

    Args:
        operation: Zero-argument callable performing one complete operation.
        max_attempts: Total attempts including the first (>= 1).
        backoff_seconds: Base delay; attempt n waits backoff * 2**(n-1).
        sleep: Injected for tests.
        operation_name: Included in the retry log events.

    Returns:
        Whatever ``operation`` returns.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return operation()
        except GoldLedgerError as exc:
            if not exc.retryable or attempt >= max_attempts:
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "ledger_operation_retry",
                extra={
                    "operation_name": operation_name,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_seconds": delay,
                    "error_code": exc.code,
                },
            )
            sleep(delay)
            attempt += 1
