"""Database layer - engine, base classes and exact decimal types."""

from gold_kernel.db.base import UUID, Base, UUIDString
from gold_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from gold_kernel.db.types import LedgerDecimal, round_money, round_weight

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
    "LedgerDecimal",
    "round_money",
    "round_weight",
]
