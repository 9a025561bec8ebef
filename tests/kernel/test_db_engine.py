"""
Engine lifecycle and session_scope commit/rollback.
"""

import pytest
from sqlalchemy import func, select

from gold_kernel.db.engine import (
    get_engine,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from gold_kernel.domain.values import ItemRef, LotIdentity
from gold_kernel.models.ownership_lot import OwnershipLot
from gold_kernel.services.lot_writer import LotWriter


def lot_count(session):
    return session.execute(select(func.count()).select_from(OwnershipLot)).scalar_one()


class TestSessionScope:
    def test_commits_on_success(self, db_engine, clock):
        identity = LotIdentity(ItemRef.raw_gold("18K"), "BR-1", "SUP-1")
        with session_scope() as session:
            LotWriter(session, clock).get_or_create(identity, actor="clerk", currency="EGP")

        with session_scope() as session:
            assert lot_count(session) == 1

    def test_rolls_back_on_error(self, db_engine, clock, captured_logs):
        identity = LotIdentity(ItemRef.raw_gold("18K"), "BR-1", "SUP-1")
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                LotWriter(session, clock).get_or_create(identity, actor="clerk", currency="EGP")
                raise RuntimeError("boom")

        with session_scope() as session:
            assert lot_count(session) == 0
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


class TestEngineLifecycle:
    def test_sqlite_is_not_postgres(self, db_engine):
        assert get_engine() is db_engine
        assert not is_postgres()

    def test_uninitialized_engine_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session_factory()
        assert not is_postgres()

    def test_init_logs_dialect(self, captured_logs):
        init_engine_from_url("sqlite://")
        try:
            initialized = [r for r in captured_logs() if r["message"] == "engine_initialized"]
            assert initialized[-1]["dialect"] == "sqlite"
        finally:
            reset_engine()
