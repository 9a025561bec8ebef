"""
KaratConversionService: moving gold between purities without losing fine
gold, cost basis or what is owed for it.
"""

from decimal import Decimal

import pytest

from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import (
    InsufficientOwnershipError,
    InvalidConversionWeightError,
    UnknownKaratError,
)
from gold_kernel.models.ownership_movement import MovementType

BRANCH = "BR-CAIRO"
SUPPLIER = "SUP-NILE"
GOLD_18K = ItemRef.raw_gold("18K")
GOLD_24K = ItemRef.raw_gold("24K")


@pytest.fixture
def partly_paid(receive, ledger):
    """10 g of 18K at 100/g from SUP-NILE, 400 paid."""
    received = receive(weight="10", unit_cost="100")
    ledger.apply_payment(received.lot.lot_id, "400", reference="PAY-1", actor="clerk")
    return received


class TestConvert:
    def test_weight_follows_purity(self, conversions, partly_paid):
        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk")

        assert result.from_weight == Decimal("4")
        assert result.to_weight == Decimal("3")
        assert result.rate == Decimal("0.75")
        assert result.source_lots[0].total_weight == Decimal("6")
        assert result.target_lot.total_weight == Decimal("3")
        assert result.target_lot.item == GOLD_24K
        assert result.target_lot.supplier_id == SUPPLIER

    def test_cost_and_paid_carried_proportionally(self, conversions, partly_paid):
        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk")

        assert result.cost_transferred == Decimal("400")
        assert result.paid_transferred == Decimal("160")
        assert result.source_lots[0].total_cost == Decimal("600")
        assert result.source_lots[0].amount_paid == Decimal("240")
        assert result.target_lot.total_cost == Decimal("400")
        assert result.target_lot.amount_owed == Decimal("240")

    def test_totals_conserved(self, conversions, ledger, partly_paid):
        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk")

        lots = [ledger.get_lot(result.source_lots[0].lot_id), ledger.get_lot(result.target_lot.lot_id)]
        assert sum(lot.total_cost for lot in lots) == Decimal("1000")
        assert sum(lot.amount_owed for lot in lots) == Decimal("600")
        for lot in lots:
            assert ledger.replay(lot.lot_id).matches

    def test_both_legs_share_conversion_id(self, conversions, partly_paid):
        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk")

        assert result.debits[0].movement_type == MovementType.KARAT_CONVERSION_DEBIT
        assert result.credit.movement_type == MovementType.KARAT_CONVERSION_CREDIT
        assert result.debits[0].correlation_id == result.conversion_id
        assert result.credit.correlation_id == result.conversion_id
        assert result.debits[0].reference_number.startswith("KC-")
        assert result.debits[0].reference_number == result.credit.reference_number

    def test_full_conversion_depletes_source(self, conversions, ledger, partly_paid):
        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "10", "clerk", "KC-FULL")

        assert result.source_lots[0].total_weight == Decimal("0")
        assert result.source_lots[0].depleted_at is not None
        assert result.target_lot.total_cost == Decimal("1000")
        assert result.target_lot.amount_paid == Decimal("400")
        assert ledger.active_lots(GOLD_18K, BRANCH) == []

    def test_repeat_conversion_reuses_target_lot(self, conversions, partly_paid):
        first = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "2", "clerk")
        second = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "2", "clerk")

        assert first.target_lot.lot_id == second.target_lot.lot_id
        assert second.target_lot.total_weight == Decimal("3")

    def test_merchant_gold(self, conversions, ledger):
        ledger.apply_customer_buy_in(
            GOLD_18K, BRANCH, weight="8", unit_cost="90", reference="BUY-1", actor="clerk"
        )

        result = conversions.convert(BRANCH, None, "18K", "24K", "8", "clerk")
        assert result.target_lot.supplier_id is None
        assert result.target_lot.amount_owed == Decimal("0")


    def test_history_lists_both_legs_lots(self, conversions, partly_paid):
        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk")

        entry = conversions.history(BRANCH)[0]
        assert entry.source_lot_ids == (partly_paid.lot.lot_id,)
        assert entry.target_lot_id == result.target_lot.lot_id


class TestHistory:
    def test_history_records_conversion(self, conversions, partly_paid):
        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk", "KC-42")

        history = conversions.history(BRANCH)
        assert len(history) == 1
        entry = history[0]
        assert entry.conversion_id == result.conversion_id
        assert entry.reference_number == "KC-42"
        assert (entry.from_karat, entry.to_karat) == ("18K", "24K")
        assert entry.to_weight == Decimal("3")

    def test_history_filtered_by_branch(self, conversions, partly_paid):
        conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk")
        assert conversions.history("BR-ALEX") == []

    def test_quote_is_read_only(self, conversions, ledger, partly_paid):
        quote = conversions.quote("18K", "21K", "7")

        assert quote.to_weight == Decimal("6")
        assert ledger.get_lot(partly_paid.lot.lot_id).total_weight == Decimal("10")


class TestRejections:
    def test_more_than_available(self, conversions, ledger, partly_paid):
        with pytest.raises(InsufficientOwnershipError):
            conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "11", "clerk")

        assert ledger.get_lot(partly_paid.lot.lot_id).total_weight == Decimal("10")
        assert ledger.active_lots(GOLD_24K, BRANCH) == []

    def test_missing_source_lot(self, conversions, partly_paid):
        with pytest.raises(InsufficientOwnershipError) as exc_info:
            conversions.convert(BRANCH, SUPPLIER, "21K", "24K", "1", "clerk")
        assert exc_info.value.available == Decimal("0")

    def test_same_karat(self, conversions, partly_paid):
        with pytest.raises(InvalidConversionWeightError):
            conversions.convert(BRANCH, SUPPLIER, "18K", "18K", "1", "clerk")

    def test_unknown_karat(self, conversions, partly_paid):
        with pytest.raises(UnknownKaratError):
            conversions.convert(BRANCH, SUPPLIER, "18K", "9K", "1", "clerk")

    def test_zero_weight(self, conversions, partly_paid):
        with pytest.raises(InvalidConversionWeightError):
            conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "0", "clerk")


class TestRoundTrip:
    def test_18k_to_24k_and_back(self, conversions, ledger, partly_paid):
        there = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "10", "clerk")
        assert there.to_weight == Decimal("7.5")

        back = conversions.convert(BRANCH, SUPPLIER, "24K", "18K", "7.5", "clerk")
        assert back.to_weight == Decimal("10")

        lot = ledger.get_lot(partly_paid.lot.lot_id)
        assert back.target_lot.lot_id == lot.lot_id
        assert lot.total_weight == Decimal("10")
        assert lot.total_cost == Decimal("1000")
        assert lot.amount_owed == Decimal("600")
        assert ledger.active_lots(GOLD_24K, BRANCH) == []


class TestIdentityBalance:
    def test_converts_consolidated_stock(self, conversions, consolidation, ledger, receive):
        receive(weight="3", unit_cost="100")
        receive(weight="2", unit_cost="300", lot_key="tray-2")
        merged = consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")

        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "1", "clerk")

        assert [lot.lot_id for lot in result.source_lots] == [merged.target_lot.lot_id]
        assert result.source_lots[0].total_weight == Decimal("4")
        assert result.cost_transferred == Decimal("180")
        assert result.to_weight == Decimal("0.75")
        assert ledger.replay(merged.target_lot.lot_id).matches

    def test_draws_across_lots_oldest_first(self, conversions, ledger, receive):
        first = receive(weight="3", unit_cost="100")
        second = receive(weight="2", unit_cost="300", lot_key="PO-2")

        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "4", "clerk")

        assert [lot.lot_id for lot in result.source_lots] == [first.lot.lot_id, second.lot.lot_id]
        assert result.source_lots[0].depleted_at is not None
        assert result.source_lots[1].total_weight == Decimal("1")
        assert result.to_weight == Decimal("3")
        assert result.cost_transferred == Decimal("600")
        assert result.target_lot.amount_owed == Decimal("600")
        assert len(result.debits) == 2
        assert {m.correlation_id for m in result.debits} == {result.conversion_id}
        assert conversions.history(BRANCH)[0].source_lot_ids == (first.lot.lot_id, second.lot.lot_id)
        for lot_id in (first.lot.lot_id, second.lot.lot_id, result.target_lot.lot_id):
            assert ledger.replay(lot_id).matches

    def test_lot_key_narrows_the_draw(self, conversions, receive):
        receive(weight="3", unit_cost="100")
        tray = receive(weight="2", unit_cost="300", lot_key="PO-2")

        with pytest.raises(InsufficientOwnershipError) as exc_info:
            conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "3", "clerk", lot_key="PO-2")
        assert exc_info.value.available == Decimal("2")

        result = conversions.convert(BRANCH, SUPPLIER, "18K", "24K", "2", "clerk", lot_key="PO-2")
        assert [lot.lot_id for lot in result.source_lots] == [tray.lot.lot_id]
        assert result.cost_transferred == Decimal("600")
