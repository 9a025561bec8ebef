"""
OwnershipLedger: receipts, customer buy-ins, sales, payments, waivers and
adjustments against a real database.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from gold_kernel.domain.lot_selection import LifoSelection
from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import (
    IncompatibleWaiverError,
    InsufficientOwnershipError,
    InvalidMovementError,
    LotNotFoundError,
    PaymentExceedsOwedError,
)
from gold_kernel.models.ownership_movement import MovementType

BRANCH = "BR-CAIRO"
NILE = "SUP-NILE"
DELTA = "SUP-DELTA"
GOLD_18K = ItemRef.raw_gold("18K")
GOLD_21K = ItemRef.raw_gold("21K")
RING = ItemRef.product("RING-001")
ACTOR = "test-clerk"


@pytest.fixture
def two_layers(receive):
    """3 g @ 100 from Nile, then 2 g @ 300 from Delta."""
    older = receive(GOLD_18K, NILE, weight="3", unit_cost="100")
    newer = receive(GOLD_18K, DELTA, weight="2", unit_cost="300")
    return older.lot, newer.lot


def sell(ledger, amount, **kwargs):
    return ledger.apply_sale(
        GOLD_18K, BRANCH, Decimal(amount), reference="SALE-1", actor=ACTOR, **kwargs
    )


# =============================================================================
# Receipts
# =============================================================================


class TestReceipts:
    def test_receipt_creates_unpaid_lot(self, receive):
        result = receive(GOLD_18K, NILE, weight="10", unit_cost="100")
        lot = result.lot

        assert lot.total_weight == Decimal("10")
        assert lot.total_cost == Decimal("1000")
        assert lot.unit_cost == Decimal("100")
        assert lot.amount_paid == Decimal("0")
        assert lot.amount_owed == Decimal("1000")
        assert lot.supplier_id == NILE
        assert lot.currency == "EGP"
        assert result.movement.movement_type == MovementType.RECEIPT
        assert result.warnings == ()

    def test_second_receipt_reprices_at_weighted_average(self, receive):
        first = receive(GOLD_18K, NILE, weight="5", unit_cost="100")
        second = receive(GOLD_18K, NILE, weight="5", unit_cost="200")

        assert second.lot.lot_id == first.lot.lot_id
        assert second.lot.total_weight == Decimal("10")
        assert second.lot.total_cost == Decimal("1500")
        assert second.lot.unit_cost == Decimal("150")
        assert second.lot.amount_owed == Decimal("1500")
        assert second.movement.sequence == 2

    def test_product_receipt_is_costed_per_unit(self, receive):
        result = receive(RING, NILE, quantity="3", weight="12.6", unit_cost="2500")
        lot = result.lot

        assert lot.unit_basis == "unit"
        assert lot.total_quantity == Decimal("3")
        assert lot.total_weight == Decimal("12.6")
        assert lot.total_cost == Decimal("7500")
        assert lot.unit_cost == Decimal("2500")

    def test_separate_lot_keys_are_separate_lots(self, receive):
        a = receive(GOLD_18K, NILE, weight="1", lot_key="batch-a")
        b = receive(GOLD_18K, NILE, weight="1", lot_key="batch-b")
        assert a.lot.lot_id != b.lot.lot_id

    def test_zero_weight_rejected(self, ledger):
        with pytest.raises(InvalidMovementError, match="weight must be positive"):
            ledger.apply_receipt(
                GOLD_18K, BRANCH, NILE, weight="0", unit_cost="100", reference="INV", actor=ACTOR
            )

    def test_product_needs_quantity(self, ledger):
        with pytest.raises(InvalidMovementError, match="quantity must be positive"):
            ledger.apply_receipt(
                RING, BRANCH, NILE, weight="4", unit_cost="100", reference="INV", actor=ACTOR
            )

    def test_negative_unit_cost_rejected(self, ledger):
        with pytest.raises(InvalidMovementError, match="unit cost"):
            ledger.apply_receipt(
                GOLD_18K, BRANCH, NILE, weight="1", unit_cost="-1", reference="INV", actor=ACTOR
            )

    def test_float_amounts_rejected(self, ledger):
        with pytest.raises(TypeError):
            ledger.apply_receipt(
                GOLD_18K, BRANCH, NILE, weight=1.5, unit_cost="100", reference="INV", actor=ACTOR
            )

    def test_receipt_logs_lifecycle(self, receive, captured_logs):
        receive(GOLD_18K, NILE, weight="2", unit_cost="100")
        messages = [r["message"] for r in captured_logs()]
        assert "receipt_started" in messages
        assert "movement_recorded" in messages
        assert "ledger_transaction_committed" in messages
        assert "receipt_completed" in messages
        assert messages.index("receipt_started") < messages.index("receipt_completed")


class TestCustomerBuyIn:
    def test_buy_in_is_merchant_owned_and_paid(self, ledger):
        result = ledger.apply_customer_buy_in(
            GOLD_21K, BRANCH, weight="4", unit_cost="95", reference="BUY-1", actor=ACTOR
        )
        lot = result.lot

        assert lot.is_merchant_owned
        assert lot.total_cost == Decimal("380")
        assert lot.amount_paid == Decimal("380")
        assert lot.amount_owed == Decimal("0")
        assert lot.payment_status == "Paid"

    def test_merchant_receipt_without_supplier_is_unpaid(self, ledger):
        result = ledger.apply_receipt(
            GOLD_21K, BRANCH, None, weight="1", unit_cost="50", reference="INV", actor=ACTOR
        )
        assert result.lot.is_merchant_owned
        assert result.lot.amount_owed == Decimal("50")


# =============================================================================
# Sales
# =============================================================================


class TestSales:
    def test_fifo_sale_spans_layers(self, ledger, two_layers):
        older, newer = two_layers
        result = sell(ledger, "4")

        assert result.cost_of_sale == Decimal("600")
        assert [d.lot_id for d in result.depletions] == [older.lot_id, newer.lot_id]
        assert result.depletions[0].weight == Decimal("3")
        assert result.depletions[1].weight == Decimal("1")

        remaining = ledger.active_lots(GOLD_18K, BRANCH)
        assert [lot.lot_id for lot in remaining] == [newer.lot_id]
        assert remaining[0].total_weight == Decimal("1")
        assert remaining[0].total_cost == Decimal("300")

    def test_exhausted_lot_is_marked_depleted(self, ledger, two_layers):
        older, _ = two_layers
        sell(ledger, "3")
        lot = ledger.get_lot(older.lot_id)
        assert lot.depleted_at is not None
        assert not lot.is_active

    def test_lifo_sale_takes_newest_first(self, ledger, two_layers):
        result = sell(ledger, "4", strategy=LifoSelection())
        assert result.cost_of_sale == Decimal("800")

    def test_specific_supplier_sale(self, ledger, two_layers):
        _, newer = two_layers
        result = sell(ledger, "1", supplier_id=DELTA)
        assert [d.lot_id for d in result.depletions] == [newer.lot_id]
        assert result.cost_of_sale == Decimal("300")

    def test_specific_supplier_without_stock(self, ledger, two_layers):
        with pytest.raises(InsufficientOwnershipError):
            sell(ledger, "1", supplier_id="SUP-UNKNOWN")

    def test_insufficient_stock_changes_nothing(self, ledger, two_layers):
        with pytest.raises(InsufficientOwnershipError) as exc_info:
            sell(ledger, "6")

        assert exc_info.value.available == Decimal("5")
        assert exc_info.value.requested == Decimal("6")
        total = sum(lot.total_weight for lot in ledger.active_lots(GOLD_18K, BRANCH))
        assert total == Decimal("5")

    def test_no_stock_at_all(self, ledger):
        with pytest.raises(InsufficientOwnershipError):
            sell(ledger, "1")

    def test_non_positive_amount_rejected(self, ledger, two_layers):
        with pytest.raises(InvalidMovementError):
            sell(ledger, "0")

    def test_sale_releases_paid_share_proportionally(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="10", unit_cost="100").lot
        ledger.apply_payment(lot.lot_id, "400", reference="PAY-1", actor=ACTOR)

        result = sell(ledger, "5")
        depletion = result.depletions[0]
        assert depletion.cost_released == Decimal("500")
        assert depletion.paid_released == Decimal("200")
        assert depletion.owed_released == Decimal("300")
        assert result.unpaid_released == Decimal("300")

        after = ledger.get_lot(lot.lot_id)
        assert after.amount_paid == Decimal("200")
        assert after.amount_owed == Decimal("300")
        assert after.ownership_percentage == Decimal("40")

    def test_product_sale_counts_units(self, ledger, receive):
        receive(RING, NILE, quantity="3", weight="12", unit_cost="2500")
        result = ledger.apply_sale(RING, BRANCH, "2", reference="SALE-R", actor=ACTOR)

        assert result.cost_of_sale == Decimal("5000")
        assert result.depletions[0].quantity == Decimal("2")
        assert result.depletions[0].weight == Decimal("8")

    def test_depleted_lot_reactivated_by_next_receipt(self, ledger, receive):
        first = receive(GOLD_18K, NILE, weight="2", unit_cost="100").lot
        sell(ledger, "2")
        assert ledger.active_lots(GOLD_18K, BRANCH) == []

        again = receive(GOLD_18K, NILE, weight="1", unit_cost="120").lot
        assert again.lot_id == first.lot_id
        assert again.depleted_at is None
        assert again.unit_cost == Decimal("120")

    def test_other_branch_stock_not_sold(self, ledger, receive):
        receive(GOLD_18K, NILE, weight="5", branch_id="BR-ALEX")
        with pytest.raises(InsufficientOwnershipError):
            sell(ledger, "1")


# =============================================================================
# Payments
# =============================================================================


class TestPayments:
    def test_payment_reduces_owed(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="10", unit_cost="100").lot
        result = ledger.apply_payment(lot.lot_id, "400", reference="PAY-1", actor=ACTOR)

        assert result.lot.amount_paid == Decimal("400")
        assert result.lot.amount_owed == Decimal("600")
        assert result.lot.total_weight == Decimal("10")
        assert result.movement.movement_type == MovementType.PAYMENT
        assert result.movement.amount_change == Decimal("-400")

    def test_full_payment(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="1", unit_cost="100").lot
        result = ledger.apply_payment(lot.lot_id, "100", reference="PAY-1", actor=ACTOR)
        assert result.lot.payment_status == "Paid"

    def test_overpayment_rejected(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="1", unit_cost="100").lot
        with pytest.raises(PaymentExceedsOwedError) as exc_info:
            ledger.apply_payment(lot.lot_id, "100.01", reference="PAY-1", actor=ACTOR)
        assert exc_info.value.owed == Decimal("100")
        assert ledger.get_lot(lot.lot_id).amount_paid == Decimal("0")

    def test_non_positive_payment_rejected(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="1", unit_cost="100").lot
        with pytest.raises(InvalidMovementError):
            ledger.apply_payment(lot.lot_id, "0", reference="PAY-1", actor=ACTOR)

    def test_unknown_lot(self, ledger, db_engine):
        with pytest.raises(LotNotFoundError):
            ledger.apply_payment(uuid4(), "1", reference="PAY-1", actor=ACTOR)


# =============================================================================
# Waivers
# =============================================================================


class TestWaivers:
    @pytest.fixture
    def supplier_lot(self, receive):
        return receive(GOLD_18K, NILE, weight="10", unit_cost="100").lot

    @pytest.fixture
    def merchant_lot(self, ledger):
        return ledger.apply_customer_buy_in(
            GOLD_18K, BRANCH, weight="3", unit_cost="90", reference="BUY-1", actor=ACTOR
        ).lot

    def test_waiver_settles_owed_with_merchant_gold(self, ledger, supplier_lot, merchant_lot):
        result = ledger.apply_waiver(
            merchant_lot.lot_id, supplier_lot.lot_id, "2", reference="WV-1", actor=ACTOR
        )

        assert result.value_applied == Decimal("200")
        assert result.target_lot.amount_owed == Decimal("800")
        assert result.target_lot.total_weight == Decimal("10")
        assert result.source_lot.total_weight == Decimal("1")
        assert result.source_lot.total_cost == Decimal("90")
        assert result.debit.correlation_id == result.waiver_id
        assert result.credit.correlation_id == result.waiver_id

    def test_waiver_history(self, ledger, supplier_lot, merchant_lot):
        result = ledger.apply_waiver(
            merchant_lot.lot_id, supplier_lot.lot_id, "2", reference="WV-1", actor=ACTOR
        )

        history = ledger.waiver_history(BRANCH)
        assert len(history) == 1
        entry = history[0]
        assert entry.waiver_id == result.waiver_id
        assert (entry.source_lot_id, entry.target_lot_id) == (merchant_lot.lot_id, supplier_lot.lot_id)
        assert entry.item == GOLD_18K
        assert entry.supplier_id == NILE
        assert entry.weight == Decimal("2")
        assert entry.value_applied == Decimal("200")
        assert entry.reference_number == "WV-1"
        assert ledger.waiver_history("BR-ALEX") == []

    def test_source_must_be_merchant_owned(self, ledger, supplier_lot, receive):
        other = receive(GOLD_18K, DELTA, weight="2").lot
        with pytest.raises(IncompatibleWaiverError, match="merchant-owned"):
            ledger.apply_waiver(other.lot_id, supplier_lot.lot_id, "1", reference="WV", actor=ACTOR)

    def test_target_must_belong_to_supplier(self, ledger, merchant_lot):
        second = ledger.apply_customer_buy_in(
            GOLD_18K,
            BRANCH,
            weight="1",
            unit_cost="90",
            reference="BUY-2",
            actor=ACTOR,
            lot_key="tray-2",
        ).lot
        with pytest.raises(IncompatibleWaiverError, match="must belong to a supplier"):
            ledger.apply_waiver(merchant_lot.lot_id, second.lot_id, "1", reference="WV", actor=ACTOR)

    def test_items_must_match(self, ledger, merchant_lot, receive):
        other_item = receive(GOLD_21K, NILE, weight="5").lot
        with pytest.raises(IncompatibleWaiverError, match="item mismatch"):
            ledger.apply_waiver(merchant_lot.lot_id, other_item.lot_id, "1", reference="WV", actor=ACTOR)

    def test_waiver_value_above_owed_rejected(self, ledger, supplier_lot, merchant_lot):
        ledger.apply_payment(supplier_lot.lot_id, "950", reference="PAY-1", actor=ACTOR)
        with pytest.raises(PaymentExceedsOwedError):
            ledger.apply_waiver(
                merchant_lot.lot_id, supplier_lot.lot_id, "1", reference="WV", actor=ACTOR
            )

    def test_waiver_above_source_weight_rejected(self, ledger, supplier_lot, merchant_lot):
        with pytest.raises(InsufficientOwnershipError):
            ledger.apply_waiver(
                merchant_lot.lot_id, supplier_lot.lot_id, "4", reference="WV", actor=ACTOR
            )


# =============================================================================
# Adjustments and lots
# =============================================================================


class TestAdjustments:
    def test_decrease_releases_cost_like_a_sale(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="10", unit_cost="100").lot
        result = ledger.apply_adjustment(
            lot.lot_id, weight_change="-0.5", reference="COUNT-1", actor=ACTOR, notes="scale drift"
        )

        assert result.lot.total_weight == Decimal("9.5")
        assert result.lot.total_cost == Decimal("950")
        assert result.lot.unit_cost == Decimal("100")
        assert result.movement.notes == "scale drift"

    def test_increase_on_merchant_lot_is_paid(self, ledger):
        lot = ledger.apply_customer_buy_in(
            GOLD_18K, BRANCH, weight="2", unit_cost="90", reference="BUY-1", actor=ACTOR
        ).lot
        result = ledger.apply_adjustment(lot.lot_id, weight_change="1", reference="COUNT-1", actor=ACTOR)

        assert result.lot.total_cost == Decimal("270")
        assert result.lot.amount_owed == Decimal("0")

    def test_increase_on_supplier_lot_is_owed(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="2", unit_cost="100").lot
        result = ledger.apply_adjustment(lot.lot_id, weight_change="1", reference="COUNT-1", actor=ACTOR)
        assert result.lot.amount_owed == Decimal("300")

    def test_decrease_beyond_measure_rejected(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="2", unit_cost="100").lot
        with pytest.raises(InvalidMovementError, match="exceeds measure"):
            ledger.apply_adjustment(lot.lot_id, weight_change="-3", reference="COUNT-1", actor=ACTOR)

    def test_empty_adjustment_rejected(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="2", unit_cost="100").lot
        with pytest.raises(InvalidMovementError, match="changes nothing"):
            ledger.apply_adjustment(lot.lot_id, reference="COUNT-1", actor=ACTOR)


class TestLotQueries:
    def test_get_or_create_is_idempotent(self, ledger):
        a = ledger.get_or_create_lot(GOLD_18K, BRANCH, NILE, ACTOR)
        b = ledger.get_or_create_lot(GOLD_18K, BRANCH, NILE, ACTOR)
        assert a.lot_id == b.lot_id
        assert a.total_weight == Decimal("0")

    def test_get_or_create_rejects_currency_change(self, ledger):
        ledger.get_or_create_lot(GOLD_18K, BRANCH, NILE, ACTOR)
        with pytest.raises(InvalidMovementError, match="currency"):
            ledger.get_or_create_lot(GOLD_18K, BRANCH, NILE, ACTOR, currency="USD")

    def test_empty_lot_is_not_active(self, ledger):
        ledger.get_or_create_lot(GOLD_18K, BRANCH, NILE, ACTOR)
        assert ledger.active_lots(GOLD_18K, BRANCH) == []

    def test_active_lots_narrow_by_supplier(self, ledger, two_layers):
        lots = ledger.active_lots(GOLD_18K, BRANCH, DELTA)
        assert [lot.supplier_id for lot in lots] == [DELTA]

    def test_movement_history_in_order(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="10", unit_cost="100").lot
        ledger.apply_payment(lot.lot_id, "100", reference="PAY-1", actor=ACTOR)
        sell(ledger, "1")

        history = ledger.movement_history(lot.lot_id)
        assert [m.movement_type for m in history] == [
            MovementType.RECEIPT,
            MovementType.PAYMENT,
            MovementType.SALE,
        ]
        assert [m.sequence for m in history] == [1, 2, 3]

    def test_replay_matches_stored_balances(self, ledger, receive):
        lot = receive(GOLD_18K, NILE, weight="7", unit_cost="123.45").lot
        ledger.apply_payment(lot.lot_id, "300", reference="PAY-1", actor=ACTOR)
        sell(ledger, "2.5")

        replay = ledger.replay(lot.lot_id)
        assert replay.matches
        assert replay.movement_count == 3
        assert replay.weight == Decimal("4.5")
