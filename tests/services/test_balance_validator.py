"""
BalanceValidator: pre-sale checks and supplier payment warnings.
"""

from decimal import Decimal

import pytest

from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import InvalidMovementError

BRANCH = "BR-CAIRO"
GOLD_18K = ItemRef.raw_gold("18K")


@pytest.fixture
def unpaid(receive):
    """10 g of 18K at 100/g from SUP-NILE, nothing paid."""
    return receive(weight="10", unit_cost="100")


class TestAvailability:
    def test_enough_stock(self, validator, unpaid):
        result = validator.validate_sale(GOLD_18K, BRANCH, "4")

        assert result.can_sell
        assert result.requested == Decimal("4.000")
        assert result.available_quantity == Decimal("10.000")
        assert result.shortfall == Decimal("0.000")

    def test_not_enough_stock(self, validator, unpaid):
        result = validator.validate_sale(GOLD_18K, BRANCH, "12")

        assert not result.can_sell
        assert result.shortfall == Decimal("2.000")
        assert result.message == "Sale not allowed"

    def test_no_stock(self, validator):
        result = validator.validate_sale(GOLD_18K, BRANCH, "1")
        assert not result.can_sell
        assert result.warnings == ()

    @pytest.mark.parametrize("requested", ["0", "-1"])
    def test_non_positive_request(self, validator, unpaid, requested):
        with pytest.raises(InvalidMovementError):
            validator.validate_sale(GOLD_18K, BRANCH, requested)


class TestPaymentWarnings:
    def test_unpaid_lot(self, validator, unpaid):
        result = validator.validate_sale(GOLD_18K, BRANCH, "4")

        assert result.can_sell
        assert "Nile Refinery is completely UNPAID (Outstanding: 1000.00)" in result.warnings[0]
        assert any("low ownership" in w for w in result.warnings)
        assert result.ownership_percentage == Decimal("0.00")
        assert result.message == "Sale allowed with payment warnings"

    def test_partially_paid_lot(self, validator, ledger, unpaid):
        ledger.apply_payment(unpaid.lot.lot_id, "400", reference="PAY-1", actor="clerk")

        result = validator.validate_sale(GOLD_18K, BRANCH, "4")
        assert "PARTIALLY PAID (Outstanding: 600.00, Paid: 400.00)" in result.warnings[0]
        assert result.ownership_percentage == Decimal("40.00")
        assert result.paid_quantity == Decimal("4.000")

    def test_fully_paid_lot_has_no_warnings(self, validator, ledger, unpaid):
        ledger.apply_payment(unpaid.lot.lot_id, "1000", reference="PAY-1", actor="clerk")

        result = validator.validate_sale(GOLD_18K, BRANCH, "4")
        assert result.warnings == ()
        assert result.ownership_percentage == Decimal("100.00")
        assert result.message == "Sale validated successfully"

    def test_merchant_stock_has_no_warnings(self, validator, ledger):
        ledger.apply_customer_buy_in(
            GOLD_18K, BRANCH, weight="5", unit_cost="90", reference="BUY-1", actor="clerk"
        )
        assert validator.validate_sale(GOLD_18K, BRANCH, "5").warnings == ()

    def test_only_lots_the_sale_would_touch_warn(self, validator, ledger, receive):
        ledger.apply_customer_buy_in(
            GOLD_18K, BRANCH, weight="5", unit_cost="90", reference="BUY-1", actor="clerk"
        )
        receive(weight="5", unit_cost="100")

        result = validator.validate_sale(GOLD_18K, BRANCH, "3")
        assert not any("UNPAID" in w for w in result.warnings)


class TestRequirePaid:
    def test_paid_share_covers_request(self, validator, ledger, unpaid):
        ledger.apply_payment(unpaid.lot.lot_id, "400", reference="PAY-1", actor="clerk")

        result = validator.validate_sale(GOLD_18K, BRANCH, "4", require_paid=True)
        assert result.can_sell

    def test_paid_share_short(self, validator, ledger, unpaid):
        ledger.apply_payment(unpaid.lot.lot_id, "400", reference="PAY-1", actor="clerk")

        result = validator.validate_sale(GOLD_18K, BRANCH, "5", require_paid=True)
        assert not result.can_sell
        assert result.shortfall == Decimal("1.000")
