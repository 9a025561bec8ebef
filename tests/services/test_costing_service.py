"""
CostingEngine: cost quotes read from the live ledger.
"""

from decimal import Decimal

import pytest

from gold_engines.costing import CostMethod
from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import (
    InsufficientOwnershipError,
    InvalidMovementError,
    MixedUnitBasisError,
)

BRANCH = "BR-CAIRO"
GOLD_18K = ItemRef.raw_gold("18K")
RING = ItemRef.product("RING-001")


@pytest.fixture
def two_layers(receive):
    older = receive(weight="3", unit_cost="100")
    newer = receive(supplier_id="SUP-DELTA", weight="2", unit_cost="300")
    return older, newer


class TestWeightedAverage:
    def test_average_over_active_lots(self, costing, two_layers):
        result = costing.weighted_average_cost(GOLD_18K, BRANCH)

        assert result.lot_count == 2
        assert result.total_weight == Decimal("5.000")
        assert result.total_cost == Decimal("900.00")
        assert result.unit_cost == Decimal("180.00")

    def test_no_stock_is_zero(self, costing):
        result = costing.weighted_average_cost(GOLD_18K, BRANCH)
        assert result.lot_count == 0
        assert result.unit_cost == Decimal("0.00")

    def test_depleted_lots_excluded(self, costing, ledger, two_layers):
        ledger.apply_sale(GOLD_18K, BRANCH, "3", reference="S-1", actor="clerk")

        result = costing.weighted_average_cost(GOLD_18K, BRANCH)
        assert result.lot_count == 1
        assert result.unit_cost == Decimal("300.00")

    def test_explicit_lot_set(self, costing, two_layers):
        older, newer = two_layers
        result = costing.weighted_average_for_lots([older.lot.lot_id, newer.lot.lot_id])
        assert result.unit_cost == Decimal("180.00")

    def test_mixed_unit_bases_rejected(self, costing, receive):
        gold = receive(weight="2", unit_cost="100")
        rings = receive(RING, quantity="3", weight="12", unit_cost="2500")

        with pytest.raises(MixedUnitBasisError) as exc_info:
            costing.weighted_average_for_lots([gold.lot.lot_id, rings.lot.lot_id])

        payload = exc_info.value.to_dict()
        assert payload["code"] == "MIXED_UNIT_BASIS"
        assert payload["unit_bases"] == ["gram", "unit"]
        assert payload["lot_ids"] == [str(gold.lot.lot_id), str(rings.lot.lot_id)]

    def test_products_priced_per_unit(self, costing, receive):
        receive(RING, quantity="3", weight="12", unit_cost="2500")

        result = costing.weighted_average_cost(RING, BRANCH)
        assert result.total_quantity == Decimal("3.000")
        assert result.unit_cost == Decimal("2500.00")


class TestLayeredCost:
    def test_fifo(self, costing, two_layers):
        quote = costing.fifo_cost(GOLD_18K, BRANCH, "4")
        assert quote.total_cost == Decimal("600.00")
        assert quote.sources[0].supplier_id == "SUP-NILE"

    def test_lifo(self, costing, two_layers):
        quote = costing.lifo_cost(GOLD_18K, BRANCH, "4")
        assert quote.total_cost == Decimal("800.00")
        assert quote.sources[0].supplier_id == "SUP-DELTA"

    def test_quote_matches_actual_sale(self, costing, ledger, two_layers):
        quote = costing.fifo_cost(GOLD_18K, BRANCH, "4")
        sale = ledger.apply_sale(GOLD_18K, BRANCH, "4", reference="S-1", actor="clerk")
        assert sale.cost_of_sale == quote.total_cost

    def test_analysis(self, costing, two_layers):
        analysis = costing.cost_analysis(GOLD_18K, BRANCH, "4")
        assert analysis.recommended == CostMethod.FIFO
        assert analysis.weighted_average.total_cost == Decimal("720.00")


class TestRejections:
    def test_insufficient_stock(self, costing, two_layers, captured_logs):
        with pytest.raises(InsufficientOwnershipError) as exc_info:
            costing.fifo_cost(GOLD_18K, BRANCH, "6")

        assert exc_info.value.available == Decimal("5")
        assert any(r["message"] == "cost_quote_insufficient_ownership" for r in captured_logs())

    @pytest.mark.parametrize("requested", ["0", "-2"])
    def test_non_positive_request(self, costing, two_layers, requested):
        with pytest.raises(InvalidMovementError):
            costing.lifo_cost(GOLD_18K, BRANCH, requested)
