"""
ConsolidationService: merging an identity's active lots into one.
"""

from decimal import Decimal

import pytest

from gold_kernel.domain.values import ItemRef
from gold_kernel.exceptions import InvalidConsolidationInputError
from gold_kernel.models.ownership_movement import MovementType
from gold_services.consolidation_service import CONSOLIDATED_LOT_PREFIX

BRANCH = "BR-CAIRO"
SUPPLIER = "SUP-NILE"
GOLD_18K = ItemRef.raw_gold("18K")


@pytest.fixture
def two_trays(receive, ledger):
    """Two SUP-NILE lots of 18K: 3 g @ 100 (100 paid) and 2 g @ 300."""
    first = receive(weight="3", unit_cost="100")
    second = receive(weight="2", unit_cost="300", lot_key="tray-2")
    ledger.apply_payment(first.lot.lot_id, "100", reference="PAY-1", actor="clerk")
    return first, second


class TestConsolidate:
    def test_totals(self, consolidation, two_trays):
        result = consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")

        assert result.total_weight == Decimal("5")
        assert result.total_cost == Decimal("900")
        assert result.total_paid == Decimal("100")
        assert result.total_owed == Decimal("800")
        assert result.weighted_average_cost == Decimal("180")

    def test_target_lot(self, consolidation, two_trays):
        first, _ = two_trays
        result = consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")

        target = result.target_lot
        assert target.lot_key == f"{CONSOLIDATED_LOT_PREFIX}{result.batch_id}"
        assert target.total_weight == Decimal("5")
        assert target.amount_owed == Decimal("800")
        assert target.unit_cost == Decimal("180")
        assert target.layer_date == first.lot.layer_date

    def test_sources_depleted_not_deleted(self, consolidation, ledger, two_trays):
        first, second = two_trays
        result = consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")

        assert result.source_lot_ids == (first.lot.lot_id, second.lot.lot_id)
        for lot_id in result.source_lot_ids:
            lot = ledger.get_lot(lot_id)
            assert lot.total_weight == Decimal("0")
            assert lot.depleted_at is not None
            assert ledger.replay(lot_id).matches
        assert [lot.lot_id for lot in ledger.active_lots(GOLD_18K, BRANCH)] == [
            result.target_lot.lot_id
        ]
        assert ledger.replay(result.target_lot.lot_id).matches

    def test_movements_share_batch_id(self, consolidation, two_trays):
        result = consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk", reference="CONS-1")

        assert len(result.movements) == 3
        assert {m.correlation_id for m in result.movements} == {result.batch_id}
        assert {m.movement_type for m in result.movements} == {MovementType.CONSOLIDATION}
        assert {m.reference_number for m in result.movements} == {"CONS-1"}

    def test_batch_recorded(self, consolidation, two_trays):
        result = consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")

        batches = consolidation.batches(BRANCH)
        assert len(batches) == 1
        assert batches[0].batch_id == result.batch_id
        assert batches[0].source_lot_ids == result.source_lot_ids
        assert batches[0].total_cost == Decimal("900")
        assert consolidation.batches("BR-ALEX") == []

    def test_sale_after_consolidation_uses_average(self, consolidation, ledger, two_trays):
        consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")
        sale = ledger.apply_sale(GOLD_18K, BRANCH, "1", reference="S-1", actor="clerk")
        assert sale.cost_of_sale == Decimal("180")


class TestRejections:
    def test_single_lot_rejected(self, consolidation, receive):
        receive(weight="3", unit_cost="100")

        with pytest.raises(InvalidConsolidationInputError) as exc_info:
            consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")
        assert exc_info.value.lot_count == 1

    def test_no_lots_rejected(self, consolidation):
        with pytest.raises(InvalidConsolidationInputError):
            consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")

    def test_other_supplier_lots_not_merged(self, consolidation, receive):
        receive(weight="3", unit_cost="100")
        receive(supplier_id="SUP-DELTA", weight="2", unit_cost="300")

        with pytest.raises(InvalidConsolidationInputError):
            consolidation.consolidate(GOLD_18K, SUPPLIER, BRANCH, "clerk")


class TestOpportunities:
    def test_find_opportunities(self, consolidation, receive, two_trays):
        receive(supplier_id="SUP-DELTA", weight="2", unit_cost="300")

        opportunities = consolidation.find_opportunities(BRANCH)
        assert len(opportunities) == 1
        opportunity = opportunities[0]
        assert opportunity.supplier_id == SUPPLIER
        assert opportunity.lot_count == 2
        assert opportunity.total_weight == Decimal("5")
        assert opportunity.total_owed == Decimal("800")

    def test_consolidate_supplier(self, consolidation, receive, two_trays):
        receive(ItemRef.raw_gold("21K"), weight="1", unit_cost="120")
        receive(ItemRef.raw_gold("21K"), weight="1", unit_cost="130", lot_key="tray-2")
        receive(supplier_id="SUP-DELTA", weight="2", unit_cost="300")
        receive(supplier_id="SUP-DELTA", weight="2", unit_cost="310", lot_key="tray-2")

        results = consolidation.consolidate_supplier(SUPPLIER, BRANCH, "clerk")

        assert sorted(r.target_lot.item.item_id for r in results) == ["18K", "21K"]
        remaining = consolidation.find_opportunities(BRANCH)
        assert [o.supplier_id for o in remaining] == ["SUP-DELTA"]
