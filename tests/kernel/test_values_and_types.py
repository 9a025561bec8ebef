"""
Value objects and exact decimal storage.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from gold_kernel.db.types import (
    LedgerDecimal,
    quantize_storage,
    round_money,
    round_weight,
    to_decimal,
)
from gold_kernel.domain.values import ItemRef, LotIdentity
from gold_kernel.models.ownership_lot import OwnershipLot, UnitBasis


class TestItemRef:
    def test_raw_gold_is_costed_per_gram(self):
        item = ItemRef.raw_gold("21K")
        assert item.is_raw_gold
        assert item.default_unit_basis == UnitBasis.GRAM
        assert item.key == "raw_gold:21K"

    def test_product_is_costed_per_unit(self):
        item = ItemRef.product("RING-001")
        assert not item.is_raw_gold
        assert item.default_unit_basis == UnitBasis.UNIT

    def test_key_round_trips_through_parse(self):
        item = ItemRef.product("RING-001")
        assert ItemRef.parse(item.key) == item

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError, match="Unknown item kind"):
            ItemRef.parse("silver:925")

    @pytest.mark.parametrize("bad_id", ["", "  ", "A|B", "A#B", "A:B"])
    def test_bad_item_ids_rejected(self, bad_id):
        with pytest.raises(ValueError):
            ItemRef.product(bad_id)


class TestLotIdentity:
    def test_group_and_identity_keys(self):
        identity = LotIdentity(ItemRef.raw_gold("18K"), "BR-1", "SUP-1")
        assert identity.group_key == "raw_gold:18K|BR-1|SUP-1"
        assert identity.identity_key() == "raw_gold:18K|BR-1|SUP-1#"
        assert identity.identity_key("batch-7") == "raw_gold:18K|BR-1|SUP-1#batch-7"

    def test_merchant_stock_uses_dash(self):
        identity = LotIdentity(ItemRef.raw_gold("18K"), "BR-1", None)
        assert identity.is_merchant_owned
        assert identity.group_key == "raw_gold:18K|BR-1|-"

    def test_dash_is_reserved_for_merchant_stock(self):
        with pytest.raises(ValueError, match="reserved"):
            LotIdentity(ItemRef.raw_gold("18K"), "BR-1", "-")

    def test_lot_key_may_not_contain_hash(self):
        identity = LotIdentity(ItemRef.raw_gold("18K"), "BR-1", "SUP-1")
        with pytest.raises(ValueError):
            identity.identity_key("a#b")


class TestDecimalHelpers:
    def test_quantize_storage_uses_nine_places(self):
        assert quantize_storage(Decimal("1") / Decimal("3")) == Decimal("0.333333333")

    def test_reporting_rounds_half_up(self):
        assert round_money(Decimal("10.005")) == Decimal("10.01")
        assert round_weight(Decimal("7.4995")) == Decimal("7.500")

    def test_to_decimal_refuses_floats(self):
        with pytest.raises(TypeError):
            to_decimal(0.1)

    def test_to_decimal_accepts_strings_and_ints(self):
        assert to_decimal("7.5") == Decimal("7.5")
        assert to_decimal(3) == Decimal("3")


class TestLedgerDecimalColumn:
    def test_float_bind_refused(self):
        column_type = LedgerDecimal()

        class _Dialect:
            name = "sqlite"

        with pytest.raises(TypeError):
            column_type.process_bind_param(1.5, _Dialect())

    def test_values_round_trip_exactly(self, ledger, session_factory):
        item = ItemRef.raw_gold("18K")
        result = ledger.apply_receipt(
            item,
            "BR-1",
            "SUP-1",
            weight=Decimal("3.333333333"),
            unit_cost=Decimal("1234.567891234"),
            reference="INV-1",
            actor="clerk",
        )

        with session_factory() as session:
            stored = session.execute(
                select(OwnershipLot).where(OwnershipLot.id == result.lot.lot_id)
            ).scalar_one()
            assert stored.total_weight == Decimal("3.333333333")
            assert stored.total_cost == quantize_storage(
                Decimal("3.333333333") * Decimal("1234.567891234")
            )
