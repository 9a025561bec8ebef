"""
KaratCalculator: fine-gold-preserving weight conversion between purities.
"""

from decimal import Decimal

import pytest
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from gold_config import get_active_config
from gold_engines.karat import KaratCalculator
from gold_kernel.exceptions import InvalidConversionWeightError, UnknownKaratError


@pytest.fixture
def calculator():
    return KaratCalculator(get_active_config().purity_table())


class TestQuote:
    def test_18k_to_24k(self, calculator):
        quote = calculator.quote("18K", "24K", Decimal("10"))

        assert quote.fine_weight == Decimal("7.5")
        assert quote.to_weight == Decimal("7.5")
        assert quote.rate == Decimal("0.75")

    def test_24k_to_18k(self, calculator):
        quote = calculator.quote("24K", "18K", Decimal("7.5"))
        assert quote.to_weight == Decimal("10")

    def test_non_terminating_ratio_stored_at_nine_places(self, calculator):
        quote = calculator.quote("21K", "18K", Decimal("10"))

        assert quote.to_weight == Decimal("11.666666667")
        assert quote.reported_to_weight == Decimal("11.667")

    def test_quote_echoes_inputs(self, calculator):
        quote = calculator.quote("21K", "24K", Decimal("4"))
        assert (quote.from_karat, quote.to_karat, quote.from_weight) == ("21K", "24K", Decimal("4"))
        assert quote.from_purity == Decimal("0.875")
        assert quote.to_purity == Decimal("1.000")


class TestRejections:
    def test_same_karat(self, calculator):
        with pytest.raises(InvalidConversionWeightError, match="both 18K"):
            calculator.quote("18K", "18K", Decimal("1"))

    @pytest.mark.parametrize("weight", ["0", "-1"])
    def test_non_positive_weight(self, calculator, weight):
        with pytest.raises(InvalidConversionWeightError) as exc_info:
            calculator.quote("18K", "24K", Decimal(weight))
        assert exc_info.value.reason == "weight must be positive"

    def test_unknown_karat(self, calculator):
        with pytest.raises(UnknownKaratError) as exc_info:
            calculator.quote("18K", "9K", Decimal("1"))
        assert exc_info.value.karat_id == "9K"

    def test_purity_lookup(self, calculator):
        assert calculator.purity("22K") == Decimal("0.916")
        assert set(calculator.karat_ids) == {"14K", "18K", "21K", "22K", "24K"}


class TestFineGoldConservation:
    @settings(max_examples=100, deadline=None)
    @given(
        from_karat=st.sampled_from(["14K", "18K", "21K", "22K", "24K"]),
        to_karat=st.sampled_from(["14K", "18K", "21K", "22K", "24K"]),
        weight=st.decimals(min_value="0.001", max_value="10000", places=3),
    )
    def test_fine_gold_preserved_to_storage_precision(self, from_karat, to_karat, weight):
        assume(from_karat != to_karat)
        calculator = KaratCalculator(get_active_config().purity_table())
        quote = calculator.quote(from_karat, to_karat, weight)

        fine_in = weight * quote.from_purity
        fine_out = quote.to_weight * quote.to_purity
        assert abs(fine_in - fine_out) <= Decimal("0.000000001")
