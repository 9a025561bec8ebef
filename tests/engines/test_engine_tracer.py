"""
Engine tracer: deterministic input fingerprints and GOLD_ENGINE_TRACE records.
"""

from decimal import Decimal

from gold_engines.costing import CostingCalculator
from gold_engines.tracer import compute_input_fingerprint, traced_engine


@traced_engine("sample", "2.1", fingerprint_fields=("weight", "karat"))
def sample_engine(weight, karat="18K"):
    return weight * 2


class TestFingerprint:
    def test_deterministic(self):
        args = {"weight": Decimal("1.5"), "karat": "18K"}
        first = compute_input_fingerprint(("weight", "karat"), args)
        second = compute_input_fingerprint(("weight", "karat"), dict(args))

        assert first == second
        assert len(first) == 16
        int(first, 16)

    def test_dict_key_order_ignored(self):
        fields = ("payload",)
        a = compute_input_fingerprint(fields, {"payload": {"x": 1, "y": 2}})
        b = compute_input_fingerprint(fields, {"payload": {"y": 2, "x": 1}})
        assert a == b

    def test_different_inputs_differ(self):
        a = compute_input_fingerprint(("weight",), {"weight": Decimal("1")})
        b = compute_input_fingerprint(("weight",), {"weight": Decimal("2")})
        assert a != b

    def test_missing_field_fingerprints_as_null(self):
        a = compute_input_fingerprint(("absent",), {})
        b = compute_input_fingerprint(("absent",), {"absent": None})
        assert a == b


class TestTracedEngine:
    def test_trace_record_emitted(self, captured_logs):
        assert sample_engine(Decimal("3")) == Decimal("6")

        traces = [r for r in captured_logs() if r["message"] == "GOLD_ENGINE_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["logger"] == "gold_kernel.engines.tracer"
        assert trace["engine_name"] == "sample"
        assert trace["engine_version"] == "2.1"
        assert trace["function"] == "sample_engine"
        assert trace["duration_ms"] >= 0
        assert len(trace["input_fingerprint"]) == 16

    def test_positional_and_keyword_calls_match(self, captured_logs):
        sample_engine(Decimal("3"), "21K")
        sample_engine(karat="21K", weight=Decimal("3"))

        fingerprints = [
            r["input_fingerprint"] for r in captured_logs() if r["message"] == "GOLD_ENGINE_TRACE"
        ]
        assert fingerprints[0] == fingerprints[1]

    def test_costing_calls_are_traced(self, captured_logs):
        CostingCalculator().weighted_average([])

        traces = [r for r in captured_logs() if r["message"] == "GOLD_ENGINE_TRACE"]
        assert traces[0]["engine_name"] == "costing"
        assert traces[0]["function"] == "CostingCalculator.weighted_average"
