"""SCHOOL_ENGINE_TRACE records and input fingerprints."""

from decimal import Decimal

import pytest

from school_engines.carry_forward import CarryForwardAllocator, CarryForwardPolicy
from school_engines.tracer import compute_input_fingerprint, traced_engine
from school_kernel.domain.dtos import CriteriaThresholds


class TestFingerprint:

    def test_deterministic_and_kwarg_order_independent(self):
        a = compute_input_fingerprint(("x", "y"), {"x": 1, "y": {"b": 2, "a": 1}})
        b = compute_input_fingerprint(("x", "y"), {"y": {"a": 1, "b": 2}, "x": 1})

        assert a == b
        assert len(a) == 16

    def test_missing_field_is_null(self):
        assert compute_input_fingerprint(("x",), {}) == compute_input_fingerprint(
            ("x",), {"x": None}
        )

    def test_dataclasses_are_fingerprinted_by_value(self):
        t1 = CriteriaThresholds(Decimal("50"), Decimal("0"), 0)
        t2 = CriteriaThresholds(Decimal("50"), Decimal("0"), 0)
        t3 = CriteriaThresholds(Decimal("60"), Decimal("0"), 0)

        def fp(t):
            return compute_input_fingerprint(("thresholds",), {"thresholds": t})

        assert fp(t1) == fp(t2)
        assert fp(t1) != fp(t3)


class TestTracedEngine:

    def test_emits_trace_record(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("n",))
        def double(n):
            return n * 2

        assert double(n=4) == 8

        trace = [r for r in captured_logs() if r["message"] == "SCHOOL_ENGINE_TRACE"][-1]
        assert trace["engine_name"] == "demo"
        assert trace["engine_version"] == "2.1"
        assert trace["input_fingerprint"] == compute_input_fingerprint(("n",), {"n": 4})
        assert trace["duration_ms"] >= 0

    def test_positional_arguments_not_fingerprinted(self, captured_logs):
        allocator = CarryForwardAllocator()
        allocator.allocate(Decimal("1"), [], (2025, 1))
        allocator.allocate(Decimal("2"), [], (2026, 1))

        traces = [
            r for r in captured_logs()
            if r["message"] == "SCHOOL_ENGINE_TRACE" and r["engine_name"] == "carry_forward"
        ]
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]

    def test_keyword_arguments_change_fingerprint(self, captured_logs):
        allocator = CarryForwardAllocator()
        allocator.allocate(excess=Decimal("1"), candidates=[], after=(2025, 1))
        allocator.allocate(
            excess=Decimal("1"),
            candidates=[],
            after=(2025, 1),
            policy=CarryForwardPolicy.LATEST_OUTSTANDING,
        )

        traces = [
            r for r in captured_logs()
            if r["message"] == "SCHOOL_ENGINE_TRACE" and r["engine_name"] == "carry_forward"
        ]
        assert traces[0]["input_fingerprint"] != traces[1]["input_fingerprint"]


class TestTraceContents:

    def test_decimal_scale_does_not_change_fingerprint(self):
        assert compute_input_fingerprint(("x",), {"x": Decimal("50")}) == compute_input_fingerprint(
            ("x",), {"x": Decimal("50.00")}
        )

    def test_outcome_summary_recorded(self, captured_logs):
        CarryForwardAllocator().allocate(
            excess=Decimal("100"), candidates=[], after=(2025, 1)
        )

        trace = [
            r for r in captured_logs()
            if r["message"] == "SCHOOL_ENGINE_TRACE" and r["engine_name"] == "carry_forward"
        ][-1]
        assert trace["outcome"] == {"applied": "0", "unapplied": "100"}

    def test_failure_is_traced_and_reraised(self, captured_logs):
        @traced_engine("demo", "1.0")
        def broken():
            raise ArithmeticError("bad")

        with pytest.raises(ArithmeticError):
            broken()

        trace = [r for r in captured_logs() if r["message"] == "SCHOOL_ENGINE_TRACE"][-1]
        assert trace["outcome"] == "error"
        assert trace["input_fingerprint"] == ""
