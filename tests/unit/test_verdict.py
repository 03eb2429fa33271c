"""Tests for the pass/fail verdict thresholds."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from longhaul.kernel.exceptions import VerdictFailure
from longhaul.kernel.statistics import Category, DeliverySummary
from longhaul.kernel.verdict import evaluate


def summary(
    sent: int,
    received: int,
    max_travel: float | None = 1.0,
    category: Category = Category.TELEMETRY,
) -> DeliverySummary:
    return DeliverySummary(
        category=category,
        count_sent=sent,
        count_received=received,
        min_travel_time=None if max_travel is None else 0.0,
        max_travel_time=max_travel,
    )


class TestEvaluate:
    def test_all_delivered_in_time_passes(self) -> None:
        verdict = evaluate(summary(5, 5, 299), 300)
        assert verdict.passed
        verdict.raise_for_failure()

    def test_missing_delivery_fails(self) -> None:
        verdict = evaluate(summary(5, 4), 300)
        assert not verdict.passed
        assert verdict.reasons == ("received 4 of 5 sent",)

    def test_nothing_sent_fails(self) -> None:
        verdict = evaluate(summary(0, 0, None), 300)
        assert not verdict.passed
        assert "no operations were sent" in verdict.reasons

    def test_slow_delivery_fails(self) -> None:
        verdict = evaluate(summary(5, 5, 301), 300)
        assert not verdict.passed
        assert "exceeds" in verdict.reasons[0]

    def test_exactly_at_threshold_passes(self) -> None:
        assert evaluate(summary(3, 3, 300), 300).passed

    def test_extra_receipts_fail(self) -> None:
        assert not evaluate(summary(3, 4), 300).passed

    def test_all_violations_reported(self) -> None:
        verdict = evaluate(summary(2, 1, 500), 300)
        assert len(verdict.reasons) == 2

    def test_raise_for_failure(self) -> None:
        verdict = evaluate(summary(5, 4, category=Category.C2D), 300)
        with pytest.raises(VerdictFailure) as exc_info:
            verdict.raise_for_failure()
        assert exc_info.value.category == "c2d"
        assert exc_info.value.reasons == verdict.reasons

    def test_integer_threshold(self) -> None:
        device_summary = summary(1, 1, 300.5, category=Category.DEVICE_METHOD)
        assert not evaluate(device_summary, 300).passed


class TestVerdictProperties:
    @given(
        sent=st.integers(min_value=0, max_value=1000),
        received=st.integers(min_value=0, max_value=1000),
        travel=st.floats(min_value=0, max_value=1000, allow_nan=False),
    )
    def test_passes_iff_all_conditions_hold(
        self, sent: int, received: int, travel: float
    ) -> None:
        verdict = evaluate(summary(sent, received, travel), 300.0)
        expected = sent > 0 and received == sent and travel <= 300.0
        assert verdict.passed is expected
