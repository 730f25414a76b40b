"""Unit tests for the cancellation policy evaluator."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tourbook.core.exceptions import ValidationError
from tourbook.models.booking import CancelledBy
from tourbook.services.cancellation_service import (
    POLICIES,
    build_policy,
    describe_policy,
    evaluate,
    resolve_policy,
    window_policy,
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def starts_in(hours: float) -> datetime:
    return NOW + timedelta(hours=hours)


class TestFlexiblePolicy:
    @pytest.mark.parametrize(
        "hours, amount, percentage, refundable",
        [
            (30, Decimal("100.00"), 100, True),
            (18, Decimal("50.00"), 50, True),
            (2, Decimal("0.00"), 0, False),
        ],
    )
    def test_refund_by_time_until_start(self, hours, amount, percentage, refundable):
        result = evaluate(Decimal("100.00"), starts_in(hours), POLICIES["flexible"], now=NOW)

        assert result.refund_amount == amount
        assert result.refund_percentage == percentage
        assert result.is_refundable is refundable
        assert result.can_cancel is True

    def test_threshold_is_inclusive(self):
        result = evaluate(Decimal("80.00"), starts_in(24), POLICIES["flexible"], now=NOW)

        assert result.refund_percentage == 100

    def test_rule_description(self):
        result = evaluate(Decimal("100.00"), starts_in(18), POLICIES["flexible"], now=NOW)

        assert result.rule == "50% refund if cancelled at least 12 hours before the tour"


class TestEvaluation:
    def test_started_tour_cannot_be_cancelled(self):
        result = evaluate(Decimal("100.00"), starts_in(-1), POLICIES["flexible"], now=NOW)

        assert result.can_cancel is False
        assert result.refund_percentage == 0
        assert result.refund_amount == Decimal("0.00")
        assert result.rule == "Tour has already started"

    def test_provider_cancellation_always_full_refund(self):
        result = evaluate(
            Decimal("120.00"), starts_in(1), POLICIES["non_refundable"], CancelledBy.PROVIDER, now=NOW
        )

        assert result.refund_percentage == 100
        assert result.refund_amount == Decimal("120.00")
        assert result.can_cancel is True

    def test_provider_cannot_cancel_started_tour(self):
        result = evaluate(Decimal("120.00"), starts_in(-2), POLICIES["flexible"], CancelledBy.PROVIDER, now=NOW)

        assert result.can_cancel is False

    def test_falls_back_to_last_rule(self):
        policy = build_policy("late-only", "Late", [(48, 100), (6, 40)])

        result = evaluate(Decimal("50.00"), starts_in(3), policy, now=NOW)

        assert result.refund_percentage == 40
        assert result.refund_amount == Decimal("20.00")

    def test_strict_policy_quarter_refund(self):
        result = evaluate(Decimal("99.99"), starts_in(30), POLICIES["strict"], now=NOW)

        assert result.refund_percentage == 25
        assert result.refund_amount == Decimal("25.00")

    def test_naive_start_treated_as_utc(self):
        naive_start = (NOW + timedelta(hours=30)).replace(tzinfo=None)

        result = evaluate(Decimal("10.00"), naive_start, POLICIES["flexible"], now=NOW)

        assert result.hours_until_start == pytest.approx(30)


class TestPolicyResolution:
    def test_window_policy_rules(self):
        policy = window_policy(48)

        assert [(r.hours_before_start, r.refund_percentage) for r in policy.rules] == [(48, 100), (24, 50), (0, 0)]

    def test_odd_window_halves_down(self):
        policy = resolve_policy("custom_7")

        assert policy.id == "custom_7"
        assert [r.hours_before_start for r in policy.rules] == [7, 3, 0]

    def test_tiny_windows_collapse(self):
        assert [(r.hours_before_start, r.refund_percentage) for r in window_policy(1).rules] == [(1, 100), (0, 50)]
        assert [(r.hours_before_start, r.refund_percentage) for r in window_policy(0).rules] == [(0, 100)]

    def test_window_hours_override_policy_id(self):
        assert resolve_policy("strict", window_hours=10).id == "custom_10"

    def test_unknown_policy_falls_back_to_flexible(self):
        assert resolve_policy("lenient-ish").id == "flexible"
        assert resolve_policy(None).id == "flexible"

    def test_describe_policy(self):
        assert describe_policy(POLICIES["moderate"]) == [
            "Full refund if cancelled at least 48 hours before the tour",
            "50% refund if cancelled at least 24 hours before the tour",
            "No refund if cancelled less than 24 hours before the tour",
        ]


class TestPolicyValidation:
    def test_duplicate_thresholds_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            build_policy("dup", "Duplicate", [(24, 100), (24, 50)])

        assert "Duplicate threshold" in exc_info.value.messages[0]

    def test_percentage_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            build_policy("generous", "Generous", [(24, 150)])

    def test_rules_sorted_descending(self):
        policy = build_policy("unsorted", "Unsorted", [(0, 0), (72, 100), (24, 50)])

        assert [r.hours_before_start for r in policy.rules] == [72, 24, 0]
