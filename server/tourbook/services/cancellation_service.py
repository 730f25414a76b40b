"""Cancellation policy evaluator."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from ..core.clock import ensure_utc, utcnow
from ..core.exceptions import ValidationError
from ..core.money import ZERO, quantize_money
from ..models.booking import CancelledBy
from ..schemas.cancellation import CancellationPolicy, CancellationRule, RefundCalculation

logger = logging.getLogger(__name__)

DEFAULT_POLICY_ID = "flexible"
CUSTOM_POLICY_PREFIX = "custom_"


def build_policy(policy_id: str, name: str, rules: Iterable[tuple[int, int]]) -> CancellationPolicy:
    """
    Build a policy from (hours_before_start, refund_percentage) pairs.

    Raises:
        ValidationError: On negative or duplicate thresholds, or percentages outside 0-100
    """
    parsed = [CancellationRule(hours_before_start=h, refund_percentage=p) for h, p in rules]
    violations = []
    if not parsed:
        violations.append({"path": "rules", "message": "A policy needs at least one rule"})

    seen: set[int] = set()
    for index, rule in enumerate(parsed):
        if rule.hours_before_start < 0:
            violations.append({"path": f"rules[{index}].hours_before_start", "message": "Threshold cannot be negative"})
        if rule.hours_before_start in seen:
            violations.append({
                "path": f"rules[{index}].hours_before_start",
                "message": f"Duplicate threshold {rule.hours_before_start}h",
            })
        seen.add(rule.hours_before_start)
        if not 0 <= rule.refund_percentage <= 100:
            violations.append({
                "path": f"rules[{index}].refund_percentage",
                "message": "Refund percentage must be between 0 and 100",
            })
    if violations:
        raise ValidationError(detail=f"Cancellation policy '{policy_id}' is invalid", violations=violations)

    ordered = tuple(sorted(parsed, key=lambda r: r.hours_before_start, reverse=True))
    for earlier, later in zip(ordered, ordered[1:]):
        if later.refund_percentage > earlier.refund_percentage:
            logger.warning(
                "Cancellation policy refunds more for later cancellations",
                extra={
                    "policy_id": policy_id,
                    "threshold_hours": later.hours_before_start,
                    "refund_percentage": later.refund_percentage,
                },
            )
    return CancellationPolicy(id=policy_id, name=name, rules=ordered)


POLICIES: dict[str, CancellationPolicy] = {
    policy.id: policy
    for policy in (
        build_policy("very_flexible", "Very Flexible", [(2, 100), (0, 0)]),
        build_policy("flexible", "Flexible", [(24, 100), (12, 50), (0, 0)]),
        build_policy("moderate", "Moderate", [(48, 100), (24, 50), (0, 0)]),
        build_policy("strict", "Strict", [(168, 100), (72, 50), (24, 25), (0, 0)]),
        build_policy("non_refundable", "Non-Refundable", [(0, 0)]),
    )
}


def window_policy(window_hours: int) -> CancellationPolicy:
    """
    Three-rule policy: full refund up to the window, half up to half the
    window (whole hours, rounded down), nothing after that.
    """
    if window_hours < 0:
        raise ValidationError(
            detail="Cancellation window cannot be negative",
            violations=[{"path": "cancellation_window_hours", "message": "Must be zero or more hours"}],
        )
    rules: list[tuple[int, int]] = []
    for hours, percentage in ((window_hours, 100), (window_hours // 2, 50), (0, 0)):
        # Short windows collapse thresholds; the more generous rule wins
        if all(hours != existing for existing, _ in rules):
            rules.append((hours, percentage))
    return build_policy(f"{CUSTOM_POLICY_PREFIX}{window_hours}", f"{window_hours}-hour window", rules)


def resolve_policy(policy_id: Optional[str], window_hours: Optional[int] = None) -> CancellationPolicy:
    """
    Policy for a tour: an explicit window wins, then ``custom_<hours>`` ids,
    then the catalogue. Unknown ids fall back to the flexible policy.
    """
    if window_hours is not None:
        return window_policy(window_hours)

    if policy_id and policy_id.startswith(CUSTOM_POLICY_PREFIX):
        suffix = policy_id[len(CUSTOM_POLICY_PREFIX):]
        if suffix.isdigit():
            return window_policy(int(suffix))

    if policy_id in POLICIES:
        return POLICIES[policy_id]

    logger.warning(
        "Unknown cancellation policy, falling back to default",
        extra={"policy_id": policy_id, "fallback_policy_id": DEFAULT_POLICY_ID},
    )
    return POLICIES[DEFAULT_POLICY_ID]


def is_known_policy(policy_id: str) -> bool:
    if policy_id in POLICIES:
        return True
    suffix = policy_id[len(CUSTOM_POLICY_PREFIX):] if policy_id.startswith(CUSTOM_POLICY_PREFIX) else ""
    return suffix.isdigit()


def describe_rule(rule: CancellationRule, next_threshold: Optional[int] = None) -> str:
    if rule.refund_percentage == 100:
        refund = "Full refund"
    elif rule.refund_percentage == 0:
        refund = "No refund"
    else:
        refund = f"{rule.refund_percentage}% refund"

    if rule.hours_before_start == 0:
        if next_threshold is None:
            return f"{refund} if cancelled before the tour starts"
        return f"{refund} if cancelled less than {next_threshold} hours before the tour"
    return f"{refund} if cancelled at least {rule.hours_before_start} hours before the tour"


def describe_policy(policy: CancellationPolicy) -> list[str]:
    """Customer-facing lines, most generous first."""
    lines = []
    for index, rule in enumerate(policy.rules):
        previous = policy.rules[index - 1].hours_before_start if index > 0 else None
        lines.append(describe_rule(rule, previous))
    return lines


def evaluate(
    amount: Decimal,
    start: datetime,
    policy: CancellationPolicy,
    cancelled_by: CancelledBy = CancelledBy.CUSTOMER,
    now: Optional[datetime] = None,
) -> RefundCalculation:
    """
    Refund due when cancelling ``amount`` now.

    ``can_cancel`` only reflects whether the tour has started, not whether
    anything is refunded.
    """
    now = ensure_utc(now) if now is not None else utcnow()
    hours_until_start = (ensure_utc(start) - now).total_seconds() / 3600

    if hours_until_start <= 0:
        return RefundCalculation(
            is_refundable=False,
            refund_percentage=0,
            refund_amount=ZERO,
            rule="Tour has already started",
            hours_until_start=hours_until_start,
            can_cancel=False,
        )

    if cancelled_by == CancelledBy.PROVIDER:
        refund_amount = quantize_money(amount)
        return RefundCalculation(
            is_refundable=refund_amount > 0,
            refund_percentage=100,
            refund_amount=refund_amount,
            rule="Full refund - cancelled by the provider",
            hours_until_start=hours_until_start,
            can_cancel=True,
        )

    applied_index = len(policy.rules) - 1
    for index, rule in enumerate(policy.rules):
        if rule.hours_before_start <= hours_until_start:
            applied_index = index
            break
    applied = policy.rules[applied_index]
    previous = policy.rules[applied_index - 1].hours_before_start if applied_index > 0 else None

    refund_amount = quantize_money(amount * applied.refund_percentage / 100)
    return RefundCalculation(
        is_refundable=applied.refund_percentage > 0 and refund_amount > 0,
        refund_percentage=applied.refund_percentage,
        refund_amount=refund_amount,
        rule=describe_rule(applied, previous),
        hours_until_start=hours_until_start,
        can_cancel=True,
    )
