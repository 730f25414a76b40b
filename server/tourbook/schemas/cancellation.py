"""Cancellation policy and refund calculation schemas."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CancellationRule(BaseModel):
    """Refund percentage that applies when cancelling at least N hours before start."""

    model_config = ConfigDict(frozen=True)

    hours_before_start: int = Field(..., description="Threshold in hours before the tour starts")
    refund_percentage: int = Field(..., description="Share of the amount refunded, 0-100")


class CancellationPolicy(BaseModel):
    """Named, ordered set of cancellation rules."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    rules: tuple[CancellationRule, ...]


class RefundCalculation(BaseModel):
    """Refund a cancellation is entitled to at a given moment."""

    is_refundable: bool
    refund_percentage: int
    refund_amount: Decimal
    rule: str = Field(..., description="Human-readable description of the rule that applied")
    hours_until_start: float
    can_cancel: bool
