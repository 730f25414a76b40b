"""Booking model definition and the status vocabularies it uses."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base


class BookingStatus(str, Enum):
    """Lifecycle state of a booking."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class PaymentStatus(str, Enum):
    """State of the customer's money for a booking."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RefundMethod(str, Enum):
    DIRECT_REFUND = "direct_refund"
    TRANSFER_REVERSAL = "transfer_reversal"


class PayoutState(str, Enum):
    """Whether the provider's share has already left the platform account."""
    NOT_PAID_OUT = "not_paid_out"
    PAID_OUT = "paid_out"


class CancelledBy(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"


TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW})


def _enum_column(enum_cls: type[Enum]) -> SAEnum:
    """Store enums by value in a VARCHAR so SQLite and PostgreSQL agree."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
    )


def _money() -> Numeric:
    return Numeric(10, 2, asdecimal=True)


class Booking(Base):
    """Priced, capacity-checked reservation of a time slot. Rows are never deleted."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    reference: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    time_slot_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("time_slots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    customer_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Participants
    participants: Mapped[int] = mapped_column(Integer, nullable=False)
    participants_by_category: Mapped[dict[str, int] | None] = mapped_column(JSON, nullable=True)
    counting_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    addon_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Price breakdown
    original_base_price: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    group_discount: Mapped[Decimal] = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    base_price: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    addons_total: Mapped[Decimal] = mapped_column(_money(), nullable=False, default=Decimal("0.00"))
    subtotal: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    processor_fee: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    provider_amount: Mapped[Decimal] = mapped_column(_money(), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # State
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus),
        nullable=False,
        default=PaymentStatus.PENDING
    )
    charge_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    # Key of the latest charge attempt; kept until that attempt is known to have failed
    charge_idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Cancellation and refund
    cancelled_by: Mapped[CancelledBy | None] = mapped_column(_enum_column(CancelledBy), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_status: Mapped[RefundStatus | None] = mapped_column(_enum_column(RefundStatus), nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(_money(), nullable=True)
    refund_percentage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_rule: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_method: Mapped[RefundMethod | None] = mapped_column(_enum_column(RefundMethod), nullable=True)
    refund_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reversal_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Provider payout
    payout_state: Mapped[PayoutState] = mapped_column(
        _enum_column(PayoutState),
        nullable=False,
        default=PayoutState.NOT_PAID_OUT
    )
    payout_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("participants > 0", name="ck_booking_participants_positive"),
        CheckConstraint(
            "counting_participants >= 0 AND counting_participants <= participants",
            name="ck_booking_counting_participants_range",
        ),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_non_negative"),
        CheckConstraint("length(customer_ref) > 0", name="ck_booking_customer_ref_not_empty"),
        CheckConstraint(
            "status <> 'pending' OR payment_status IN ('pending', 'failed')",
            name="ck_booking_pending_is_unpaid",
        ),
        CheckConstraint(
            "status NOT IN ('confirmed', 'completed', 'no_show') OR payment_status = 'paid'",
            name="ck_booking_confirmed_is_paid",
        ),
        CheckConstraint(
            "payment_status <> 'refunded' OR status = 'cancelled'",
            name="ck_booking_refunded_is_cancelled",
        ),
        CheckConstraint(
            "payout_state <> 'paid_out' OR payout_ref IS NOT NULL",
            name="ck_booking_payout_has_reference",
        ),
    )

    @property
    def is_free(self) -> bool:
        return self.total_amount == 0

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, reference='{self.reference}', status={self.status}, "
            f"payment_status={self.payment_status}, total={self.total_amount} {self.currency})>"
        )


def booking_snapshot(booking: Booking) -> dict[str, Any]:
    """Identifying fields for structured log records."""
    return {
        "booking_id": str(booking.id),
        "reference": booking.reference,
        "status": booking.status.value,
        "payment_status": booking.payment_status.value,
    }
