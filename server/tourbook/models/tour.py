"""Tour model definition."""

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .time_slot import TimeSlot


class Tour(Base):
    """Tour offered by a provider, carrying its pricing and cancellation terms."""

    __tablename__ = "tours"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Tour information
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Validated PricingConfiguration, stored as its tagged JSON form
    pricing: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Cancellation terms
    cancellation_policy_id: Mapped[str] = mapped_column(String(64), nullable=False)
    cancellation_window_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Payment processor account that receives payouts for this tour
    provider_account_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

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
        CheckConstraint("length(currency) = 3", name="ck_tour_currency_length"),
        CheckConstraint(
            "cancellation_window_hours IS NULL OR cancellation_window_hours >= 0",
            name="ck_tour_cancellation_window_non_negative",
        ),
    )

    time_slots: Mapped[list["TimeSlot"]] = relationship("TimeSlot", back_populates="tour")

    def __repr__(self) -> str:
        return f"<Tour(id={self.id}, slug='{self.slug}', currency={self.currency})>"
