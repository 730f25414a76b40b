"""Time slot model definition."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .tour import Tour


class TimeSlot(Base):
    """
    A dated occurrence of a tour with a fixed number of spots.

    ``committed`` is only ever changed through the capacity ledger's
    conditional updates, each of which bumps ``version``.
    """

    __tablename__ = "time_slots"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Capacity
    capacity_total: Mapped[int] = mapped_column(Integer, nullable=False)
    committed: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("capacity_total >= 0", name="ck_time_slot_capacity_total_non_negative"),
        CheckConstraint("committed >= 0", name="ck_time_slot_committed_non_negative"),
        CheckConstraint("committed <= capacity_total", name="ck_time_slot_committed_lte_total"),
        CheckConstraint("ends_at > starts_at", name="ck_time_slot_ends_after_start"),
    )

    tour: Mapped["Tour"] = relationship("Tour", back_populates="time_slots")

    @property
    def available(self) -> int:
        return self.capacity_total - self.committed

    def __repr__(self) -> str:
        return (
            f"<TimeSlot(id={self.id}, tour_id={self.tour_id}, "
            f"starts_at={self.starts_at}, committed={self.committed}/{self.capacity_total})>"
        )
