"""Time slot service."""

import logging
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import ensure_utc
from ..core.exceptions import ConflictError, NotFoundError
from ..models.booking import Booking, BookingStatus
from ..models.time_slot import TimeSlot
from ..schemas.time_slot import CreateTimeSlotRequest
from .tour_service import TourService

logger = logging.getLogger(__name__)


class TimeSlotService:
    """Service for creating, reading and removing time slots."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tour_service = TourService(db)

    async def create_time_slot(self, request: CreateTimeSlotRequest) -> TimeSlot:
        tour = await self.tour_service.get_tour_by_id_or_raise(request.tour_id)

        time_slot = TimeSlot(
            tour_id=tour.id,
            starts_at=ensure_utc(request.starts_at),
            ends_at=ensure_utc(request.ends_at),
            capacity_total=request.capacity_total,
            committed=0,
            version=0,
        )
        self.db.add(time_slot)
        await self.db.commit()

        logger.info(
            "Time slot created",
            extra={
                "time_slot_id": str(time_slot.id),
                "tour_id": str(tour.id),
                "starts_at": time_slot.starts_at.isoformat(),
                "capacity_total": time_slot.capacity_total,
            }
        )
        return time_slot

    async def get_time_slot_or_raise(self, time_slot_id: UUID) -> TimeSlot:
        """Fresh read of the slot; capacity counters change outside the identity map."""
        stmt = select(TimeSlot).where(TimeSlot.id == time_slot_id).execution_options(populate_existing=True)
        time_slot = (await self.db.execute(stmt)).scalar_one_or_none()
        if not time_slot:
            logger.warning("Time slot not found", extra={"time_slot_id": str(time_slot_id)})
            raise NotFoundError(resource_type="time_slot", resource_id=str(time_slot_id))
        return time_slot

    async def delete_time_slot(self, time_slot_id: UUID) -> None:
        """
        Remove a time slot that no booking references.

        Raises:
            NotFoundError: If the slot does not exist
            ConflictError: If any booking (live or historical) references the slot
        """
        await self.get_time_slot_or_raise(time_slot_id)

        live_stmt = select(func.count()).select_from(Booking).where(
            Booking.time_slot_id == time_slot_id,
            Booking.status != BookingStatus.CANCELLED,
        )
        live = (await self.db.execute(live_stmt)).scalar_one()
        if live:
            raise ConflictError(
                detail=f"Time slot {time_slot_id} still has {live} active booking(s)",
                conflicting_resource={"time_slot_id": str(time_slot_id), "active_bookings": live},
            )

        # Cancelled bookings are kept, so their slot has to stay as well
        any_stmt = select(func.count()).select_from(Booking).where(Booking.time_slot_id == time_slot_id)
        if (await self.db.execute(any_stmt)).scalar_one():
            raise ConflictError(
                detail=f"Time slot {time_slot_id} is referenced by cancelled bookings and is kept for history",
                conflicting_resource={"time_slot_id": str(time_slot_id)},
            )

        await self.db.execute(delete(TimeSlot).where(TimeSlot.id == time_slot_id))
        await self.db.commit()
        logger.info("Time slot deleted", extra={"time_slot_id": str(time_slot_id)})
