"""Capacity ledger: atomic seat accounting for time slots."""

import logging
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import CapacityFullError, NotFoundError
from ..core.observability import metrics_collector
from ..models.time_slot import TimeSlot

logger = logging.getLogger(__name__)


class CapacityLedger:
    """
    Reserve and release spots on a time slot.

    Each mutation is a single conditional UPDATE, so concurrent requests are
    serialized by the database rather than by an in-process lock. The ledger
    never commits; it participates in the caller's transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def reserve(self, time_slot_id: UUID, seats: int) -> None:
        """
        Commit ``seats`` spots on the slot if they are still free.

        Raises:
            CapacityFullError: If fewer than ``seats`` spots are left
            NotFoundError: If the time slot does not exist
        """
        if seats <= 0:
            # Only non-counting participants, nothing to hold
            return

        stmt = (
            update(TimeSlot)
            .where(
                TimeSlot.id == time_slot_id,
                TimeSlot.committed + seats <= TimeSlot.capacity_total,
            )
            .values(committed=TimeSlot.committed + seats, version=TimeSlot.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        if result.rowcount == 1:
            logger.info(
                "Capacity reserved",
                extra={"time_slot_id": str(time_slot_id), "seats": seats},
            )
            return

        capacity_total, committed = await self._load_counts(time_slot_id)
        available = max(capacity_total - committed, 0)
        metrics_collector.record_capacity_rejection()
        logger.warning(
            "Capacity reservation rejected - not enough spots",
            extra={
                "time_slot_id": str(time_slot_id),
                "requested_seats": seats,
                "available_seats": available,
            },
        )
        raise CapacityFullError(
            time_slot_id=str(time_slot_id),
            requested_seats=seats,
            available_seats=available,
        )

    async def release(self, time_slot_id: UUID, seats: int) -> None:
        """Return ``seats`` spots to the slot; committed never drops below zero."""
        if seats <= 0:
            return

        stmt = (
            update(TimeSlot)
            .where(TimeSlot.id == time_slot_id)
            .values(
                committed=case(
                    (TimeSlot.committed >= seats, TimeSlot.committed - seats),
                    else_=0,
                ),
                version=TimeSlot.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            raise NotFoundError(resource_type="time_slot", resource_id=str(time_slot_id))

        logger.info(
            "Capacity released",
            extra={"time_slot_id": str(time_slot_id), "seats": seats},
        )

    async def available(self, time_slot_id: UUID) -> int:
        capacity_total, committed = await self._load_counts(time_slot_id)
        return capacity_total - committed

    async def _load_counts(self, time_slot_id: UUID) -> tuple[int, int]:
        stmt = select(TimeSlot.capacity_total, TimeSlot.committed).where(TimeSlot.id == time_slot_id)
        row = (await self.db.execute(stmt)).one_or_none()
        if row is None:
            raise NotFoundError(resource_type="time_slot", resource_id=str(time_slot_id))
        return row.capacity_total, row.committed
