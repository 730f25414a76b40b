"""Time slot router."""

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.time_slot import CreateTimeSlotRequest, TimeSlot, TimeSlotRequest
from ..services.time_slot_service import TimeSlotService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/timeslot", tags=["timeslot"], responses=PROBLEM_RESPONSES)

DB_DEPENDENCY = Depends(get_db)


@router.post("/create", response_model=TimeSlot, status_code=201)
async def create_time_slot(
    request: CreateTimeSlotRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    time_slot = await TimeSlotService(db).create_time_slot(request)
    return JSONResponse(status_code=201, content=TimeSlot.model_validate(time_slot).model_dump(mode="json"))


@router.post("/get", response_model=TimeSlot)
async def get_time_slot(
    request: TimeSlotRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """Current capacity of a time slot."""
    time_slot = await TimeSlotService(db).get_time_slot_or_raise(request.time_slot_id)
    return JSONResponse(status_code=200, content=TimeSlot.model_validate(time_slot).model_dump(mode="json"))


@router.post("/delete", status_code=204)
async def delete_time_slot(
    request: TimeSlotRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> Response:
    """Delete a time slot that has never been booked."""
    await TimeSlotService(db).delete_time_slot(request.time_slot_id)
    return Response(status_code=204)
