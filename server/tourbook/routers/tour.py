"""Tour router for tour management operations."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db
from ..models.tour import Tour as TourModel
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.tour import CreateTourRequest, GetTourRequest, Tour
from ..services.cancellation_service import describe_policy
from ..services.tour_service import TourService, tour_policy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/tour", tags=["tour"], responses=PROBLEM_RESPONSES)

DB_DEPENDENCY = Depends(get_db)


def _tour_response(tour: TourModel, status_code: int = 200) -> JSONResponse:
    response_data = Tour.model_validate(tour).model_copy(
        update={"cancellation_terms": describe_policy(tour_policy(tour))}
    )
    return JSONResponse(status_code=status_code, content=response_data.model_dump(mode="json"))


@router.post("/create", response_model=Tour, status_code=201)
async def create_tour(
    request: CreateTourRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    """
    Create a new tour.

    The pricing configuration is validated before anything is stored.
    """
    tour = await TourService(db).create_tour(request)
    return _tour_response(tour, status_code=201)


@router.post("/get", response_model=Tour)
async def get_tour(
    request: GetTourRequest,
    db: AsyncSession = DB_DEPENDENCY,
) -> JSONResponse:
    tour = await TourService(db).get_tour_by_id_or_raise(request.tour_id)
    return _tour_response(tour)
