"""Tour service for business logic operations."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..models.tour import Tour
from ..schemas.cancellation import CancellationPolicy
from ..schemas.pricing import PricingConfiguration, pricing_adapter
from ..schemas.tour import CreateTourRequest
from .cancellation_service import is_known_policy, resolve_policy
from .pricing_service import validate_pricing_configuration

logger = logging.getLogger(__name__)


def tour_pricing(tour: Tour) -> PricingConfiguration:
    """Stored pricing JSON parsed back into its configuration variant."""
    return pricing_adapter.validate_python(tour.pricing)


def tour_policy(tour: Tour) -> CancellationPolicy:
    return resolve_policy(tour.cancellation_policy_id, tour.cancellation_window_hours)


class TourService:
    """Service for tour-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_tour(self, request: CreateTourRequest) -> Tour:
        """
        Create a new tour.

        Raises:
            ValidationError: If the pricing configuration or policy id is invalid
            ConflictError: If a tour with the same slug already exists
        """
        report = validate_pricing_configuration(request.pricing)
        if not report.is_valid:
            logger.warning(
                "Tour creation failed - invalid pricing configuration",
                extra={"slug": request.slug, "violations": report.errors},
            )
            raise ValidationError(
                detail="Pricing configuration is invalid",
                violations=[
                    {"path": f"pricing.{error['path']}", "message": error["message"]}
                    for error in report.errors
                ],
            )
        for warning in report.warnings:
            logger.warning("Pricing configuration warning", extra={"slug": request.slug, "warning": warning})

        policy_id = request.cancellation_policy_id or settings.default_cancellation_policy
        if request.cancellation_window_hours is None and not is_known_policy(policy_id):
            raise ValidationError(
                detail=f"Unknown cancellation policy '{policy_id}'",
                violations=[{"path": "cancellation_policy_id", "message": "Unknown cancellation policy"}],
            )

        existing_tour = await self.get_tour_by_slug(request.slug)
        if existing_tour:
            logger.warning(
                "Tour creation failed - slug already exists",
                extra={"slug": request.slug, "existing_tour_id": str(existing_tour.id)}
            )
            raise ConflictError(
                detail=f"Tour with slug '{request.slug}' already exists",
                conflicting_resource={"id": str(existing_tour.id), "slug": existing_tour.slug}
            )

        tour = Tour(
            name=request.name,
            slug=request.slug,
            description=request.description,
            currency=request.currency or settings.default_currency,
            pricing=request.pricing.model_dump(mode="json"),
            cancellation_policy_id=policy_id,
            cancellation_window_hours=request.cancellation_window_hours,
            provider_account_ref=request.provider_account_ref,
        )

        try:
            self.db.add(tour)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Tour creation failed due to integrity constraint",
                extra={"slug": request.slug, "error": str(e)}
            )
            raise ConflictError(detail=f"Tour with slug '{request.slug}' could not be created") from e

        logger.info(
            "Tour created successfully",
            extra={
                "tour_id": str(tour.id),
                "slug": tour.slug,
                "pricing_kind": request.pricing.kind,
                "cancellation_policy_id": tour_policy(tour).id,
            }
        )
        return tour

    async def get_tour_by_id(self, tour_id: UUID) -> Optional[Tour]:
        stmt = select(Tour).where(Tour.id == tour_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_slug(self, slug: str) -> Optional[Tour]:
        stmt = select(Tour).where(Tour.slug == slug)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_id_or_raise(self, tour_id: UUID) -> Tour:
        """
        Get tour by ID or raise NotFoundError.

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id(tour_id)
        if not tour:
            logger.warning("Tour not found", extra={"tour_id": str(tour_id)})
            raise NotFoundError(resource_type="tour", resource_id=str(tour_id))
        return tour
