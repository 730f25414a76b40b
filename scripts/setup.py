#!/usr/bin/env python3
"""Setup script for the tour booking engine: migrate, then seed a demo tour."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from tourbook.core.clock import utcnow
from tourbook.core.database import async_session_factory, close_db
from tourbook.models import *  # noqa: F403 - Import all models to ensure they're registered
from tourbook.models.time_slot import TimeSlot
from tourbook.models.tour import Tour

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_PRICING = {
    "kind": "participant_categories",
    "categories": [
        {"id": "adult", "label": "Adult", "price": "35.00"},
        {"id": "child", "label": "Child (3-12)", "price": "18.00", "min_age": 3, "max_age": 12},
        {"id": "infant", "label": "Infant", "price": "0.00", "max_age": 2, "counts_toward_capacity": False},
    ],
    "group_discounts": [
        {"min_participants": 6, "max_participants": 12, "discount_type": "percentage", "discount_value": "10"},
    ],
    "addons": [
        {"id": "lunch", "name": "Picnic lunch", "price": "12.50"},
    ],
}


def run_migrations():
    """Apply all Alembic migrations."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data():
    """Create a demo tour with a week of morning time slots."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        try:
            existing_tours = await db.execute(select(func.count()).select_from(Tour))
            if existing_tours.scalar_one() > 0:
                logger.info("Sample data already exists, skipping...")
                return

            tour = Tour(
                name="Fjord Kayak Morning",
                slug="fjord-kayak-morning",
                description="Three hours on the water with a local guide",
                currency="EUR",
                pricing=SAMPLE_PRICING,
                cancellation_policy_id="flexible",
                provider_account_ref="acct_demo_provider",
            )
            db.add(tour)
            await db.flush()  # Get the tour ID

            first_start = (utcnow() + timedelta(days=7)).replace(hour=8, minute=0, second=0, microsecond=0)
            for day in range(7):
                starts_at = first_start + timedelta(days=day)
                db.add(TimeSlot(
                    tour_id=tour.id,
                    starts_at=starts_at,
                    ends_at=starts_at + timedelta(hours=3),
                    capacity_total=12,
                    committed=0,
                    version=0,
                ))

            await db.commit()
            logger.info("Sample data created", extra={"tour_id": str(tour.id)})

        except Exception:
            await db.rollback()
            logger.exception("Failed to create sample data")
            raise
        finally:
            await close_db()


def main():
    """Main setup function."""
    logger.info("Starting tour booking engine setup...")

    run_migrations()
    asyncio.run(create_sample_data())

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn tourbook.main:app --reload")


if __name__ == "__main__":
    main()
