"""FastAPI routers package."""

from .booking import router as booking_router
from .health import router as health_router
from .metrics import router as metrics_router
from .timeslot import router as timeslot_router
from .tour import router as tour_router

__all__ = [
    "booking_router",
    "health_router",
    "metrics_router",
    "timeslot_router",
    "tour_router",
]
