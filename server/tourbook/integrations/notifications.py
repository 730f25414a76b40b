"""Booking notifications. Delivery is fire-and-forget."""

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Records notifications in the application log instead of delivering them."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("Booking notification", extra={"event": event, **payload})
