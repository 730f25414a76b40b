"""Pydantic schemas for request/response validation."""

from .booking import *  # noqa: F403
from .cancellation import *  # noqa: F403
from .common import *  # noqa: F403
from .health import *  # noqa: F403
from .pricing import *  # noqa: F403
from .time_slot import *  # noqa: F403
from .tour import *  # noqa: F403
