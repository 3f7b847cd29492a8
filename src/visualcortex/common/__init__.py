"""Common utilities for Visual Cortex."""

from visualcortex.common.logging import get_logger, setup_logging
from visualcortex.common.events import Event, EventBus
from visualcortex.common.scheduler import PeriodicTask

__all__ = [
    "get_logger",
    "setup_logging",
    "Event",
    "EventBus",
    "PeriodicTask",
]
