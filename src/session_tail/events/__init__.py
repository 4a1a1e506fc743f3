"""Ordered record fan-out and error side-channel."""

from .bus import RecordBus, Subscription
from .models import ErrorHandler, MonitorErrorEvent, RecordHandler

__all__ = [
    "RecordBus",
    "Subscription",
    "RecordHandler",
    "ErrorHandler",
    "MonitorErrorEvent",
]
