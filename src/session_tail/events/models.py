"""Event payloads and handler types for the record bus."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from ..compat import UTC
from ..monitoring.models import AnyRecord


@dataclass(frozen=True)
class MonitorErrorEvent:
    """
    Non-fatal diagnostic delivered on the error side-channel.

    Attributes:
        error: The exception that occurred
        source: Component that reported it (e.g., "reader", "parser", "watcher")
        path: Log file involved, if any
        fatal: True for wiring errors that degraded the monitor
            (e.g., file notifications unavailable, polling only)
        timestamp: When the error was reported
    """

    error: BaseException
    source: str
    path: str | None = None
    fatal: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class RecordHandler(Protocol):
    """
    Protocol for record subscribers.

    Example:
        def on_record(record: AnyRecord) -> None:
            print(record.type)

        bus.subscribe(on_record)
    """

    def __call__(self, record: AnyRecord) -> None: ...


class ErrorHandler(Protocol):
    """Protocol for error side-channel observers."""

    def __call__(self, event: MonitorErrorEvent) -> None: ...
