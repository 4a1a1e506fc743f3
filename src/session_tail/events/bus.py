"""Thread-safe, totally ordered record bus."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque

from ..monitoring.models import AnyRecord
from .models import ErrorHandler, MonitorErrorEvent, RecordHandler

logger = logging.getLogger(__name__)


class Subscription:
    """
    Handle returned by the bus for removing a handler.

    Calling the handle (or ``unsubscribe()``) removes the handler. Removing
    twice is a no-op.
    """

    def __init__(self, bus: RecordBus, subscription_id: str, channel: str) -> None:
        self.id = subscription_id
        self._bus = bus
        self._channel = channel

    @property
    def active(self) -> bool:
        return self._bus._is_active(self._channel, self.id)

    def unsubscribe(self) -> bool:
        """Remove the handler; returns False if it was already removed."""
        return self._bus._remove(self._channel, self.id)

    def __call__(self) -> bool:
        return self.unsubscribe()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unsubscribe()


class RecordBus:
    """
    Fan-out of accepted records to subscribers in one global order.

    Records may be published from several producers at once (one read task
    per tracked file, plus file-notification callbacks). Publishing is
    serialized, so every subscriber sees one record at a time and all
    subscribers see the same order.

    Thread Safety:
        - All public methods are thread-safe
        - Subscribers can be added/removed during publishing
        - A handler removed mid-delivery receives no further records,
          including the rest of the current delivery round

    Errors raised by handlers, and diagnostics reported with
    ``report_error()``, go to the error side-channel and never interrupt
    the record stream.

    Example:
        bus = RecordBus()
        sub = bus.subscribe(lambda record: print(record.type))
        bus.on_error(lambda event: print(event.error))
        bus.publish(record)
        sub.unsubscribe()
    """

    _RECORDS = "records"
    _ERRORS = "errors"

    def __init__(self) -> None:
        """Initialize the bus with empty subscriber registries."""
        self._handlers: dict[str, dict[str, RecordHandler | ErrorHandler]] = {
            self._RECORDS: {},
            self._ERRORS: {},
        }
        # Guards the handler registries
        self._lock = threading.Lock()
        # Serializes deliveries; re-entrant so a handler may publish
        self._emit_lock = threading.RLock()
        # Records published by handlers during a delivery round
        self._queued: deque[AnyRecord] = deque()
        self._delivering = False
        self._published = 0
        logger.debug("RecordBus initialized")

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def subscribe(self, handler: RecordHandler) -> Subscription:
        """
        Subscribe to every record published on the bus.

        Args:
            handler: Callable receiving each record

        Returns:
            Subscription handle; call it to unsubscribe
        """
        return self._add(self._RECORDS, handler)

    def on_error(self, handler: ErrorHandler) -> Subscription:
        """
        Register an observer for non-fatal diagnostics.

        Args:
            handler: Callable receiving MonitorErrorEvent objects

        Returns:
            Subscription handle; call it to unsubscribe
        """
        return self._add(self._ERRORS, handler)

    def _add(self, channel: str, handler) -> Subscription:
        subscription_id = str(uuid.uuid4())
        with self._lock:
            self._handlers[channel][subscription_id] = handler
            total = len(self._handlers[channel])

        logger.debug(
            "Subscribed to bus",
            extra={"channel": channel, "subscription_id": subscription_id, "total_subscribers": total},
        )
        return Subscription(self, subscription_id, channel)

    def _remove(self, channel: str, subscription_id: str) -> bool:
        with self._lock:
            removed = self._handlers[channel].pop(subscription_id, None) is not None

        if removed:
            logger.debug(
                "Unsubscribed from bus",
                extra={"channel": channel, "subscription_id": subscription_id},
            )
        return removed

    def _is_active(self, channel: str, subscription_id: str) -> bool:
        with self._lock:
            return subscription_id in self._handlers[channel]

    def _snapshot(self, channel: str) -> list[tuple[str, RecordHandler | ErrorHandler]]:
        with self._lock:
            return list(self._handlers[channel].items())

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def publish(self, record: AnyRecord) -> None:
        """
        Deliver a record to all current subscribers, in subscription order.

        Handler exceptions are logged and reported on the error channel;
        they do not prevent other handlers from receiving the record.

        A record published from inside a handler is queued and delivered
        after every subscriber has received the current record.

        Args:
            record: Record accepted by the de-duplicator
        """
        with self._emit_lock:
            if self._delivering:
                self._queued.append(record)
                return

            self._delivering = True
            try:
                self._deliver(record)
                while self._queued:
                    self._deliver(self._queued.popleft())
            finally:
                self._delivering = False
                self._queued.clear()

    def _deliver(self, record: AnyRecord) -> None:
        self._published += 1
        for subscription_id, handler in self._snapshot(self._RECORDS):
            if not self._is_active(self._RECORDS, subscription_id):
                continue
            try:
                handler(record)
            except Exception as e:
                logger.error(
                    "Record handler raised exception",
                    extra={
                        "subscription_id": subscription_id,
                        "record_type": record.type.value,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                self.report_error(e, source="subscriber", path=record.source_path)

    def report_error(
        self,
        error: BaseException,
        source: str,
        path: str | None = None,
        fatal: bool = False,
    ) -> None:
        """
        Deliver a diagnostic to error observers.

        Errors raised by the observers themselves are logged and dropped.

        Args:
            error: The exception to report
            source: Component reporting it
            path: Log file involved, if any
            fatal: Whether the monitor is now running degraded
        """
        event = MonitorErrorEvent(error=error, source=source, path=path, fatal=fatal)
        for subscription_id, handler in self._snapshot(self._ERRORS):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Error handler raised exception",
                    extra={"subscription_id": subscription_id, "error": str(e)},
                )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def published_count(self) -> int:
        """Number of records published since creation."""
        return self._published

    def get_subscriber_count(self, errors: bool = False) -> int:
        """
        Get the number of record subscribers (or error observers).

        Args:
            errors: Count error observers instead of record subscribers
        """
        channel = self._ERRORS if errors else self._RECORDS
        with self._lock:
            return len(self._handlers[channel])

    def clear(self) -> None:
        """Remove every subscriber and error observer."""
        with self._lock:
            for handlers in self._handlers.values():
                handlers.clear()
