"""
SessionMonitor - Live tailing of an agent session's JSONL logs.

The monitor discovers the session's primary log and its sub-agent sidecars,
reads appended bytes incrementally, and publishes every new record exactly
once, in one global order, on a RecordBus. A SessionAggregator subscribed
first keeps cumulative statistics.

Two producers drive reading: a background asyncio task that polls every
``poll_interval_seconds``, and watchdog notifications delivered on the
observer thread. Both end in ``_read_file()``, which is serialized per file.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from pathlib import Path

import aiofiles
import aiofiles.os

from .activity import Activity, activities_from_record
from .aggregation import SessionAggregator, SessionStats
from .events import RecordBus, Subscription
from .events.models import ErrorHandler, RecordHandler
from .exceptions import ConfigError, MonitorClosedError, RecordParseError
from .monitoring.config import MonitorConfig
from .monitoring.deduplicator import Deduplicator
from .monitoring.discovery import FileDiscovery, LogDirectoryWatcher
from .monitoring.line_framer import LineFramer
from .monitoring.models import AnyRecord, MonitorState, TrackedFile
from .monitoring.record_parser import parse_line, seen_key

logger = logging.getLogger(__name__)


class SessionMonitor:
    """
    Tails a session's logs and publishes typed records.

    Lifecycle: STOPPED -> STARTING -> WATCHING -> STOPPED, and CLOSED once
    ``close()`` is called. A monitor can be restarted after ``stop()``. Tracked
    files, their read offsets and the set of already-emitted records all
    survive the restart, so tailing resumes where it stopped and nothing is
    re-emitted.

    Example:
        config = MonitorConfig(working_directory="/home/me/project")
        async with SessionMonitor(config) as monitor:
            monitor.subscribe(lambda record: print(record.type.value))
            await asyncio.sleep(60)
        print(monitor.stats.tool_calls)
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        bus: RecordBus | None = None,
        aggregator: SessionAggregator | None = None,
    ):
        """
        Initialize the monitor.

        Args:
            config: Monitor configuration (defaults to MonitorConfig())
            bus: Record bus to publish on (a private one is created if omitted)
            aggregator: Aggregator to feed (a new one is created if omitted)
        """
        self.config = config or MonitorConfig()
        self.bus = bus or RecordBus()
        self._aggregator = aggregator or SessionAggregator()
        # Subscribed before any caller so statistics are current in handlers
        self._aggregator.attach(self.bus)

        self._dedup = Deduplicator(self.config.dedup_capacity)
        self._framer = LineFramer(self.config.max_read_bytes)

        self._state = MonitorState.STOPPED
        self._discovery: FileDiscovery | None = None
        self._watcher: LogDirectoryWatcher | None = None
        self._watched_dir: Path | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task | None = None
        self._file_locks: dict[str, asyncio.Lock] = {}
        # Bumped on stop so reads that straddle it leave their offsets alone
        self._generation = 0
        # Futures are submitted from the observer thread
        self._pending_reads: set[Future] = set()
        self._pending_lock = threading.Lock()

    # ============================================================================
    # Properties
    # ============================================================================

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_monitoring(self) -> bool:
        return self._state is MonitorState.WATCHING

    @property
    def session_id(self) -> str | None:
        """Session id, once known (explicit, or fixed by the primary file)."""
        if self._discovery is not None and self._discovery.session_id:
            return self._discovery.session_id
        return self.config.session_id

    @property
    def tracked_files(self) -> list[TrackedFile]:
        if self._discovery is None:
            return []
        return self._discovery.all_tracked()

    @property
    def aggregator(self) -> SessionAggregator:
        return self._aggregator

    @property
    def stats(self) -> SessionStats:
        """Snapshot of the aggregated session statistics."""
        return self._aggregator.snapshot()

    # ============================================================================
    # Subscriptions
    # ============================================================================

    def subscribe(self, handler: RecordHandler) -> Subscription:
        """Receive every newly emitted record, in emission order."""
        return self.bus.subscribe(handler)

    def on_error(self, handler: ErrorHandler) -> Subscription:
        """Receive non-fatal diagnostics (parse failures, watcher errors)."""
        return self.bus.on_error(handler)

    def subscribe_activities(self, handler: Callable[[Activity], None]) -> Subscription:
        """Receive flattened Activity objects instead of raw records."""

        def forward(record: AnyRecord) -> None:
            for activity in activities_from_record(record):
                handler(activity)

        return self.bus.subscribe(forward)

    # ============================================================================
    # Lifecycle Methods
    # ============================================================================

    async def start(self) -> None:
        """
        Start monitoring.

        Starting a running monitor is a no-op. If the session log or project
        directory does not exist yet, the monitor keeps waiting for it.

        Raises:
            MonitorClosedError: If the monitor has been closed
            ConfigError: If neither a session id nor a working directory is set
        """
        if self._state is MonitorState.CLOSED:
            raise MonitorClosedError("SessionMonitor has been closed")
        if self._state is not MonitorState.STOPPED:
            return
        if not self.config.session_id and not self.config.working_directory:
            raise ConfigError("Either session_id or working_directory must be set")

        self._state = MonitorState.STARTING
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            # asyncio locks are bound to the loop that first used them
            self._file_locks.clear()
        self._loop = loop
        # Tracked files and their offsets are kept across a restart
        if self._discovery is None:
            self._discovery = FileDiscovery(self.config, started_at=time.time())
        self._watched_dir = None

        target = self.config.session_id or self.config.working_directory
        logger.info(f"Starting SessionMonitor for {target}")

        await asyncio.to_thread(self._discovery.resolve)
        if self._state is not MonitorState.STARTING:
            # Stopped while resolving
            return
        if self.config.use_file_events:
            self._start_watcher()

        self._state = MonitorState.WATCHING
        self._task = asyncio.create_task(self._poll_loop())

        logger.info(
            f"SessionMonitor started (poll interval: {self.config.poll_interval_seconds}s)",
            extra={"session_id": self.session_id},
        )

    def _start_watcher(self) -> None:
        watcher = LogDirectoryWatcher(
            on_file=self._on_file_event,
            on_directory=self._on_directory_event,
        )
        try:
            self._watch_target(watcher)
            watcher.start()
        except Exception as e:
            logger.warning(f"File notifications unavailable, polling only: {e}")
            self.bus.report_error(e, source="watcher", fatal=True)
            return
        self._watcher = watcher

    def _watch_target(self, watcher: LogDirectoryWatcher) -> None:
        project_dir = self._discovery.project_dir
        if project_dir is not None and project_dir.is_dir():
            watcher.watch_directory(project_dir)
            self._watched_dir = project_dir
            return

        # Explicit sessions are searched for on every tick instead
        expected = self._discovery.project_dir
        if expected is not None and expected.parent.is_dir():
            watcher.watch_for_directory(expected.parent, expected.name)

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop monitoring. Stopping a stopped monitor is a no-op.

        Args:
            timeout: Maximum time to wait for the poll task and observer
        """
        if self._state not in (MonitorState.STARTING, MonitorState.WATCHING):
            return

        logger.info("Stopping SessionMonitor...")
        self._state = MonitorState.STOPPED
        self._generation += 1

        if self._task:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Poll task did not stop within timeout")
            except asyncio.CancelledError:
                logger.debug("Poll task cancelled")
            self._task = None

        if self._watcher is not None:
            watcher, self._watcher = self._watcher, None
            await asyncio.to_thread(watcher.stop, timeout)

        with self._pending_lock:
            pending_reads, self._pending_reads = self._pending_reads, set()
        for pending in pending_reads:
            pending.cancel()

        logger.info("SessionMonitor stopped")

    async def close(self) -> None:
        """Stop monitoring and release all subscribers. Idempotent."""
        if self._state is MonitorState.CLOSED:
            return
        await self.stop()
        self._aggregator.detach()
        self.bus.clear()
        self._state = MonitorState.CLOSED
        logger.debug("SessionMonitor closed")

    async def __aenter__(self) -> SessionMonitor:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # ============================================================================
    # Polling
    # ============================================================================

    async def _poll_loop(self) -> None:
        """
        Main poll loop (runs in background task).

        Handles all exceptions to prevent task crashes; a failing tick is
        logged and the next tick retries.
        """
        logger.debug("Poll loop started")

        while self._state is MonitorState.WATCHING:
            try:
                await self._poll_once()
                await asyncio.sleep(self.config.poll_interval_seconds)
            except asyncio.CancelledError:
                logger.debug("Poll loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in poll loop: {e}", exc_info=True)
                await asyncio.sleep(self.config.poll_interval_seconds)

        logger.debug("Poll loop exited")

    async def _poll_once(self) -> None:
        discovery = self._discovery
        if discovery is None:
            return

        await asyncio.to_thread(discovery.scan)
        self._ensure_directory_watch()

        tracked = discovery.all_tracked()
        if not tracked:
            return

        results = await asyncio.gather(
            *(self._read_file(file) for file in tracked), return_exceptions=True
        )
        for file, result in zip(tracked, results):
            if isinstance(result, Exception):
                logger.error(
                    "Failed to process log file",
                    extra={"path": file.path, "error": str(result)},
                )
                self.bus.report_error(result, source="reader", path=file.path)

    def _ensure_directory_watch(self) -> None:
        """Switch the watcher from the parent to the project directory once it exists."""
        watcher = self._watcher
        if watcher is None or self._watched_dir is not None:
            return

        project_dir = self._discovery.project_dir
        if project_dir is None or not project_dir.is_dir():
            return

        try:
            watcher.watch_directory(project_dir)
        except OSError as e:
            logger.debug(f"Cannot watch {project_dir} yet: {e}")
            return
        self._watched_dir = project_dir
        watcher.unwatch_parent(project_dir.parent)

    async def read_now(self) -> int:
        """
        Run one discovery and read pass immediately.

        Works whether or not the background loop is running.

        Returns:
            Number of records published by this pass

        Raises:
            MonitorClosedError: If the monitor has been closed
        """
        if self._state is MonitorState.CLOSED:
            raise MonitorClosedError("SessionMonitor has been closed")
        if self._discovery is None:
            self._discovery = FileDiscovery(self.config, started_at=time.time())

        before = self.bus.published_count
        await self._poll_once()
        return self.bus.published_count - before

    # ============================================================================
    # Notifications (observer thread)
    # ============================================================================

    def _on_file_event(self, path: str) -> None:
        self._submit(self._handle_file_event(path))

    def _on_directory_event(self, path: str) -> None:
        if self._state is not MonitorState.WATCHING:
            return
        logger.debug(f"Project directory created: {path}")
        self._submit(self._poll_once())

    def _submit(self, coro) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            return
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        with self._pending_lock:
            self._pending_reads.add(future)
        future.add_done_callback(self._forget_pending)

    def _forget_pending(self, future: Future) -> None:
        with self._pending_lock:
            self._pending_reads.discard(future)

    async def _handle_file_event(self, path: str) -> None:
        discovery = self._discovery
        if discovery is None or self._state is not MonitorState.WATCHING:
            return
        tracked = discovery.get(path)
        if tracked is None:
            tracked = await asyncio.to_thread(discovery.consider, path)
        if tracked is not None:
            await self._read_file(tracked)

    # ============================================================================
    # Reading
    # ============================================================================

    async def _read_file(self, tracked: TrackedFile) -> None:
        """
        Read newly appended bytes of one file and publish the records in them.

        Concurrent triggers for the same file are dropped while a read is in
        progress. I/O errors are transient: the file is retried next tick.
        """
        lock = self._file_locks.setdefault(tracked.path, asyncio.Lock())
        if lock.locked():
            return

        async with lock:
            generation = self._generation
            try:
                stat_result = await aiofiles.os.stat(tracked.path)
                self._framer.check_truncation(tracked, stat_result.st_size)
                to_read = self._framer.bytes_to_read(tracked, stat_result.st_size)
                if to_read == 0:
                    return

                async with aiofiles.open(tracked.path, "rb") as f:
                    await f.seek(tracked.offset)
                    chunk = await f.read(to_read)
            except OSError as e:
                logger.debug(f"Failed to read {tracked.path}: {e}")
                return

            # A chunk read across a stop is dropped; its offset is unchanged,
            # so the same bytes are read again after the restart
            if self._generation != generation:
                return

            lines = self._framer.feed(tracked, chunk)
            self._emit_lines(tracked, lines)

    def _emit_lines(self, tracked: TrackedFile, lines: list[str]) -> None:
        for line in lines:
            if not line.strip():
                continue

            try:
                record = parse_line(line, source=tracked)
            except RecordParseError as e:
                logger.warning(f"Skipping malformed line in {tracked.path}: {e}")
                self.bus.report_error(e, source="parser", path=tracked.path)
                continue

            if record is None:
                continue
            if not self._dedup.try_mark_seen(seen_key(record, line)):
                continue
            self.bus.publish(record)
