"""Discovery of session log files under creation races.

The agent may create its project directory and session files at any moment,
including in the short window before monitoring begins. FileDiscovery decides
which files to tail; LogDirectoryWatcher turns file system notifications into
discovery calls. Both notification and polling paths end in the same
idempotent ``track()``.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..compat import parse_timestamp
from .config import MonitorConfig
from .models import LOG_SUFFIX, TrackedFile, agent_id_from_path, is_sub_agent_file

logger = logging.getLogger(__name__)

# How far back from the end of a file to look for the last complete line
_TAIL_WINDOW_BYTES = 64 * 1024
# How much of the start of a file to inspect for its first records
_HEAD_WINDOW_BYTES = 64 * 1024


def _read_head(path: str | Path) -> bytes:
    with open(path, "rb") as f:
        return f.read(_HEAD_WINDOW_BYTES)


def _record_timestamp(data: object) -> str | None:
    if not isinstance(data, dict):
        return None
    timestamp = data.get("timestamp")
    if timestamp is None and isinstance(data.get("snapshot"), dict):
        timestamp = data["snapshot"].get("timestamp")
    return timestamp if isinstance(timestamp, str) else None


def first_record_time(path: str | Path) -> float | None:
    """Epoch seconds of the first timestamped record near the start of a file.

    Only complete lines are considered. Returns None when none of them
    carries a parseable timestamp.
    """
    head = _read_head(path)
    complete = head[: head.rfind(b"\n") + 1]
    for raw in complete.splitlines():
        try:
            data = json.loads(raw.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            continue
        parsed = parse_timestamp(_record_timestamp(data))
        if parsed is not None:
            return parsed.timestamp()
    return None


def creation_time(path: str | Path, stat_result: os.stat_result) -> float:
    """Best available creation time for a file.

    ``st_birthtime`` where the platform records it. Elsewhere ``st_ctime``
    moves forward on every append, so the first record timestamp in the
    file is used when it is earlier.
    """
    birthtime = getattr(stat_result, "st_birthtime", None)
    if birthtime:
        return birthtime

    recorded = first_record_time(path)
    if recorded is not None and recorded < stat_result.st_ctime:
        return recorded
    return stat_result.st_ctime


def end_of_last_line(path: str | Path, file_size: int) -> int:
    """Offset just past the last newline in a file.

    Used to skip existing content without starting in the middle of a line
    the agent is still writing. Falls back to ``file_size`` when no newline
    is found near the end of the file.
    """
    if file_size <= 0:
        return 0

    start = max(0, file_size - _TAIL_WINDOW_BYTES)
    with open(path, "rb") as f:
        f.seek(start)
        tail = f.read(file_size - start)

    index = tail.rfind(b"\n")
    if index == -1:
        return file_size
    return start + index + 1


def first_line_session_id(path: str | Path) -> str | None:
    """Session id recorded on the first complete line of a log file.

    Returns None if the first line is incomplete, not JSON, or carries no
    session id.
    """
    head = _read_head(path)

    newline = head.find(b"\n")
    if newline == -1:
        return None

    try:
        data = json.loads(head[:newline].decode("utf-8", errors="replace"))
    except json.JSONDecodeError:
        return None

    if isinstance(data, dict) and isinstance(data.get("sessionId"), str):
        return data["sessionId"]
    return None


class FileDiscovery:
    """Maintains the set of session log files to tail.

    Two modes are supported:

    - **Explicit session**: ``config.session_id`` is set. The session's log is
      located anywhere under the projects path and becomes the primary file;
      sub-agent sidecars in the same directory that belong to the session are
      adopted as they appear.
    - **Project directory**: the directory is derived from
      ``config.working_directory``. The first non-sidecar file adopted
      becomes the primary file and fixes the session id.

    Files are adopted only if created no earlier than ``started_at`` minus the
    creation-tolerance window. Files outside the window are remembered and
    never reconsidered.

    Attributes:
        config: Monitor configuration.
        started_at: Epoch seconds when watching started.
        project_dir: Directory being scanned, once known.
        session_id: Session id, once known.
        tracked: Tracked files keyed by absolute path.
    """

    # Minimum seconds between recursive searches for an explicit session
    session_search_interval = 1.0

    def __init__(self, config: MonitorConfig, started_at: float | None = None):
        self.config = config
        self.started_at = time.time() if started_at is None else started_at
        self.project_dir: Path | None = None
        self.session_id: str | None = config.session_id
        self.primary: TrackedFile | None = None
        self.tracked: dict[str, TrackedFile] = {}
        self._ignored: set[str] = set()
        self._last_search: float | None = None
        self._lock = threading.RLock()

        if not config.session_id:
            self.project_dir = config.get_derived_project_path()

    @property
    def explicit_session(self) -> bool:
        return bool(self.config.session_id)

    @property
    def tolerance_cutoff(self) -> float:
        return self.started_at - self.config.new_file_tolerance_seconds

    # ------------------------------------------------------------------
    # Target resolution
    # ------------------------------------------------------------------

    def locate_session_file(self) -> Path | None:
        """Search the projects path for ``<session_id>.jsonl``."""
        projects_path = self.config.get_projects_path()
        if not self.config.session_id or not projects_path.is_dir():
            return None

        file_name = f"{self.config.session_id}{LOG_SUFFIX}"
        for candidate in projects_path.rglob(file_name):
            if candidate.is_file():
                return candidate
        return None

    def resolve(self) -> Path | None:
        """Determine the directory to watch, if it exists yet.

        In explicit-session mode this also adopts the session's log file as
        the primary file the first time it is found. The recursive search
        for it runs at most once per ``session_search_interval``.

        Returns:
            The existing project directory, or None while still waiting.
        """
        with self._lock:
            if self.explicit_session and self.primary is None:
                now = time.monotonic()
                if (
                    self._last_search is not None
                    and now - self._last_search < self.session_search_interval
                ):
                    return None
                self._last_search = now

                try:
                    session_file = self.locate_session_file()
                    if session_file is None:
                        return None
                    self._track_session_file(session_file)
                except OSError as e:
                    logger.debug(f"Session {self.session_id} not accessible yet: {e}")
                    return None
                self.project_dir = session_file.parent

            if self.project_dir is not None and self.project_dir.is_dir():
                return self.project_dir
            return None

    def _track_session_file(self, session_file: Path) -> None:
        path = str(session_file.resolve())
        offset = 0
        if not self.config.include_existing_content:
            offset = end_of_last_line(path, session_file.stat().st_size)

        tracked = TrackedFile(path=path, is_primary=True, offset=offset)
        self.tracked[path] = tracked
        self.primary = tracked
        logger.info(
            f"Monitoring session {self.session_id} at {path} (starting at offset {offset})"
        )

    # ------------------------------------------------------------------
    # Scanning and tracking
    # ------------------------------------------------------------------

    def scan(self) -> list[TrackedFile]:
        """Scan the project directory for new session logs.

        Access errors are swallowed; the next scan retries.

        Returns:
            Files newly tracked by this scan.
        """
        project_dir = self.resolve()
        if project_dir is None:
            return []

        try:
            candidates = [
                entry
                for entry in project_dir.iterdir()
                if fnmatch.fnmatch(entry.name, f"*{LOG_SUFFIX}")
            ]
        except OSError as e:
            logger.debug(f"Failed to scan {project_dir}: {e}")
            return []

        # Oldest first, so the primary file is the first one the agent created
        dated: list[tuple[float, Path]] = []
        for candidate in candidates:
            if self._is_settled(candidate):
                continue
            try:
                dated.append((creation_time(candidate, candidate.stat()), candidate))
            except OSError:
                continue
        dated.sort(key=lambda item: item[0])

        new_files = []
        for _, candidate in dated:
            tracked = self.consider(candidate)
            if tracked is not None:
                new_files.append(tracked)
        return new_files

    def consider(self, path: str | Path) -> TrackedFile | None:
        """Apply adoption rules to a file seen by a scan or a notification.

        Returns:
            The newly tracked file, or None if the file is already tracked,
            ignored, or not (yet) eligible.
        """
        candidate = Path(path)
        if not candidate.name.endswith(LOG_SUFFIX):
            return None

        key = str(candidate.resolve())
        with self._lock:
            if key in self.tracked or key in self._ignored:
                return None
            if self.project_dir is None or candidate.parent.resolve() != self.project_dir.resolve():
                return None

            try:
                stat_result = candidate.stat()
            except OSError as e:
                logger.debug(f"Cannot stat {candidate}: {e}")
                return None

            if self.explicit_session:
                return self._consider_sidecar(candidate, key, stat_result)

            try:
                created = creation_time(candidate, stat_result)
            except OSError as e:
                logger.debug(f"Cannot read {candidate}: {e}")
                return None

            if created < self.tolerance_cutoff:
                logger.debug(f"Ignoring pre-existing log file {candidate}")
                self._ignored.add(key)
                return None

            return self.track(key)

    def _consider_sidecar(
        self, candidate: Path, key: str, stat_result: os.stat_result
    ) -> TrackedFile | None:
        if not is_sub_agent_file(candidate):
            self._ignored.add(key)
            return None

        try:
            is_new = creation_time(candidate, stat_result) >= self.tolerance_cutoff
            if not is_new and not self.config.include_existing_content:
                self._ignored.add(key)
                return None
            owner = first_line_session_id(candidate)
        except OSError:
            return None
        if owner is None:
            # First line not written yet
            return None
        if owner != self.session_id:
            self._ignored.add(key)
            return None

        return self.track(key)

    def track(self, path: str | Path) -> TrackedFile | None:
        """Start tailing a file from its beginning. Idempotent.

        The first tracked file that is not a sub-agent sidecar becomes the
        primary file and fixes the session id.

        Returns:
            The new TrackedFile, or None if the path was already tracked.
        """
        key = str(Path(path).resolve())
        with self._lock:
            if key in self.tracked:
                return None

            is_primary = False
            if not is_sub_agent_file(key) and self.primary is None:
                is_primary = True

            tracked = TrackedFile(
                path=key,
                is_primary=is_primary,
                agent_id=agent_id_from_path(key),
            )
            self.tracked[key] = tracked

            if is_primary:
                self.primary = tracked
                self.session_id = Path(key).name[: -len(LOG_SUFFIX)]
                logger.info(f"Discovered session {self.session_id} at {key}")
            else:
                logger.info(
                    f"Tracking {'sub-agent' if tracked.is_sub_agent else 'additional'} log {key}"
                )
            return tracked

    def _is_settled(self, path: Path) -> bool:
        """True once a file has been tracked or permanently ignored."""
        key = str(path.resolve())
        with self._lock:
            return key in self.tracked or key in self._ignored

    def get(self, path: str | Path) -> TrackedFile | None:
        return self.tracked.get(str(Path(path).resolve()))

    def all_tracked(self) -> list[TrackedFile]:
        with self._lock:
            return list(self.tracked.values())


class _LogEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for session logs and directory creation."""

    def __init__(
        self,
        on_file: Callable[[str], None],
        on_directory: Callable[[str], None] | None = None,
        directory_name: str | None = None,
    ):
        super().__init__()
        self.on_file = on_file
        self.on_directory = on_directory
        self.directory_name = directory_name

    def _handle(self, event: FileSystemEvent, path: str | bytes) -> None:
        path = os.fsdecode(path)
        if event.is_directory:
            if self.on_directory is not None and Path(path).name == self.directory_name:
                self.on_directory(path)
            return

        if path.endswith(LOG_SUFFIX):
            self.on_file(path)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._handle(event, event.dest_path)


class LogDirectoryWatcher:
    """File system notifications for session log directories.

    Notifications are delivered on the watchdog observer thread. They are
    treated as hints only; polling remains the source of truth.

    Usage:
        watcher = LogDirectoryWatcher(on_file=print, on_directory=print)
        watcher.watch_directory(Path("/logs/project"))
        watcher.start()
        # ... later
        watcher.stop()
    """

    def __init__(
        self,
        on_file: Callable[[str], None],
        on_directory: Callable[[str], None] | None = None,
    ):
        self.on_file = on_file
        self.on_directory = on_directory
        self._observer = Observer()
        self._watches: dict[str, object] = {}
        self._running = False
        self._lock = threading.Lock()

    def watch_directory(self, path: Path) -> bool:
        """Watch a directory for session log changes. Idempotent.

        Raises:
            OSError: If the directory cannot be watched.
        """
        key = f"files:{path}"
        with self._lock:
            if key in self._watches:
                return False
            handler = _LogEventHandler(on_file=self.on_file)
            self._watches[key] = self._observer.schedule(handler, str(path), recursive=False)
        logger.debug(f"Watching {path} for session log changes")
        return True

    def watch_for_directory(self, parent: Path, name: str) -> bool:
        """Watch ``parent`` for the creation of a subdirectory called ``name``.

        Raises:
            OSError: If the parent directory cannot be watched.
        """
        key = f"parent:{parent}"
        with self._lock:
            if key in self._watches:
                return False
            handler = _LogEventHandler(
                on_file=lambda _path: None,
                on_directory=self.on_directory,
                directory_name=name,
            )
            self._watches[key] = self._observer.schedule(handler, str(parent), recursive=False)
        logger.debug(f"Waiting for {parent / name} to be created")
        return True

    def unwatch_parent(self, parent: Path) -> None:
        key = f"parent:{parent}"
        with self._lock:
            watch = self._watches.pop(key, None)
        if watch is not None:
            try:
                self._observer.unschedule(watch)
            except (KeyError, ValueError):
                pass

    def start(self) -> None:
        """Start delivering notifications."""
        if not self._running:
            self._observer.start()
            self._running = True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop delivering notifications and tear down all watches."""
        if not self._running:
            return
        self._observer.unschedule_all()
        self._observer.stop()
        self._observer.join(timeout=timeout)
        self._running = False
        with self._lock:
            self._watches.clear()

    def is_running(self) -> bool:
        return self._running
