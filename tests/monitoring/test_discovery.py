"""Tests for session log discovery."""

import time
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileModifiedEvent, FileMovedEvent

from session_tail.monitoring.config import MonitorConfig
from session_tail.monitoring.discovery import (
    FileDiscovery,
    _LogEventHandler,
    creation_time,
    end_of_last_line,
    first_line_session_id,
    first_record_time,
)


class TestDirectoryMode:
    """Tests for discovery from a working directory."""

    def test_first_file_becomes_primary(
        self, directory_config: MonitorConfig, project_dir: Path
    ) -> None:
        """Test that the first non-sidecar file fixes the session id."""
        (project_dir / "4d2c.jsonl").write_text("")
        discovery = FileDiscovery(directory_config)

        new_files = discovery.scan()

        assert len(new_files) == 1
        assert new_files[0].is_primary is True
        assert new_files[0].offset == 0
        assert discovery.session_id == "4d2c"
        assert discovery.primary is new_files[0]

    def test_preexisting_file_ignored_permanently(
        self, directory_config: MonitorConfig, project_dir: Path
    ) -> None:
        """Test that files older than the tolerance window are never adopted."""
        (project_dir / "old.jsonl").write_text("{}\n")
        # Monitoring started long after the file was created
        discovery = FileDiscovery(directory_config, started_at=time.time() + 3600)

        assert discovery.scan() == []

        discovery.started_at = 0
        assert discovery.scan() == []
        assert discovery.primary is None

    def test_file_within_tolerance_adopted(
        self, directory_config: MonitorConfig, project_dir: Path
    ) -> None:
        """Test the creation race: a file created just before start is adopted."""
        (project_dir / "raced.jsonl").write_text("")
        discovery = FileDiscovery(directory_config, started_at=time.time() + 1.0)

        assert [Path(t.path).name for t in discovery.scan()] == ["raced.jsonl"]

    def test_late_sidecar_keeps_primary(
        self, directory_config: MonitorConfig, project_dir: Path
    ) -> None:
        """Test that a sidecar appearing later does not change the session."""
        (project_dir / "main-session.jsonl").write_text("")
        discovery = FileDiscovery(directory_config)
        discovery.scan()

        (project_dir / "agent-7f3a.jsonl").write_text("")
        new_files = discovery.scan()

        assert len(new_files) == 1
        sidecar = new_files[0]
        assert sidecar.is_primary is False
        assert sidecar.is_sub_agent is True
        assert sidecar.agent_id == "7f3a"
        assert discovery.session_id == "main-session"
        assert Path(discovery.primary.path).name == "main-session.jsonl"

    def test_sidecar_first_does_not_become_primary(
        self, directory_config: MonitorConfig, project_dir: Path
    ) -> None:
        """Test that only a non-sidecar file can be primary."""
        (project_dir / "agent-1.jsonl").write_text("")
        discovery = FileDiscovery(directory_config)
        discovery.scan()

        assert discovery.primary is None
        assert discovery.session_id is None

        (project_dir / "real.jsonl").write_text("")
        discovery.scan()
        assert discovery.session_id == "real"

    def test_active_older_session_not_adopted(
        self, directory_config: MonitorConfig, project_dir: Path, lines, append_lines
    ) -> None:
        """Test that an older session still being appended to is not taken for a new one."""
        directory_config.new_file_tolerance_seconds = 0.1
        old = project_dir / "old.jsonl"
        append_lines(old, lines.user("old 1", timestamp=lines.timestamp(3600)))
        time.sleep(0.3)
        append_lines(old, lines.user("old 2"))
        discovery = FileDiscovery(directory_config)

        assert discovery.scan() == []

        append_lines(project_dir / "new.jsonl", lines.user("new"))
        assert [Path(t.path).name for t in discovery.scan()] == ["new.jsonl"]
        assert discovery.session_id == "new"

    def test_missing_project_directory(
        self, directory_config: MonitorConfig, projects_dir: Path
    ) -> None:
        """Test waiting for the project directory to be created."""
        discovery = FileDiscovery(directory_config)

        assert discovery.resolve() is None
        assert discovery.scan() == []

        project_dir = projects_dir / "-home-dev-my-project"
        project_dir.mkdir()
        (project_dir / "s.jsonl").write_text("")

        assert discovery.resolve() == project_dir
        assert len(discovery.scan()) == 1

    def test_track_is_idempotent(
        self, directory_config: MonitorConfig, project_dir: Path
    ) -> None:
        """Test that notification and polling paths may both track a file."""
        path = project_dir / "s.jsonl"
        path.write_text("")
        discovery = FileDiscovery(directory_config)

        first = discovery.track(path)
        assert first is not None
        assert discovery.track(path) is None
        assert discovery.consider(path) is None
        assert discovery.scan() == []
        assert discovery.all_tracked() == [first]

    def test_non_log_files_and_other_directories(
        self, directory_config: MonitorConfig, project_dir: Path, tmp_path: Path
    ) -> None:
        """Test that only .jsonl files inside the project directory count."""
        (project_dir / "notes.txt").write_text("")
        elsewhere = tmp_path / "elsewhere.jsonl"
        elsewhere.write_text("")
        discovery = FileDiscovery(directory_config)
        discovery.resolve()

        assert discovery.consider(project_dir / "notes.txt") is None
        assert discovery.consider(elsewhere) is None
        assert discovery.scan() == []


class TestExplicitSession:
    """Tests for discovery of a known session id."""

    def _config(self, projects_dir: Path, **kwargs) -> MonitorConfig:
        return MonitorConfig(
            session_id="sess-42", projects_path=str(projects_dir), use_file_events=False, **kwargs
        )

    def test_skips_existing_content(self, projects_dir: Path, lines, append_lines) -> None:
        """Test that a found session starts after its last complete line."""
        lines.session_id = "sess-42"
        session_dir = projects_dir / "-some-project"
        session_dir.mkdir()
        session_file = session_dir / "sess-42.jsonl"
        append_lines(session_file, lines.user("one"), lines.user("two"))
        complete_size = session_file.stat().st_size
        with session_file.open("a") as f:
            f.write('{"type": "us')

        discovery = FileDiscovery(self._config(projects_dir))

        assert discovery.resolve() == session_dir
        assert discovery.primary.offset == complete_size
        assert discovery.session_id == "sess-42"

    def test_include_existing_content(self, projects_dir: Path, lines, append_lines) -> None:
        """Test reading an explicit session from the beginning."""
        session_dir = projects_dir / "-p"
        session_dir.mkdir()
        append_lines(session_dir / "sess-42.jsonl", lines.user("one"))

        discovery = FileDiscovery(self._config(projects_dir, include_existing_content=True))
        discovery.resolve()

        assert discovery.primary.offset == 0

    def test_session_not_found_yet(self, projects_dir: Path) -> None:
        """Test that a missing session file is retried on later calls."""
        discovery = FileDiscovery(self._config(projects_dir))
        discovery.session_search_interval = 0
        assert discovery.resolve() is None

        session_dir = projects_dir / "-late"
        session_dir.mkdir()
        (session_dir / "sess-42.jsonl").write_text("")

        assert discovery.resolve() == session_dir

    def test_session_search_is_throttled(self, projects_dir: Path) -> None:
        """Test that the recursive search does not run on every call."""
        discovery = FileDiscovery(self._config(projects_dir))
        discovery.session_search_interval = 3600
        assert discovery.resolve() is None

        session_dir = projects_dir / "-late"
        session_dir.mkdir()
        (session_dir / "sess-42.jsonl").write_text("")
        assert discovery.resolve() is None

        discovery.session_search_interval = 0
        assert discovery.resolve() == session_dir

    def test_sidecars_must_belong_to_session(
        self, projects_dir: Path, lines, append_lines
    ) -> None:
        """Test sidecar adoption by the session id on its first line."""
        lines.session_id = "sess-42"
        session_dir = projects_dir / "-p"
        session_dir.mkdir()
        (session_dir / "sess-42.jsonl").write_text("")
        append_lines(session_dir / "agent-mine.jsonl", lines.user("sub"))
        (session_dir / "agent-other.jsonl").write_text(
            '{"type": "user", "sessionId": "someone-else"}\n'
        )
        (session_dir / "unrelated-session.jsonl").write_text("")

        discovery = FileDiscovery(self._config(projects_dir))
        new_files = discovery.scan()

        assert [Path(t.path).name for t in new_files] == ["agent-mine.jsonl"]
        assert new_files[0].agent_id == "mine"

    def test_sidecar_with_incomplete_first_line_deferred(
        self, projects_dir: Path, lines
    ) -> None:
        """Test that a sidecar is reconsidered once its first line is complete."""
        lines.session_id = "sess-42"
        session_dir = projects_dir / "-p"
        session_dir.mkdir()
        (session_dir / "sess-42.jsonl").write_text("")
        sidecar = session_dir / "agent-slow.jsonl"
        full_line = lines.user("sub")
        sidecar.write_text(full_line[:10])

        discovery = FileDiscovery(self._config(projects_dir))
        assert discovery.scan() == []

        sidecar.write_text(full_line + "\n")
        assert len(discovery.scan()) == 1


class TestFileHelpers:
    """Tests for low-level file helpers."""

    def test_end_of_last_line(self, tmp_path: Path) -> None:
        """Test locating the end of the last complete line."""
        path = tmp_path / "s.jsonl"
        path.write_bytes(b"abc\ndef\nghi")

        assert end_of_last_line(path, path.stat().st_size) == 8
        assert end_of_last_line(path, 0) == 0

    def test_end_of_last_line_without_newline(self, tmp_path: Path) -> None:
        """Test a file that has no complete line yet."""
        path = tmp_path / "s.jsonl"
        path.write_bytes(b"partial")

        assert end_of_last_line(path, 7) == 7

    def test_first_record_time(self, tmp_path: Path, lines, append_lines) -> None:
        """Test that untimestamped and broken lines are skipped."""
        path = tmp_path / "s.jsonl"
        append_lines(
            path,
            lines.summary("no timestamp"),
            "not json",
            lines.user("a", timestamp="2025-01-15T10:30:00.000Z"),
        )

        expected = datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc).timestamp()
        assert first_record_time(path) == expected

        path.write_text(lines.summary("only"))
        assert first_record_time(path) is None

    def test_creation_time_without_birthtime(self, tmp_path: Path, lines, append_lines) -> None:
        """Test that the first record stands in for a creation time that ctime lost."""
        path = tmp_path / "s.jsonl"
        append_lines(path, lines.user("a", timestamp="2025-01-15T10:30:00.000Z"))
        now = time.time()

        created = creation_time(path, SimpleNamespace(st_ctime=now))

        assert created == datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc).timestamp()

    def test_creation_time_fallbacks(self, tmp_path: Path, lines, append_lines) -> None:
        """Test birthtime preference and the ctime fallback."""
        path = tmp_path / "s.jsonl"
        path.write_text("")
        assert creation_time(path, SimpleNamespace(st_birthtime=123.0, st_ctime=456.0)) == 123.0
        assert creation_time(path, SimpleNamespace(st_ctime=456.0)) == 456.0

        # A record stamped after the ctime does not move the creation time forward
        append_lines(path, lines.user("a", timestamp=lines.timestamp(-3600)))
        assert creation_time(path, SimpleNamespace(st_ctime=456.0)) == 456.0

    def test_first_line_session_id(self, tmp_path: Path) -> None:
        """Test reading the owning session from the first line."""
        path = tmp_path / "agent-1.jsonl"
        path.write_text('{"sessionId": "abc"}\n{"sessionId": "zzz"}\n')
        assert first_line_session_id(path) == "abc"

        path.write_text("not json\n")
        assert first_line_session_id(path) is None


class TestLogEventHandler:
    """Tests for watchdog event forwarding."""

    def test_forwards_log_file_events(self) -> None:
        """Test that created, modified and moved log files are forwarded."""
        seen: list[str] = []
        handler = _LogEventHandler(on_file=seen.append)

        handler.on_created(FileCreatedEvent("/p/a.jsonl"))
        handler.on_modified(FileModifiedEvent("/p/a.jsonl"))
        handler.on_moved(FileMovedEvent("/p/tmp123", "/p/b.jsonl"))
        handler.on_created(FileCreatedEvent("/p/readme.md"))

        assert seen == ["/p/a.jsonl", "/p/a.jsonl", "/p/b.jsonl"]

    def test_directory_creation(self) -> None:
        """Test that only the awaited directory name triggers the callback."""
        created: list[str] = []
        handler = _LogEventHandler(
            on_file=lambda _path: None,
            on_directory=created.append,
            directory_name="-home-dev-app",
        )

        handler.on_created(DirCreatedEvent("/projects/-other"))
        handler.on_created(DirCreatedEvent("/projects/-home-dev-app"))

        assert created == ["/projects/-home-dev-app"]
