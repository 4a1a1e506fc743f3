"""Shared fixtures for monitoring tests."""

from pathlib import Path

import pytest

from session_tail.monitoring.config import MonitorConfig
from session_tail.monitoring.line_framer import LineFramer
from session_tail.monitoring.models import TrackedFile


@pytest.fixture
def framer() -> LineFramer:
    """Create LineFramer with default read limit."""
    return LineFramer()


@pytest.fixture
def tracked_file(tmp_path: Path) -> TrackedFile:
    """Create tracking state for a primary log that does not exist yet."""
    return TrackedFile(path=str(tmp_path / "session-1.jsonl"))


@pytest.fixture
def sidecar_file(tmp_path: Path) -> TrackedFile:
    """Create tracking state for a sub-agent sidecar."""
    return TrackedFile(
        path=str(tmp_path / "agent-a1b2.jsonl"),
        is_primary=False,
        agent_id="a1b2",
    )


@pytest.fixture
def directory_config(projects_dir: Path, working_directory: str) -> MonitorConfig:
    """Create MonitorConfig in project-directory mode."""
    return MonitorConfig(
        working_directory=working_directory,
        projects_path=str(projects_dir),
        use_file_events=False,
    )
