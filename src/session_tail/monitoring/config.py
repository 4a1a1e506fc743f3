"""Configuration for the session monitor.

This module defines the configuration dataclass that controls monitoring
behavior, including where session logs live, how new files are adopted,
and how often tracked files are polled.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_PROJECTS_PATH = Path.home() / ".claude" / "projects"

# Characters the agent CLI replaces when turning a working directory into a
# project directory name.
_SANITIZED_CHARS = ("/", "\\", ".")


def sanitize_project_path(working_directory: str) -> str:
    """Convert a working directory into the agent's project directory name.

    Example:
        >>> sanitize_project_path("/Users/ada/Project.Name")
        '-Users-ada-Project-Name'
    """
    sanitized = working_directory
    for char in _SANITIZED_CHARS:
        sanitized = sanitized.replace(char, "-")
    return sanitized


@dataclass
class MonitorConfig:
    """Configuration for the session monitor.

    Attributes:
        working_directory: Working directory of the agent process, used to
            derive the project log directory.
        session_id: Session to monitor directly. Skips directory discovery.
        projects_path: Base path holding one directory per project
            (default: ~/.claude/projects).
        include_existing_content: Emit records already present in an explicit
            session's log when starting (default: False).
        new_file_tolerance_seconds: Files created up to this many seconds
            before monitoring started are still adopted (default: 2).
        poll_interval_seconds: Seconds between polling passes (default: 0.1).
        max_read_bytes: Maximum bytes read from one file per pass (default: 1 MiB).
        dedup_capacity: Maximum number of record keys remembered for
            de-duplication (default: 100,000).
        use_file_events: Subscribe to file system notifications in addition
            to polling (default: True).
    """

    working_directory: str | None = None
    session_id: str | None = None
    projects_path: str | None = None
    include_existing_content: bool = False
    new_file_tolerance_seconds: float = 2.0
    poll_interval_seconds: float = 0.1
    max_read_bytes: int = 1024 * 1024
    dedup_capacity: int = 100_000
    use_file_events: bool = True

    def get_projects_path(self) -> Path:
        """Return the directory holding per-project session logs."""
        if self.projects_path:
            return Path(self.projects_path).expanduser()
        return DEFAULT_PROJECTS_PATH

    def get_derived_project_path(self) -> Path | None:
        """Return the project log directory derived from the working directory.

        Returns:
            Path under the projects path, or None when no working directory
            is configured.
        """
        if not self.working_directory:
            return None
        return self.get_projects_path() / sanitize_project_path(self.working_directory)
