"""Shared fixtures for session-tail tests."""

import json
import uuid as uuid_module
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


class LineFactory:
    """Builds JSONL lines shaped like the agent's session log entries."""

    def __init__(self, session_id: str = "session-1"):
        self.session_id = session_id

    @staticmethod
    def timestamp(seconds_ago: float = 0.0) -> str:
        """ISO timestamp in the agent's format, ``seconds_ago`` before now."""
        moment = datetime.now(timezone.utc) - timedelta(seconds=seconds_ago)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def _base(self, record_type: str, timestamp: str | None, uuid: str | None, **extra) -> dict:
        data = {
            "type": record_type,
            "timestamp": timestamp if timestamp is not None else self.timestamp(),
            "sessionId": self.session_id,
            "uuid": uuid if uuid is not None else str(uuid_module.uuid4()),
            "parentUuid": None,
        }
        data.update(extra)
        return data

    def assistant(
        self,
        content: list | str,
        timestamp: str | None = None,
        uuid: str | None = None,
        model: str = "claude-sonnet-4-5",
        usage: dict | None = None,
        **extra,
    ) -> str:
        message = {"role": "assistant", "model": model, "content": content}
        if usage is not None:
            message["usage"] = usage
        return json.dumps(self._base("assistant", timestamp, uuid, message=message, **extra))

    def tool_use(
        self,
        tool_use_id: str,
        name: str = "Bash",
        tool_input: dict | None = None,
        timestamp: str | None = None,
        uuid: str | None = None,
        **extra,
    ) -> str:
        block = {
            "type": "tool_use",
            "id": tool_use_id,
            "name": name,
            "input": tool_input if tool_input is not None else {"command": "ls"},
        }
        return self.assistant([block], timestamp=timestamp, uuid=uuid, **extra)

    def user(
        self,
        content: list | str,
        timestamp: str | None = None,
        uuid: str | None = None,
        **extra,
    ) -> str:
        message = {"role": "user", "content": content}
        return json.dumps(self._base("user", timestamp, uuid, message=message, **extra))

    def tool_result(
        self,
        tool_use_id: str,
        content: str = "ok",
        is_error: bool | None = None,
        timestamp: str | None = None,
        uuid: str | None = None,
        **extra,
    ) -> str:
        block = {"type": "tool_result", "tool_use_id": tool_use_id, "content": content}
        if is_error is not None:
            block["is_error"] = is_error
        return self.user([block], timestamp=timestamp, uuid=uuid, **extra)

    def system(
        self,
        content: str,
        level: str | None = "info",
        subtype: str | None = None,
        timestamp: str | None = None,
        uuid: str | None = None,
    ) -> str:
        extra = {"content": content}
        if level is not None:
            extra["level"] = level
        if subtype is not None:
            extra["subtype"] = subtype
        return json.dumps(self._base("system", timestamp, uuid, **extra))

    def summary(self, text: str, leaf_uuid: str = "leaf-1") -> str:
        return json.dumps({"type": "summary", "summary": text, "leafUuid": leaf_uuid})

    def file_history_snapshot(
        self,
        backups: dict[str, int],
        message_id: str = "msg-1",
        timestamp: str = "2025-01-15T10:30:03.000Z",
    ) -> str:
        tracked = {
            path: {
                "backupFileName": f"{Path(path).name}@v{version}",
                "version": version,
                "backupTime": timestamp,
            }
            for path, version in backups.items()
        }
        return json.dumps(
            {
                "type": "file-history-snapshot",
                "messageId": message_id,
                "snapshot": {
                    "messageId": message_id,
                    "trackedFileBackups": tracked,
                    "timestamp": timestamp,
                },
                "isSnapshotUpdate": False,
            }
        )


@pytest.fixture
def lines() -> LineFactory:
    """Factory for session log lines."""
    return LineFactory()


@pytest.fixture
def projects_dir(tmp_path: Path) -> Path:
    """Empty log root standing in for ~/.claude/projects."""
    projects = tmp_path / "projects"
    projects.mkdir()
    return projects


@pytest.fixture
def working_directory() -> str:
    """Working directory of the (simulated) agent process."""
    return "/home/dev/my.project"


@pytest.fixture
def project_dir(projects_dir: Path, working_directory: str) -> Path:
    """Project log directory matching ``working_directory``."""
    directory = projects_dir / "-home-dev-my-project"
    directory.mkdir()
    return directory


def append_lines(path: Path, *new_lines: str) -> None:
    """Append complete lines to a log file."""
    with path.open("a", encoding="utf-8") as f:
        for line in new_lines:
            f.write(line + "\n")


@pytest.fixture(name="append_lines")
def append_lines_fixture():
    """Helper that appends complete lines to a log file."""
    return append_lines
