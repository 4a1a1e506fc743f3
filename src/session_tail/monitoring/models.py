"""Data models for the session monitor.

This module defines the core data structures used throughout the monitoring
system: per-file tailing state and the typed records parsed from the agent's
JSONL session logs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Union

from ..compat import parse_timestamp

SUB_AGENT_PREFIX = "agent-"
LOG_SUFFIX = ".jsonl"


def is_sub_agent_file(path: str | Path) -> bool:
    """True for sidecar logs named ``agent-<id>.jsonl``."""
    name = Path(path).name
    return name.startswith(SUB_AGENT_PREFIX) and name.endswith(LOG_SUFFIX)


def agent_id_from_path(path: str | Path) -> str | None:
    """Extract ``<id>`` from an ``agent-<id>.jsonl`` file name."""
    if not is_sub_agent_file(path):
        return None
    stem = Path(path).name[: -len(LOG_SUFFIX)]
    return stem[len(SUB_AGENT_PREFIX) :] or None


class MonitorState(str, Enum):
    """Lifecycle state of a SessionMonitor."""

    STOPPED = "stopped"
    STARTING = "starting"
    WATCHING = "watching"
    CLOSED = "closed"


class RecordType(str, Enum):
    """Top-level ``type`` tag of a session log line."""

    ASSISTANT = "assistant"
    USER = "user"
    SYSTEM = "system"
    SUMMARY = "summary"
    FILE_HISTORY_SNAPSHOT = "file-history-snapshot"


@dataclass
class TrackedFile:
    """Tailing state for one session log file.

    Attributes:
        path: Absolute path of the log file.
        is_primary: True for the main session log, False for sub-agent sidecars.
        agent_id: Sub-agent id taken from an ``agent-<id>.jsonl`` file name.
        offset: Number of bytes already consumed from the file.
        pending: Bytes of an unterminated trailing line awaiting more data.
    """

    path: str
    is_primary: bool = True
    agent_id: str | None = None
    offset: int = 0
    pending: bytes = b""

    @property
    def is_sub_agent(self) -> bool:
        return is_sub_agent_file(self.path)

    def reset(self) -> None:
        """Forget all progress so the next read starts from byte zero."""
        self.offset = 0
        self.pending = b""


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation requested by the assistant.

    ``input`` is kept exactly as logged and is never re-validated.
    """

    id: str
    name: str
    input: Any = None
    type: str = "tool_use"


@dataclass(frozen=True)
class TextBlock:
    text: str
    type: str = "text"


@dataclass(frozen=True)
class ThinkingBlock:
    text: str
    type: str = "thinking"


@dataclass(frozen=True)
class ToolResultBlock:
    """The outcome of a tool invocation, reported back in a user message."""

    tool_use_id: str
    content: Any = None
    is_error: bool = False
    type: str = "tool_result"

    @property
    def success(self) -> bool:
        return not self.is_error

    @property
    def content_text(self) -> str:
        """Flatten string or text-block content into plain text."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            parts = [
                item.get("text", "")
                for item in self.content
                if isinstance(item, dict) and item.get("type") == "text"
            ]
            return "\n".join(part for part in parts if part)
        return str(self.content)


AssistantContentBlock = Union[ToolUseBlock, TextBlock, ThinkingBlock]


# ---------------------------------------------------------------------------
# Record metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported for one assistant response."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    web_search_requests: int = 0
    web_fetch_requests: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_input_context(self) -> int:
        """Full context size sent to the model (processed + cache read)."""
        return self.input_tokens + self.cache_read_input_tokens

    @property
    def cache_hit_rate(self) -> float:
        total = self.input_tokens + self.cache_read_input_tokens
        return self.cache_read_input_tokens / total if total > 0 else 0.0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_input_tokens=(
                self.cache_creation_input_tokens + other.cache_creation_input_tokens
            ),
            cache_read_input_tokens=self.cache_read_input_tokens + other.cache_read_input_tokens,
            web_search_requests=self.web_search_requests + other.web_search_requests,
            web_fetch_requests=self.web_fetch_requests + other.web_fetch_requests,
        )


@dataclass(frozen=True)
class TodoItem:
    content: str
    status: str
    active_form: str | None = None


@dataclass(frozen=True)
class ToolExecutionMeta:
    """Execution details the agent logs alongside a tool result."""

    has_stdout: bool = False
    has_stderr: bool = False
    interrupted: bool = False
    is_image: bool = False


@dataclass(frozen=True)
class FileBackup:
    """One entry of a file-history snapshot."""

    path: str
    version: int
    backup_time: str | None = None
    backup_file_name: str | None = None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Record:
    """Fields shared by every record variant.

    Attributes:
        type: Record variant tag.
        timestamp: ISO 8601 timestamp as written by the agent.
        session_id: Session the record belongs to.
        uuid: Unique id of the record, used for de-duplication.
        parent_uuid: Id of the parent record, for thread reconstruction.
        agent_id: Sub-agent id (None for the main session).
        is_sub_agent: True for records read from a sub-agent sidecar file.
        source_path: Log file the record was read from.
    """

    type: RecordType
    timestamp: str = ""
    session_id: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    agent_id: str | None = None
    is_sub_agent: bool = False
    source_path: str | None = None

    @property
    def parsed_timestamp(self) -> datetime | None:
        return parse_timestamp(self.timestamp)


@dataclass(frozen=True)
class AssistantRecord(Record):
    type: RecordType = RecordType.ASSISTANT
    content: list[AssistantContentBlock] = field(default_factory=list)
    model: str | None = None
    usage: TokenUsage | None = None
    stop_reason: str | None = None
    context_truncated: bool | None = None
    request_id: str | None = None

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))


@dataclass(frozen=True)
class UserRecord(Record):
    type: RecordType = RecordType.USER
    text: str | None = None
    tool_results: list[ToolResultBlock] = field(default_factory=list)
    todos: list[TodoItem] | None = None
    tool_result_meta: ToolExecutionMeta | None = None


@dataclass(frozen=True)
class SystemRecord(Record):
    type: RecordType = RecordType.SYSTEM
    subtype: str | None = None
    content: str | None = None
    level: str | None = None

    @property
    def is_error(self) -> bool:
        return self.level == "error" or self.subtype == "api_error"


@dataclass(frozen=True)
class SummaryRecord(Record):
    type: RecordType = RecordType.SUMMARY
    summary: str = ""
    leaf_uuid: str | None = None


@dataclass(frozen=True)
class FileHistorySnapshotRecord(Record):
    type: RecordType = RecordType.FILE_HISTORY_SNAPSHOT
    message_id: str | None = None
    backups: list[FileBackup] = field(default_factory=list)


AnyRecord = Union[
    AssistantRecord, UserRecord, SystemRecord, SummaryRecord, FileHistorySnapshotRecord
]
