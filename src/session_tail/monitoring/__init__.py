"""Session log tailing components.

This package provides the building blocks the SessionMonitor composes:
file discovery under creation races, byte-safe line framing, typed record
parsing, and bounded de-duplication.

Key Components:
    - config: Configuration dataclass for the monitor
    - models: Tracked file state and the typed record variants
    - line_framer: Incremental, byte-safe line framing
    - record_parser: JSONL line to typed record
    - deduplicator: Bounded seen-set for at-most-once emission
    - discovery: Project/session file discovery and file system notifications

Example:
    >>> from session_tail.monitoring import LineFramer, TrackedFile
    >>> framer = LineFramer()
    >>> tracked = TrackedFile(path="/logs/session.jsonl")
    >>> framer.feed(tracked, b'{"type": "user"}\\n{"ty')
    ['{"type": "user"}']
"""

from __future__ import annotations

from .config import MonitorConfig, sanitize_project_path
from .deduplicator import Deduplicator
from .discovery import FileDiscovery, LogDirectoryWatcher
from .line_framer import LineFramer
from .models import (
    AnyRecord,
    AssistantRecord,
    FileBackup,
    FileHistorySnapshotRecord,
    MonitorState,
    Record,
    RecordType,
    SummaryRecord,
    SystemRecord,
    TextBlock,
    ThinkingBlock,
    TodoItem,
    TokenUsage,
    ToolExecutionMeta,
    ToolResultBlock,
    ToolUseBlock,
    TrackedFile,
    UserRecord,
)
from .record_parser import parse_line, parse_record, seen_key

__all__ = [
    "MonitorConfig",
    "sanitize_project_path",
    "Deduplicator",
    "FileDiscovery",
    "LogDirectoryWatcher",
    "LineFramer",
    "AnyRecord",
    "AssistantRecord",
    "FileBackup",
    "FileHistorySnapshotRecord",
    "MonitorState",
    "Record",
    "RecordType",
    "SummaryRecord",
    "SystemRecord",
    "TextBlock",
    "ThinkingBlock",
    "TodoItem",
    "TokenUsage",
    "ToolExecutionMeta",
    "ToolResultBlock",
    "ToolUseBlock",
    "TrackedFile",
    "UserRecord",
    "parse_line",
    "parse_record",
    "seen_key",
]
