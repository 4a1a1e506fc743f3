"""Parsing of session log lines into typed records.

Each line of a session log is one JSON object whose ``type`` field selects the
record variant. There is one parser function per variant; lines with an
unknown ``type`` produce no record and are not an error.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable
from typing import Any

from ..exceptions import RecordParseError
from .models import (
    AnyRecord,
    AssistantContentBlock,
    AssistantRecord,
    FileBackup,
    FileHistorySnapshotRecord,
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
    agent_id_from_path,
)

logger = logging.getLogger(__name__)


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _common_fields(data: dict[str, Any], source: TrackedFile | None) -> dict[str, Any]:
    """Extract the fields every record variant carries.

    Records from a sidecar file are always flagged as sub-agent records, and
    fall back to the agent id encoded in the file name when the line itself
    does not carry one.
    """
    agent_id = _str_or_none(data.get("agentId")) or None
    is_sub_agent = bool(agent_id)

    if source is not None and source.is_sub_agent:
        is_sub_agent = True
        agent_id = agent_id or source.agent_id or agent_id_from_path(source.path)

    return {
        "timestamp": _str_or_none(data.get("timestamp")) or "",
        "session_id": _str_or_none(data.get("sessionId")),
        "uuid": _str_or_none(data.get("uuid")),
        "parent_uuid": _str_or_none(data.get("parentUuid")),
        "agent_id": agent_id,
        "is_sub_agent": is_sub_agent,
        "source_path": source.path if source is not None else None,
    }


def _message(data: dict[str, Any]) -> dict[str, Any]:
    message = data.get("message")
    return message if isinstance(message, dict) else {}


def parse_usage(usage: Any) -> TokenUsage | None:
    """Parse a ``message.usage`` object, tolerating missing or odd values."""
    if not isinstance(usage, dict) or not usage:
        return None

    server_tool_use = usage.get("server_tool_use")
    if not isinstance(server_tool_use, dict):
        server_tool_use = {}

    return TokenUsage(
        input_tokens=_safe_int(usage.get("input_tokens")),
        output_tokens=_safe_int(usage.get("output_tokens")),
        cache_creation_input_tokens=_safe_int(usage.get("cache_creation_input_tokens")),
        cache_read_input_tokens=_safe_int(usage.get("cache_read_input_tokens")),
        web_search_requests=_safe_int(server_tool_use.get("web_search_requests")),
        web_fetch_requests=_safe_int(server_tool_use.get("web_fetch_requests")),
    )


def _parse_assistant_block(item: Any) -> AssistantContentBlock | None:
    if not isinstance(item, dict):
        return None

    item_type = item.get("type")
    if item_type == "tool_use":
        return ToolUseBlock(
            id=_str_or_none(item.get("id")) or "",
            name=_str_or_none(item.get("name")) or "unknown",
            input=item.get("input"),
        )
    if item_type == "text":
        return TextBlock(text=_str_or_none(item.get("text")) or "")
    if item_type == "thinking":
        return ThinkingBlock(text=_str_or_none(item.get("thinking")) or "")
    return None


def _context_truncated(message: dict[str, Any]) -> bool | None:
    if message.get("stop_reason") == "model_context_window_exceeded":
        return True

    context_management = message.get("context_management")
    if not isinstance(context_management, dict):
        return None
    return bool(context_management.get("applied_edits"))


def parse_assistant(data: dict[str, Any], source: TrackedFile | None = None) -> AssistantRecord:
    message = _message(data)
    content = message.get("content")

    blocks: list[AssistantContentBlock] = []
    if isinstance(content, list):
        for item in content:
            block = _parse_assistant_block(item)
            if block is not None:
                blocks.append(block)
    elif isinstance(content, str) and content:
        blocks.append(TextBlock(text=content))

    return AssistantRecord(
        **_common_fields(data, source),
        content=blocks,
        model=_str_or_none(message.get("model")),
        usage=parse_usage(message.get("usage")),
        stop_reason=_str_or_none(message.get("stop_reason")),
        context_truncated=_context_truncated(message),
        request_id=_str_or_none(data.get("requestId")),
    )


def _parse_todos(todos: Any) -> list[TodoItem] | None:
    if not isinstance(todos, list):
        return None
    return [
        TodoItem(
            content=_str_or_none(item.get("content")) or "",
            status=_str_or_none(item.get("status")) or "pending",
            active_form=_str_or_none(item.get("activeForm")),
        )
        for item in todos
        if isinstance(item, dict)
    ]


def _parse_tool_result_meta(meta: Any) -> ToolExecutionMeta | None:
    # toolUseResult is a dict only for tools that report execution details
    if not isinstance(meta, dict):
        return None
    return ToolExecutionMeta(
        has_stdout=bool(meta.get("stdout")),
        has_stderr=bool(meta.get("stderr")),
        interrupted=bool(meta.get("interrupted", False)),
        is_image=bool(meta.get("isImage", False)),
    )


def parse_user(data: dict[str, Any], source: TrackedFile | None = None) -> UserRecord:
    message = _message(data)
    content = message.get("content")

    text: str | None = None
    results: list[ToolResultBlock] = []

    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        text_parts = []
        for item in content:
            if not isinstance(item, dict):
                continue
            if item.get("type") == "tool_result":
                results.append(
                    ToolResultBlock(
                        tool_use_id=_str_or_none(item.get("tool_use_id")) or "",
                        content=item.get("content"),
                        is_error=item.get("is_error") is True,
                    )
                )
            elif item.get("type") == "text" and isinstance(item.get("text"), str):
                text_parts.append(item["text"])
        if text_parts and not results:
            text = "\n".join(text_parts)

    return UserRecord(
        **_common_fields(data, source),
        text=text,
        tool_results=results,
        todos=_parse_todos(data.get("todos")),
        tool_result_meta=_parse_tool_result_meta(data.get("toolUseResult")),
    )


def parse_system(data: dict[str, Any], source: TrackedFile | None = None) -> SystemRecord:
    content = data.get("content")
    if content is None:
        content = data.get("message")

    return SystemRecord(
        **_common_fields(data, source),
        subtype=_str_or_none(data.get("subtype")) or _str_or_none(data.get("systemType")),
        content=content if isinstance(content, str) else None,
        level=_str_or_none(data.get("level")),
    )


def parse_summary(data: dict[str, Any], source: TrackedFile | None = None) -> SummaryRecord:
    return SummaryRecord(
        **_common_fields(data, source),
        summary=_str_or_none(data.get("summary")) or "",
        leaf_uuid=_str_or_none(data.get("leafUuid")),
    )


def parse_file_history_snapshot(
    data: dict[str, Any], source: TrackedFile | None = None
) -> FileHistorySnapshotRecord:
    snapshot = data.get("snapshot")
    if not isinstance(snapshot, dict):
        snapshot = {}

    tracked_backups = snapshot.get("trackedFileBackups")
    backups: list[FileBackup] = []
    if isinstance(tracked_backups, dict):
        for path, info in tracked_backups.items():
            if not isinstance(info, dict):
                continue
            backups.append(
                FileBackup(
                    path=path,
                    version=_safe_int(info.get("version")),
                    backup_time=_str_or_none(info.get("backupTime")),
                    backup_file_name=_str_or_none(info.get("backupFileName")),
                )
            )

    fields = _common_fields(data, source)
    if not fields["timestamp"]:
        fields["timestamp"] = _str_or_none(snapshot.get("timestamp")) or ""

    return FileHistorySnapshotRecord(
        **fields,
        message_id=_str_or_none(data.get("messageId")) or _str_or_none(snapshot.get("messageId")),
        backups=backups,
    )


_PARSERS: dict[str, Callable[[dict[str, Any], TrackedFile | None], AnyRecord]] = {
    RecordType.ASSISTANT.value: parse_assistant,
    RecordType.USER.value: parse_user,
    RecordType.SYSTEM.value: parse_system,
    RecordType.SUMMARY.value: parse_summary,
    RecordType.FILE_HISTORY_SNAPSHOT.value: parse_file_history_snapshot,
}


def parse_record(data: dict[str, Any], source: TrackedFile | None = None) -> AnyRecord | None:
    """Build the record variant selected by ``data["type"]``.

    Args:
        data: Decoded JSON object from one log line.
        source: File the line came from, used to tag sub-agent records.

    Returns:
        The typed record, or None for unknown record types.
    """
    parser = _PARSERS.get(data.get("type"))  # type: ignore[arg-type]
    if parser is None:
        return None
    return parser(data, source)


def parse_line(line: str, source: TrackedFile | None = None) -> AnyRecord | None:
    """Decode one JSONL line into a record.

    Args:
        line: A single line of text, without its terminator.
        source: File the line came from.

    Returns:
        The typed record, or None for blank lines and unknown record types.

    Raises:
        RecordParseError: If the line is not a JSON object.
    """
    if not line.strip():
        return None

    path = source.path if source is not None else None
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise RecordParseError(f"Malformed JSON: {e}", line=line, path=path) from e

    if not isinstance(data, dict):
        raise RecordParseError(
            f"Expected a JSON object, got {type(data).__name__}", line=line, path=path
        )

    try:
        return parse_record(data, source)
    except (TypeError, ValueError, AttributeError) as e:
        raise RecordParseError(f"Invalid record structure: {e}", line=line, path=path) from e


def seen_key(record: AnyRecord, line: str) -> str:
    """Identity used to de-duplicate a record.

    The record's uuid when present, otherwise its type and timestamp combined
    with a stable hash of the raw line.
    """
    if record.uuid:
        return record.uuid
    digest = hashlib.sha256(line.strip().encode("utf-8")).hexdigest()[:16]
    return f"{record.type.value}:{record.timestamp}:{digest}"
