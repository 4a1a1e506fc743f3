"""Flat activity view of session records.

Many consumers only care about "what is the agent doing right now": which
tool it called, whether the call succeeded, and what it said. This module
flattens records into one Activity per tool call, tool result, or piece of
assistant text.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .monitoring.models import AnyRecord, AssistantRecord, TextBlock, ToolUseBlock, UserRecord

SUMMARY_MAX_CHARS = 100


class ActivityType(str, Enum):
    """Kind of agent activity."""

    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    THOUGHT = "thought"


@dataclass(frozen=True)
class Activity:
    """
    One step of agent activity derived from a session record.

    Attributes:
        type: Activity kind
        timestamp: Timestamp of the source record
        tool_name: Tool invoked (tool_call only)
        tool_input: Tool input rendered as text (tool_call only)
        content: Result or thought text
        success: Result status (tool_result only)
        tool_use_id: Identifier correlating a call with its result
        session_id: Session the record belongs to
        uuid: Id of the source record
        parent_uuid: Id of the source record's parent
        model: Model that produced the activity (assistant records only)
        agent_id: Sub-agent id, None for the main session
        is_sub_agent: True for activities from sub-agent records
    """

    type: ActivityType
    timestamp: str
    tool_name: str | None = None
    tool_input: str | None = None
    content: str | None = None
    success: bool | None = None
    tool_use_id: str | None = None
    session_id: str | None = None
    uuid: str | None = None
    parent_uuid: str | None = None
    model: str | None = None
    agent_id: str | None = None
    is_sub_agent: bool = False

    @property
    def summary(self) -> str:
        """Short human-readable description of the activity."""
        if self.type is ActivityType.TOOL_CALL:
            return f"{self.tool_name}: {truncate(self.tool_input, SUMMARY_MAX_CHARS) or ''}"
        if self.type is ActivityType.TOOL_RESULT:
            if self.success:
                return "OK"
            return f"Error: {truncate(self.content, SUMMARY_MAX_CHARS) or ''}"
        return truncate(self.content, SUMMARY_MAX_CHARS) or ""


def truncate(text: str | None, max_chars: int) -> str | None:
    if text is None or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def render_input(value: Any) -> str | None:
    """Render tool input as text; strings pass through, structures become JSON."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        return str(value)


def activities_from_record(record: AnyRecord) -> list[Activity]:
    """Flatten a record into activities, in content order.

    Records other than assistant and user messages produce no activities.
    """
    common = {
        "timestamp": record.timestamp,
        "session_id": record.session_id,
        "uuid": record.uuid,
        "parent_uuid": record.parent_uuid,
        "agent_id": record.agent_id,
        "is_sub_agent": record.is_sub_agent,
    }

    activities: list[Activity] = []
    if isinstance(record, AssistantRecord):
        for block in record.content:
            if isinstance(block, ToolUseBlock):
                activities.append(
                    Activity(
                        type=ActivityType.TOOL_CALL,
                        tool_name=block.name,
                        tool_input=render_input(block.input),
                        tool_use_id=block.id or None,
                        model=record.model,
                        **common,
                    )
                )
            elif isinstance(block, TextBlock) and block.text:
                activities.append(
                    Activity(
                        type=ActivityType.THOUGHT,
                        content=block.text,
                        model=record.model,
                        **common,
                    )
                )
    elif isinstance(record, UserRecord):
        for result in record.tool_results:
            activities.append(
                Activity(
                    type=ActivityType.TOOL_RESULT,
                    content=result.content_text,
                    success=result.success,
                    tool_use_id=result.tool_use_id or None,
                    **common,
                )
            )
    return activities
