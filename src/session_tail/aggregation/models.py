"""Data models for session aggregation."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..monitoring.models import TodoItem, TokenUsage

# records_by_agent key for records from the primary session log
MAIN_AGENT = "main"


@dataclass
class ToolCorrelation:
    """
    Pairing of a tool call with its result.

    An entry is opened when the call is seen and completed when a result
    with the same tool-use id arrives. A result that never had a matching
    call (e.g., truncated history) produces an entry with no call timestamp.

    Attributes:
        tool_use_id: Shared identifier of the call and its result
        tool_name: Name of the invoked tool, if the call was seen
        call_timestamp: Timestamp of the record carrying the call
        result_timestamp: Timestamp of the record carrying the result
        duration_seconds: Seconds between call and result, never negative
        success: Derived from the result's is_error flag (None while pending)
        agent_id: Sub-agent that issued the call, if any
    """

    tool_use_id: str
    tool_name: str | None = None
    call_timestamp: str | None = None
    result_timestamp: str | None = None
    duration_seconds: float | None = None
    success: bool | None = None
    agent_id: str | None = None

    @property
    def completed(self) -> bool:
        return self.result_timestamp is not None


@dataclass(frozen=True)
class BackupEntry:
    """One file backup recorded by a file-history snapshot."""

    path: str
    version: int
    backup_time: str | None
    message_id: str | None = None


@dataclass(frozen=True)
class LedgerEntry:
    """An ordered summary or system message."""

    timestamp: str
    text: str
    kind: str | None = None
    level: str | None = None
    agent_id: str | None = None


@dataclass
class SessionStats:
    """
    Cumulative view of a monitored session.

    Counters only ever grow. Snapshots handed to callers are copies and
    are never mutated by the aggregator afterwards.

    Attributes:
        session_id: Session id from the first record that carried one
        records_by_type: Record count per record type tag
        records_by_agent: Record count per sub-agent id ("main" for the primary log)
        tool_calls: Number of tool_use blocks seen
        tool_results: Number of tool_result blocks seen
        tool_errors: Number of tool results flagged is_error
        orphan_results: Tool results with no matching call
        tokens: Summed token usage
        tool_usage: Calls per tool name
        model_usage: Assistant responses per model
        correlations: Tool correlations keyed by tool-use id
        backups: File backup ledger, in arrival order
        modified_files: Paths seen in file-history snapshots
        latest_todos: Newest todo-list snapshot (replaced, never merged)
        summaries: Summary ledger, in arrival order
        system_messages: System message ledger, in arrival order
        errors: Error ledger (system records at error level), in arrival order
        system_errors: Number of system records at error level
        first_timestamp: Earliest record timestamp seen
        last_timestamp: Latest record timestamp seen
    """

    session_id: str | None = None
    records_by_type: dict[str, int] = field(default_factory=dict)
    records_by_agent: dict[str, int] = field(default_factory=dict)
    tool_calls: int = 0
    tool_results: int = 0
    tool_errors: int = 0
    orphan_results: int = 0
    tokens: TokenUsage = field(default_factory=TokenUsage)
    tool_usage: dict[str, int] = field(default_factory=dict)
    model_usage: dict[str, int] = field(default_factory=dict)
    correlations: dict[str, ToolCorrelation] = field(default_factory=dict)
    backups: list[BackupEntry] = field(default_factory=list)
    modified_files: set[str] = field(default_factory=set)
    latest_todos: list[TodoItem] = field(default_factory=list)
    summaries: list[LedgerEntry] = field(default_factory=list)
    system_messages: list[LedgerEntry] = field(default_factory=list)
    errors: list[LedgerEntry] = field(default_factory=list)
    system_errors: int = 0
    first_timestamp: str | None = None
    last_timestamp: str | None = None

    @property
    def total_records(self) -> int:
        return sum(self.records_by_type.values())

    @property
    def sub_agent_ids(self) -> list[str]:
        return sorted(agent for agent in self.records_by_agent if agent != MAIN_AGENT)

    @property
    def tool_success_rate(self) -> float:
        if self.tool_results == 0:
            return 0.0
        return (self.tool_results - self.tool_errors) / self.tool_results

