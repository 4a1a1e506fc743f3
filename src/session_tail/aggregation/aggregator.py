"""Folding of the ordered record stream into session statistics."""

from __future__ import annotations

import copy
import logging

from ..compat import parse_timestamp
from ..events.bus import RecordBus, Subscription
from ..monitoring.models import (
    AnyRecord,
    AssistantRecord,
    FileHistorySnapshotRecord,
    SummaryRecord,
    SystemRecord,
    UserRecord,
)
from .models import MAIN_AGENT, BackupEntry, LedgerEntry, SessionStats, ToolCorrelation

logger = logging.getLogger(__name__)


class SessionAggregator:
    """
    Builds a cumulative SessionStats from records delivered by a RecordBus.

    All mutation happens on the bus delivery path, which the bus already
    serializes, so the aggregator holds no locks of its own.

    Correlation: a tool_use block opens a pending entry keyed by its id
    (the first call wins if an id repeats); a tool_result block with the
    same id completes and retires it.

    Example:
        aggregator = SessionAggregator()
        aggregator.attach(bus)
        ...
        stats = aggregator.snapshot()
        print(stats.tool_calls, stats.tokens.total_tokens)
    """

    def __init__(self) -> None:
        self._stats = SessionStats()
        self._pending: dict[str, ToolCorrelation] = {}
        self._subscription: Subscription | None = None

    def attach(self, bus: RecordBus) -> Subscription:
        """Subscribe to a bus; returns the subscription handle."""
        self._subscription = bus.subscribe(self.handle)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def __call__(self, record: AnyRecord) -> None:
        self.handle(record)

    def handle(self, record: AnyRecord) -> None:
        """Fold one record into the running statistics."""
        stats = self._stats
        type_key = record.type.value
        stats.records_by_type[type_key] = stats.records_by_type.get(type_key, 0) + 1

        agent_key = record.agent_id or MAIN_AGENT
        stats.records_by_agent[agent_key] = stats.records_by_agent.get(agent_key, 0) + 1

        if stats.session_id is None and record.session_id and not record.is_sub_agent:
            stats.session_id = record.session_id
        self._track_timestamps(record.timestamp)

        if isinstance(record, AssistantRecord):
            self._handle_assistant(record)
        elif isinstance(record, UserRecord):
            self._handle_user(record)
        elif isinstance(record, FileHistorySnapshotRecord):
            self._handle_file_history(record)
        elif isinstance(record, SummaryRecord):
            stats.summaries.append(
                LedgerEntry(timestamp=record.timestamp, text=record.summary, kind="summary")
            )
        elif isinstance(record, SystemRecord):
            self._handle_system(record)

    def _track_timestamps(self, timestamp: str) -> None:
        # ISO 8601 timestamps in one format compare correctly as strings
        if not timestamp:
            return
        stats = self._stats
        if stats.first_timestamp is None or timestamp < stats.first_timestamp:
            stats.first_timestamp = timestamp
        if stats.last_timestamp is None or timestamp > stats.last_timestamp:
            stats.last_timestamp = timestamp

    def _handle_assistant(self, record: AssistantRecord) -> None:
        stats = self._stats
        if record.usage is not None:
            stats.tokens = stats.tokens + record.usage
        if record.model:
            stats.model_usage[record.model] = stats.model_usage.get(record.model, 0) + 1

        for block in record.tool_uses:
            stats.tool_calls += 1
            stats.tool_usage[block.name] = stats.tool_usage.get(block.name, 0) + 1

            if not block.id:
                continue
            if block.id in self._pending or block.id in stats.correlations:
                logger.debug(f"Ignoring repeated tool_use id {block.id}")
                continue

            correlation = ToolCorrelation(
                tool_use_id=block.id,
                tool_name=block.name,
                call_timestamp=record.timestamp,
                agent_id=record.agent_id,
            )
            self._pending[block.id] = correlation
            stats.correlations[block.id] = correlation

    def _handle_user(self, record: UserRecord) -> None:
        stats = self._stats
        if record.todos is not None:
            stats.latest_todos = list(record.todos)

        for result in record.tool_results:
            stats.tool_results += 1
            if result.is_error:
                stats.tool_errors += 1

            correlation = self._pending.pop(result.tool_use_id, None)
            if correlation is None:
                existing = stats.correlations.get(result.tool_use_id)
                if existing is not None and existing.completed:
                    logger.debug(f"Ignoring repeated tool_result for {result.tool_use_id}")
                    continue
                stats.orphan_results += 1
                correlation = ToolCorrelation(
                    tool_use_id=result.tool_use_id, agent_id=record.agent_id
                )
                if result.tool_use_id:
                    stats.correlations[result.tool_use_id] = correlation

            correlation.result_timestamp = record.timestamp
            correlation.success = result.success
            correlation.duration_seconds = _duration(correlation.call_timestamp, record)

    def _handle_file_history(self, record: FileHistorySnapshotRecord) -> None:
        stats = self._stats
        for backup in record.backups:
            stats.backups.append(
                BackupEntry(
                    path=backup.path,
                    version=backup.version,
                    backup_time=backup.backup_time,
                    message_id=record.message_id,
                )
            )
            stats.modified_files.add(backup.path)

    def _handle_system(self, record: SystemRecord) -> None:
        stats = self._stats
        entry = LedgerEntry(
            timestamp=record.timestamp,
            text=record.content or "",
            kind=record.subtype,
            level=record.level,
            agent_id=record.agent_id,
        )
        stats.system_messages.append(entry)
        if record.is_error:
            stats.errors.append(entry)
            stats.system_errors += 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionStats:
        """Return a copy of the current statistics."""
        return copy.deepcopy(self._stats)

    def pending_tool_calls(self) -> list[ToolCorrelation]:
        """Tool calls still waiting for a result, oldest first."""
        return [copy.copy(correlation) for correlation in self._pending.values()]

    def get_correlation(self, tool_use_id: str) -> ToolCorrelation | None:
        correlation = self._stats.correlations.get(tool_use_id)
        return copy.copy(correlation) if correlation is not None else None

    def reset(self) -> None:
        """Discard all statistics."""
        self._stats = SessionStats()
        self._pending.clear()


def _duration(call_timestamp: str | None, result_record: AnyRecord) -> float | None:
    started = parse_timestamp(call_timestamp)
    finished = result_record.parsed_timestamp
    if started is None or finished is None:
        return None
    return max(0.0, (finished - started).total_seconds())
