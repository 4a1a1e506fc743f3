"""Session-level aggregation of the record stream."""

from .aggregator import SessionAggregator
from .models import MAIN_AGENT, BackupEntry, LedgerEntry, SessionStats, ToolCorrelation

__all__ = [
    "SessionAggregator",
    "SessionStats",
    "ToolCorrelation",
    "BackupEntry",
    "LedgerEntry",
    "MAIN_AGENT",
]
