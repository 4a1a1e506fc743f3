"""Live tailing and correlation of agent session logs."""

from .activity import Activity, ActivityType, activities_from_record
from .aggregation import SessionAggregator, SessionStats, ToolCorrelation
from .config import Settings, load_config
from .events import MonitorErrorEvent, RecordBus, Subscription
from .exceptions import ConfigError, MonitorClosedError, RecordParseError, SessionTailError
from .logging_manager import LoggingManager
from .monitoring import MonitorConfig, MonitorState, RecordType
from .session_monitor import SessionMonitor

__version__ = "0.1.0"

__all__ = [
    "SessionMonitor",
    "MonitorConfig",
    "MonitorState",
    "RecordType",
    "RecordBus",
    "Subscription",
    "MonitorErrorEvent",
    "SessionAggregator",
    "SessionStats",
    "ToolCorrelation",
    "Activity",
    "ActivityType",
    "activities_from_record",
    "Settings",
    "load_config",
    "LoggingManager",
    "SessionTailError",
    "ConfigError",
    "RecordParseError",
    "MonitorClosedError",
]
