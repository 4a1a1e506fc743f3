"""Exception types raised by session-tail."""


class SessionTailError(Exception):
    """Base exception for all session-tail errors."""


class ConfigError(SessionTailError):
    """Raised when monitor configuration is missing or invalid."""


class RecordParseError(SessionTailError):
    """Raised when a log line cannot be decoded into a record.

    Attributes:
        line: The offending line (truncated for readability).
        path: File the line was read from, if known.
    """

    def __init__(self, message: str, line: str = "", path: str | None = None):
        super().__init__(message)
        self.line = line[:500]
        self.path = path


class MonitorClosedError(SessionTailError):
    """Raised when a closed SessionMonitor is asked to start again."""
