"""Structured logging setup for session-tail.

Configures the ``session_tail`` logger with a human-readable console handler
and, optionally, a rotating file of JSON lines carrying any ``extra`` fields
passed at the call site.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

LOGGER_NAME = "session_tail"

# Attributes every LogRecord has; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "asctime",
        "taskName",
    ]
)


def _extra_fields(record: logging.LogRecord) -> dict:
    extras = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_ATTRS:
            continue
        try:
            json.dumps(value)  # Ensure serializable
            extras[key] = value
        except (TypeError, ValueError):
            extras[key] = str(value)
    return extras


class JsonLineFormatter(logging.Formatter):
    """Formats each record as one JSON object, extra fields merged in."""

    def format(self, record):
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_obj.update(_extra_fields(record))
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj)


class LoggingManager:
    """Manages structured logging for the session monitor."""

    def __init__(self, log_dir: str | Path | None = None, log_level: str = "INFO"):
        """Initialize logging manager.

        Args:
            log_dir: Directory for the JSON log file (None for console only)
            log_level: Console log level
        """
        self.log_dir = Path(log_dir) if log_dir is not None else None
        self.log_level = getattr(logging, log_level.upper())

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_logger()

        # Modules that already called logging.getLogger(__name__) defer to the
        # session_tail logger's handlers
        for name in list(logging.Logger.manager.loggerDict.keys()):
            if name.startswith(f"{LOGGER_NAME}."):
                child_logger = logging.getLogger(name)
                if isinstance(child_logger, logging.Logger):  # Skip PlaceHolders
                    child_logger.setLevel(logging.NOTSET)
                    child_logger.propagate = True
                    child_logger.handlers.clear()

    def _setup_logger(self):
        """Setup the session_tail logger with console and file handlers."""
        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(logging.DEBUG if self.log_dir is not None else self.log_level)
        logger.propagate = False

        logger.handlers.clear()

        # Console handler - human readable
        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(console_handler)

        # File handler - structured JSON
        if self.log_dir is not None:
            file_handler = logging.handlers.RotatingFileHandler(
                self.log_file,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
            )
            file_handler.setLevel(logging.DEBUG)  # Capture everything to file
            file_handler.setFormatter(JsonLineFormatter())
            logger.addHandler(file_handler)

        self.logger = logger

    @property
    def log_file(self) -> Path | None:
        if self.log_dir is None:
            return None
        return self.log_dir / "session_tail.log"

    def shutdown(self):
        """Flush and detach all handlers."""
        for handler in list(self.logger.handlers):
            handler.flush()
            handler.close()
            self.logger.removeHandler(handler)
