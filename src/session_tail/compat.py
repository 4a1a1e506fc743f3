"""
Compatibility layer for Python 3.10+ support.

This module provides backward-compatible helpers for features introduced
in later Python versions, allowing the codebase to work across Python 3.10+.

Key compatibility fixes:
- datetime.UTC: Introduced in Python 3.11
  - Python 3.11+: Uses native datetime.UTC
  - Python 3.10: Uses datetime.timezone.utc as fallback
- datetime.fromisoformat: Only accepts a trailing "Z" from Python 3.11 on,
  and the agent writes timestamps like "2025-01-15T10:30:00.123Z"
"""

import sys
from datetime import datetime, timezone

if sys.version_info >= (3, 11):
    from datetime import UTC
else:
    UTC = timezone.utc


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp from a log record.

    Args:
        value: Timestamp string, possibly ending in "Z".

    Returns:
        Timezone-aware datetime (naive values are assumed UTC), or None if
        the value is missing or not a valid timestamp.
    """
    if not value or not isinstance(value, str):
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


__all__ = ["UTC", "parse_timestamp"]
