"""Byte-safe line framing for incremental log reading.

Session logs are read in chunks that rarely line up with line boundaries, and
a chunk boundary may split a multi-byte UTF-8 character. The framer only ever
decodes bytes up to and including the last newline it has seen; everything
after that stays buffered on the TrackedFile until the rest of the line
arrives.
"""

from __future__ import annotations

import logging

from .models import TrackedFile

logger = logging.getLogger(__name__)

DEFAULT_MAX_READ_BYTES = 1024 * 1024


class LineFramer:
    """Turns arbitrary byte chunks into complete text lines.

    The framer itself is stateless; per-file state (offset and pending tail)
    lives on the TrackedFile passed to each call, so one framer can serve
    every tracked file.

    Attributes:
        max_read_bytes: Upper bound on bytes read from one file per pass.
    """

    def __init__(self, max_read_bytes: int = DEFAULT_MAX_READ_BYTES):
        if max_read_bytes <= 0:
            raise ValueError(f"max_read_bytes must be positive, got {max_read_bytes}")
        self.max_read_bytes = max_read_bytes

    def check_truncation(self, tracked: TrackedFile, file_size: int) -> bool:
        """Reset a file's progress if it shrank below the consumed offset.

        Args:
            tracked: File state to check.
            file_size: Current size of the file on disk.

        Returns:
            True if the file was truncated or rotated and progress was reset.
        """
        if file_size >= tracked.offset:
            return False

        logger.warning(
            f"Log file {tracked.path} was truncated "
            f"(offset {tracked.offset} > size {file_size}), restarting from beginning"
        )
        tracked.reset()
        return True

    def bytes_to_read(self, tracked: TrackedFile, file_size: int) -> int:
        """Number of bytes the next read pass should request."""
        return max(0, min(file_size - tracked.offset, self.max_read_bytes))

    def feed(self, tracked: TrackedFile, chunk: bytes) -> list[str]:
        """Consume a chunk read at ``tracked.offset`` and return complete lines.

        The offset advances by the number of bytes read, whether or not the
        chunk completed any line.

        Args:
            tracked: File state the chunk belongs to.
            chunk: Raw bytes read from the file.

        Returns:
            Complete lines in file order, without line terminators.
        """
        if not chunk:
            return []

        tracked.offset += len(chunk)
        buffer = tracked.pending + chunk

        last_newline = buffer.rfind(b"\n")
        if last_newline == -1:
            tracked.pending = buffer
            return []

        complete, tracked.pending = buffer[: last_newline + 1], buffer[last_newline + 1 :]
        return split_lines(complete)


def split_lines(data: bytes) -> list[str]:
    """Decode newline-terminated UTF-8 bytes into lines.

    A trailing carriage return is stripped from each line so CRLF files frame
    the same way as LF files.
    """
    text = data.decode("utf-8", errors="replace")
    lines = text.split("\n")
    # data always ends with a newline, so the final element is empty
    lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]
