"""Parser interfaces."""

from __future__ import annotations

from typing import Protocol

from ..models import LogRecord


class LogParser(Protocol):
    """Parser interface: always return a LogRecord, UNKNOWN when unrecognized."""

    def parse(self, line_no: int, line: str) -> LogRecord:
        """Parse a log line into a LogRecord."""
        ...
