"""Positional, whitespace-delimited parser for the client's verbose log."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from ..models import LogRecord, Severity

_DEFAULT_KEYWORDS: dict[str, Severity] = {
    "TRACE": Severity.TRACE,
    "DEBUG": Severity.DEBUG,
    "INFO": Severity.INFO,
    "WARN": Severity.WARN,
    "WARNING": Severity.WARN,
    "ERROR": Severity.ERROR,
}


@dataclass(frozen=True, slots=True)
class ColumnSeverityParser:
    """Parse '<date> <time> <LEVEL> <logger> <message...>' lines.

    The severity is read from a single fixed column (0-based); everything
    before ``field_count`` tokens is kept as ``fields`` and the rest of the
    line is the message. Lines too short for the layout, or with an
    unrecognized keyword in the severity column, become UNKNOWN records.
    """

    severity_column: int = 2
    field_count: int = 4
    keywords: Mapping[str, Severity] = field(default_factory=lambda: dict(_DEFAULT_KEYWORDS))

    def parse(self, line_no: int, line: str) -> LogRecord:
        """Parse a log line into a LogRecord."""
        line = line.rstrip("\r\n")
        parts = line.split(None, self.field_count)
        fields = tuple(parts[: self.field_count])
        message = parts[self.field_count] if len(parts) > self.field_count else ""

        severity = Severity.UNKNOWN
        if len(parts) > self.severity_column:
            severity = self.keywords.get(parts[self.severity_column], Severity.UNKNOWN)

        return LogRecord(
            line_no=line_no,
            severity=severity,
            raw=line,
            fields=fields,
            message=message.strip(),
        )
