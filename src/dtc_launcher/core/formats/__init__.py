"""Log line formats.

The data-transfer client writes positional, whitespace-delimited lines; the
severity keyword sits at a fixed column.
"""

from __future__ import annotations

from .base import LogParser
from .column import ColumnSeverityParser

__all__ = [
    "ColumnSeverityParser",
    "LogParser",
]
