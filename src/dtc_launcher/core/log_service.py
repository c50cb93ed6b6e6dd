"""Log loading and record iteration.

This module is the integration point between verbose log artifacts on disk
and the parsed records consumed by the classifier and the archiver.
"""

from __future__ import annotations

import gzip
import os
from collections.abc import AsyncIterator, Iterable, Iterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
from aiofiles.threadpool import wrap

from .formats import ColumnSeverityParser, LogParser
from .models import ArtifactMeta, LogRecord


@asynccontextmanager
async def _open_text(path: Path, *, encoding: str, decode_errors: str):
    """Open a log file for async text reading (plain or gzip)."""
    if path.suffix.lower() == ".gz":
        f = gzip.open(path, mode="rt", encoding=encoding, errors=decode_errors)
        af = wrap(f)
        try:
            yield af
        finally:
            await af.close()
    else:
        async with aiofiles.open(path, encoding=encoding, errors=decode_errors) as f:
            yield f


def default_parser() -> LogParser:
    """Parser for the client's default log layout."""
    return ColumnSeverityParser()


def iter_records(lines: Iterable[str], *, parser: LogParser | None = None) -> Iterator[LogRecord]:
    """Yield one record per input line, in order.

    Lazy and forward-only; calling it again on a fresh iterable starts over.
    """
    parser = parser or default_parser()
    for line_no, line in enumerate(lines, start=1):
        yield parser.parse(line_no, line.rstrip("\r\n"))


async def aiter_records(
    log_path: str | Path,
    *,
    parser: LogParser | None = None,
    encoding: str = "utf-8",
    decode_errors: str = "replace",
) -> AsyncIterator[LogRecord]:
    """Yield parsed records from a log file without loading it whole."""
    path = Path(log_path)
    if not path.is_file():
        raise FileNotFoundError(f"Log file not found: {path}")

    parser = parser or default_parser()
    async with _open_text(path, encoding=encoding, decode_errors=decode_errors) as f:
        line_no = 0
        async for line in f:
            line_no += 1
            yield parser.parse(line_no, line.rstrip("\r\n"))


def stat_artifact(log_path: str | Path, *, invoked_at: datetime) -> ArtifactMeta:
    """Collect existence, readability and mtime of a log artifact."""
    path = Path(log_path)
    if invoked_at.tzinfo is None:
        invoked_at = invoked_at.replace(tzinfo=UTC)

    try:
        st = path.stat()
    except FileNotFoundError:
        return ArtifactMeta(path=path, invoked_at=invoked_at, exists=False, readable=False)

    if not path.is_file():
        return ArtifactMeta(path=path, invoked_at=invoked_at, exists=False, readable=False)

    return ArtifactMeta(
        path=path,
        invoked_at=invoked_at,
        exists=True,
        readable=os.access(path, os.R_OK),
        modified_at=datetime.fromtimestamp(st.st_mtime, tz=UTC),
    )
