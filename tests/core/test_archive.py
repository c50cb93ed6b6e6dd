from __future__ import annotations

import gzip
import os
import stat
from datetime import date
from pathlib import Path

import pytest

from dtc_launcher.core.archive import archive_path, compress_attachment, write_archive
from dtc_launcher.core.formats import ColumnSeverityParser
from dtc_launcher.core.models import ARCHIVED_SEVERITIES, Severity


def test_archive_path_is_dated() -> None:
    p = archive_path("/var/log/dtc", "study1", date(2024, 1, 2))
    assert p == Path("/var/log/dtc/study1_2024-01-02.log")


@pytest.mark.asyncio
async def test_archive_filter_law(tmp_path: Path, write_log) -> None:
    lines = [
        "2024-01-01 10:00:00 TRACE a - t1",
        "2024-01-01 10:00:01 INFO a - i1",
        "2024-01-01 10:00:02 DEBUG a - d1",
        "2024-01-01 10:00:03 ERROR a - e1",
        "no layout at all",
        "2024-01-01 10:00:04 WARN a - w1",
        "2024-01-01 10:00:05 TRACE a - t2",
        "2024-01-01 10:00:06 INFO a - i2",
    ]
    src = tmp_path / "study1_verbose.log"
    write_log(src, lines)
    dest = tmp_path / "archive" / "study1_2024-01-01.log"

    kept = await write_archive(src, dest)

    out = dest.read_text(encoding="utf-8")
    assert out.endswith("\n")
    out_lines = out.splitlines()
    assert kept == len(out_lines) == 4

    parser = ColumnSeverityParser()
    assert all(parser.parse(1, line).severity in ARCHIVED_SEVERITIES for line in out_lines)
    dropped = [
        line
        for line in lines
        if parser.parse(1, line).severity in (Severity.TRACE, Severity.DEBUG)
    ]
    assert not set(dropped) & set(out_lines)
    # Relative order is preserved.
    assert out_lines == [line for line in lines if line in set(out_lines)]


@pytest.mark.asyncio
async def test_same_day_run_overwrites(tmp_path: Path, write_log) -> None:
    src = tmp_path / "v.log"
    dest = tmp_path / "study1_2024-01-01.log"

    write_log(src, ["2024-01-01 10:00:00 INFO a - first"])
    await write_archive(src, dest)
    write_log(src, ["2024-01-01 18:00:00 INFO a - second"])
    await write_archive(src, dest)

    assert dest.read_text(encoding="utf-8") == "2024-01-01 18:00:00 INFO a - second\n"
    assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".")] == []


@pytest.mark.asyncio
async def test_missing_verbose_log_writes_empty_archive(tmp_path: Path) -> None:
    dest = tmp_path / "study1_2024-01-01.log"
    kept = await write_archive(tmp_path / "missing.log", dest)
    assert kept == 0
    assert dest.read_text(encoding="utf-8") == ""


def test_compress_attachment(tmp_path: Path) -> None:
    src = tmp_path / "v.log"
    src.write_text("hello\n", encoding="utf-8")
    out = compress_attachment(src)
    assert out.name == "v.log.gz"
    with gzip.open(out, "rt", encoding="utf-8") as f:
        assert f.read() == "hello\n"


@pytest.mark.asyncio
async def test_archive_mode_follows_umask(tmp_path: Path, write_log) -> None:
    src = tmp_path / "v.log"
    write_log(src, ["2024-01-01 10:00:00 INFO a - kept"])
    dest = tmp_path / "study1_2024-01-01.log"

    old = os.umask(0o022)
    try:
        await write_archive(src, dest)
    finally:
        os.umask(old)

    assert stat.S_IMODE(dest.stat().st_mode) == 0o644
