from __future__ import annotations

import gzip
from pathlib import Path

import pytest

from dtc_launcher.core.formats import ColumnSeverityParser
from dtc_launcher.core.log_service import aiter_records, iter_records, stat_artifact
from dtc_launcher.core.models import Severity


def test_column_parser_reads_third_column() -> None:
    parser = ColumnSeverityParser()
    rec = parser.parse(1, "2024-01-01 10:00:00 ERROR omics.mf.upload x failed")
    assert rec.severity == Severity.ERROR
    assert rec.fields == ("2024-01-01", "10:00:00", "ERROR", "omics.mf.upload")
    assert rec.message == "x failed"
    assert rec.raw == "2024-01-01 10:00:00 ERROR omics.mf.upload x failed"


@pytest.mark.parametrize(
    "line",
    [
        "",
        "short line",
        "2024-01-01 10:00:00 error lowercase keyword",
        "TRACE omics.mf.upload.daris.DarisUtil - Creating asset",
        "java.lang.NullPointerException: at Foo.bar(Foo.java:12)",
    ],
)
def test_column_parser_marks_unmatched_lines_unknown(line: str) -> None:
    rec = ColumnSeverityParser().parse(7, line)
    assert rec.severity == Severity.UNKNOWN
    assert rec.raw == line
    assert rec.line_no == 7


def test_column_parser_accepts_warning_alias() -> None:
    rec = ColumnSeverityParser().parse(1, "2024-01-01 10:00:00 WARNING x - y")
    assert rec.severity == Severity.WARN


def test_iter_records_keeps_every_line_in_order() -> None:
    lines = ["2024-01-01 10:00:00 INFO a b\n", "garbage\n", "2024-01-01 10:00:01 ERROR a b\n"]
    records = list(iter_records(lines))
    assert [r.line_no for r in records] == [1, 2, 3]
    assert [r.severity for r in records] == [Severity.INFO, Severity.UNKNOWN, Severity.ERROR]
    assert records[1].raw == "garbage"


def test_iter_records_is_lazy() -> None:
    consumed: list[int] = []

    def source():
        for i in range(3):
            consumed.append(i)
            yield f"2024-01-01 10:00:0{i} INFO x y"

    it = iter_records(source())
    next(it)
    assert consumed == [0]


@pytest.mark.asyncio
async def test_aiter_records_reads_file(tmp_path: Path, write_log, clean_lines) -> None:
    path = tmp_path / "study_verbose.log"
    write_log(path, clean_lines)

    records = [r async for r in aiter_records(path)]

    assert len(records) == len(clean_lines)
    assert records[-1].severity == Severity.INFO



@pytest.mark.asyncio
async def test_aiter_records_reads_gzip(tmp_path: Path, clean_lines) -> None:
    path = tmp_path / "study_verbose.log.gz"
    with gzip.open(path, "wt", encoding="utf-8") as f:
        f.write("".join(line + "\n" for line in clean_lines))

    records = [r async for r in aiter_records(path)]

    assert [r.raw for r in records] == clean_lines
    assert [r.line_no for r in records] == list(range(1, len(clean_lines) + 1))

@pytest.mark.asyncio
async def test_aiter_records_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        _ = [r async for r in aiter_records(tmp_path / "missing.log")]


def test_stat_artifact_missing(tmp_path: Path, invoked_at) -> None:
    meta = stat_artifact(tmp_path / "missing.log", invoked_at=invoked_at)
    assert not meta.exists
    assert not meta.readable
    assert meta.modified_at is None


def test_stat_artifact_existing(tmp_path: Path, invoked_at) -> None:
    path = tmp_path / "a.log"
    path.write_text("x\n", encoding="utf-8")
    meta = stat_artifact(path, invoked_at=invoked_at)
    assert meta.exists
    assert meta.readable
    assert meta.modified_at is not None
