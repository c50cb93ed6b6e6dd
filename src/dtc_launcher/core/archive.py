"""Cleaned log archival.

The archive keeps ERROR / WARN / INFO lines of a verbose log, in order, in
one file per study per calendar day. A later run on the same day replaces
that day's file.
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import tempfile
from datetime import date
from pathlib import Path

import aiofiles

from .formats import LogParser
from .log_service import aiter_records
from .models import ARCHIVED_SEVERITIES

logger = logging.getLogger(__name__)


def _file_mode() -> int:
    """Mode a plain open() would give a new file under the current umask."""
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


def archive_path(archive_dir: str | Path, name: str, day: date) -> Path:
    return Path(archive_dir) / f"{name}_{day.isoformat()}.log"


async def write_archive(
    log_path: str | Path,
    dest: str | Path,
    *,
    parser: LogParser | None = None,
) -> int:
    """Write the filtered copy of ``log_path`` to ``dest`` atomically.

    Returns the number of lines kept. A missing verbose log produces an
    empty archive.
    """
    src = Path(log_path)
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=dest.parent)
    os.close(fd)
    tmp = Path(tmp_name)

    kept = 0
    try:
        os.chmod(tmp, _file_mode())
        async with aiofiles.open(tmp, "w", encoding="utf-8") as out:
            if src.is_file():
                async for record in aiter_records(src, parser=parser):
                    if record.severity in ARCHIVED_SEVERITIES:
                        await out.write(record.raw + "\n")
                        kept += 1
            else:
                logger.warning("Verbose log %s missing; writing empty archive %s", src, dest)
        os.replace(tmp, dest)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("Archived %s lines from %s to %s", kept, src, dest)
    return kept


def compress_attachment(path: str | Path) -> Path:
    """Gzip ``path`` next to itself and return the compressed file."""
    src = Path(path)
    dest = src.with_name(src.name + ".gz")
    with src.open("rb") as fin, gzip.open(dest, "wb") as fout:
        shutil.copyfileobj(fin, fout)
    return dest
