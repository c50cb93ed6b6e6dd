"""Study list loading and per-entity prechecks."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from .faults import OperatorFaultError
from .models import EntityRecord, MonitoredEntity, RunMode

logger = logging.getLogger(__name__)

RUN_MODES = tuple(m.value for m in RunMode)


def parse_study_lines(lines: Iterable[str]) -> list[EntityRecord]:
    """Parse 'CONF_PATH STUDY_NAME RUN_MODE' lines, skipping malformed ones."""
    records: list[EntityRecord] = []
    for line_no, line in enumerate(lines, start=1):
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        parts = text.split()
        if len(parts) != 3:
            logger.warning(
                "Skipping study list line %s: expected 3 fields, got %s: %r",
                line_no,
                len(parts),
                text,
            )
            continue
        config_ref, name, run_mode = parts
        records.append(
            EntityRecord(config_ref=config_ref, name=name, run_mode=run_mode, line_no=line_no)
        )
    return records


def load_studies(path: str | Path) -> list[EntityRecord]:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Study list not found: {p}")
    with p.open(encoding="utf-8") as f:
        return parse_study_lines(f)


def precheck(record: EntityRecord, *, seen_names: set[str] | None = None) -> MonitoredEntity:
    """Validate a study record.

    Raises OperatorFaultError when the config file is missing, the name is
    empty or already used in this batch, or the run mode is unknown.
    """
    name = record.name.strip()
    if not name:
        raise OperatorFaultError(f"'{record.name}' not valid name for {record.config_ref} study")

    if seen_names is not None:
        if name in seen_names:
            raise OperatorFaultError(f"duplicate study name {name}", entity=name)
        seen_names.add(name)

    config = Path(record.config_ref).expanduser()
    if not config.is_file():
        raise OperatorFaultError(f"{record.config_ref} conf file not found", entity=name)

    try:
        mode = RunMode(record.run_mode)
    except ValueError:
        allowed = ", ".join(RUN_MODES)
        raise OperatorFaultError(
            f"{record.run_mode} not valid run mode for {name} (allowed: {allowed})",
            entity=name,
        ) from None

    return MonitoredEntity(name=name, config_ref=config, run_mode=mode)
