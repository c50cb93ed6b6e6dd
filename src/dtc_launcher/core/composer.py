"""Report composition.

Turns an Outcome into channel-agnostic text. Output depends only on the
Outcome (and the optional archive path), so composing twice gives identical
reports.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from .faults import Fault
from .models import LogRecord, Outcome, OutcomeStatus, Report

EMPTY_SECTION = "(no entries)"
OPERATOR_SUBJECT = "DTC launch script error"

_FAULT_STATUSES = frozenset({OutcomeStatus.ERROR, OutcomeStatus.INDETERMINATE})


def _section(title: str, records: Sequence[LogRecord]) -> str:
    if not records:
        return f"{title}:\n{EMPTY_SECTION}"
    lines = "\n".join(r.raw for r in records)
    return f"{title}:\n{lines}"


def build_subject(outcome: Outcome) -> str:
    day = outcome.artifact.invoked_at.date().isoformat()
    return f"[{outcome.status.value}] {outcome.entity.name} Log {day}"


def _header(outcome: Outcome) -> str:
    ev = outcome.evidence
    lines = [
        f"Study: {outcome.entity.name} (mode: {outcome.entity.run_mode.value})",
        f"Status: {outcome.status.value}",
    ]
    if outcome.reason:
        lines.append(f"Reason: {outcome.reason}")
    lines.append(
        f"Lines: {ev.total_lines} total, {len(ev.errors)} errors, "
        f"{ev.warnings} warnings, {ev.unknown_lines} unrecognized"
    )
    return "\n".join(lines)


def compose(outcome: Outcome, *, attach_archive: Path | None = None) -> Report:
    """Compose the report for one run.

    ERROR / INDETERMINATE reports carry every section and attach the raw
    verbose log. CLEAN / DATA_FOUND reports carry the summary (plus new data
    when found) and attach ``attach_archive`` only when given.
    """
    ev = outcome.evidence
    parts = [_header(outcome)]

    if outcome.status in _FAULT_STATUSES:
        parts.append(_section("Errors", ev.errors))
        parts.append(_section("Summary", ev.summary))
        parts.append(_section("New data", ev.data_events))
        attachment: Path | None = outcome.artifact.path if outcome.artifact.exists else None
    else:
        parts.append(_section("Summary", ev.summary))
        if outcome.status is OutcomeStatus.DATA_FOUND:
            parts.append(_section("New data", ev.data_events))
        attachment = attach_archive

    return Report(
        subject=build_subject(outcome),
        body="\n\n".join(parts) + "\n",
        status=outcome.status,
        attachment=attachment,
    )


def compose_fault(fault: Fault, *, when: datetime) -> Report:
    """Compose the operator-channel report for a launcher fault."""
    body = "\n".join(
        [
            fault.describe(),
            f"Entity: {fault.entity or '(batch)'}",
            f"State: {fault.state.value if fault.state else '-'}",
            f"Time: {when.isoformat(timespec='seconds')}",
        ]
    )
    return Report(subject=OPERATOR_SUBJECT, body=body + "\n")
