"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into core calls, and
return JSON-serializable data structures.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from dtc_launcher.core.classifier import (
    DEFAULT_CREATE_MARKER,
    DEFAULT_STALENESS_WINDOW,
    classify_artifact,
)
from dtc_launcher.core.composer import compose
from dtc_launcher.core.log_service import stat_artifact
from dtc_launcher.core.models import LogRecord, MonitoredEntity, Outcome, RunMode

DEFAULT_EXCERPT_LIMIT = 50
HARD_EXCERPT_LIMIT = 1000


def _parse_invoked_at(value: str | None) -> datetime:
    """Parse an ISO-8601 invocation time; missing tz means UTC, missing value means now."""
    if not value:
        return datetime.now(UTC)
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _parse_run_mode(value: str) -> RunMode:
    try:
        return RunMode(value.strip().lower())
    except ValueError as e:
        valid = ", ".join(m.value for m in RunMode)
        raise ValueError(f"Unknown run mode '{value}'. Valid values: {valid}.") from e


def _record_to_dict(record: LogRecord) -> dict[str, Any]:
    return {
        "line_no": record.line_no,
        "severity": record.severity.value,
        "raw": record.raw,
    }


def _resolve_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_EXCERPT_LIMIT
    if limit <= 0:
        raise ValueError("limit must be > 0")
    return min(limit, HARD_EXCERPT_LIMIT)


async def _classify(
    log_path: str,
    study: str,
    run_mode: str,
    invoked_at: str | None,
    staleness_minutes: int | None,
) -> Outcome:
    if not study.strip():
        raise ValueError("study must not be empty")
    entity = MonitoredEntity(
        name=study.strip(),
        config_ref=Path("-"),
        run_mode=_parse_run_mode(run_mode),
    )
    window = (
        timedelta(minutes=staleness_minutes)
        if staleness_minutes is not None
        else DEFAULT_STALENESS_WINDOW
    )
    artifact = stat_artifact(Path(log_path).expanduser(), invoked_at=_parse_invoked_at(invoked_at))
    return await classify_artifact(entity, artifact, marker=DEFAULT_CREATE_MARKER, window=window)


async def classify_run_log_impl(
    *,
    log_path: str,
    study: str,
    run_mode: str = "data",
    invoked_at: str | None = None,
    staleness_minutes: int | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """Implementation for the `classify_run_log` MCP tool.

    Notes
    -----
    - invoked_at defaults to "now"; pass the real invocation start to get a
      meaningful staleness check on older logs.
    - Excerpts are capped at ``limit`` records per section.
    """
    cap = _resolve_limit(limit)
    outcome = await _classify(log_path, study, run_mode, invoked_at, staleness_minutes)
    ev = outcome.evidence
    return {
        "study": outcome.entity.name,
        "status": outcome.status.value,
        "reason": outcome.reason,
        "total_lines": ev.total_lines,
        "unknown_lines": ev.unknown_lines,
        "warnings": ev.warnings,
        "errors": [_record_to_dict(r) for r in ev.errors[:cap]],
        "summary": [_record_to_dict(r) for r in ev.summary[:cap]],
        "data_events": [_record_to_dict(r) for r in ev.data_events[:cap]],
    }


async def preview_report_impl(
    *,
    log_path: str,
    study: str,
    run_mode: str = "data",
    invoked_at: str | None = None,
    staleness_minutes: int | None = None,
) -> dict[str, Any]:
    """Implementation for the `preview_report` MCP tool."""
    outcome = await _classify(log_path, study, run_mode, invoked_at, staleness_minutes)
    report = compose(outcome)
    return {
        "status": outcome.status.value,
        "subject": report.subject,
        "body": report.body,
        "attachment": str(report.attachment) if report.attachment else None,
    }
