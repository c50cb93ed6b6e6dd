"""Run outcome classification.

Combines parsed records with the precedence rules that turn one run's log
into a single verdict:

1. missing, unreadable or stale artifact -> INDETERMINATE (log not read)
2. any ERROR record -> ERROR
3. no INFO record at all -> INDETERMINATE
4. any "data created" event -> DATA_FOUND
5. otherwise -> CLEAN
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta

from .formats import LogParser
from .log_service import aiter_records, iter_records
from .models import (
    ArtifactMeta,
    LogRecord,
    MonitoredEntity,
    Outcome,
    OutcomeStatus,
    RunEvidence,
    Severity,
)

logger = logging.getLogger(__name__)

DEFAULT_CREATE_MARKER = "TRACE omics.mf.upload.daris.DarisUtil - Creating"
DEFAULT_STALENESS_WINDOW = timedelta(minutes=1400)

NO_SUMMARY_REASON = "INFO summary returned no entries"


class EvidenceAccumulator:
    """Single-pass sorter of records into RunEvidence."""

    def __init__(self, marker: str = DEFAULT_CREATE_MARKER) -> None:
        self._marker = marker.casefold()
        self.evidence = RunEvidence()

    def add(self, record: LogRecord) -> None:
        ev = self.evidence
        ev.total_lines += 1

        if record.severity is Severity.ERROR:
            ev.errors.append(record)
        elif record.severity is Severity.INFO:
            ev.summary.append(record)
        elif record.severity is Severity.WARN:
            ev.warnings += 1
        elif record.severity is Severity.UNKNOWN:
            ev.unknown_lines += 1

        # Matched by content, whatever the severity column says.
        if self._marker and self._marker in record.raw.casefold():
            ev.data_events.append(record)


def artifact_problem(artifact: ArtifactMeta, window: timedelta) -> str | None:
    """Return why an artifact cannot be trusted, or None if it can."""
    if not artifact.exists:
        return f"log file not found: {artifact.path}"
    if not artifact.readable:
        return f"log file not readable: {artifact.path}"
    if artifact.is_stale(window):
        return f"log file not updated since invocation: {artifact.path}"
    return None


def decide(evidence: RunEvidence) -> tuple[OutcomeStatus, str | None]:
    """Apply the content precedence rules to accumulated evidence."""
    if evidence.errors:
        return OutcomeStatus.ERROR, None
    if not evidence.summary:
        return OutcomeStatus.INDETERMINATE, NO_SUMMARY_REASON
    if evidence.data_events:
        return OutcomeStatus.DATA_FOUND, None
    return OutcomeStatus.CLEAN, None


def _short_circuit(entity: MonitoredEntity, artifact: ArtifactMeta, reason: str) -> Outcome:
    logger.warning("Skipping classification for %s: %s", entity.name, reason)
    return Outcome(
        entity=entity,
        status=OutcomeStatus.INDETERMINATE,
        evidence=RunEvidence(),
        artifact=artifact,
        reason=reason,
    )


def classify(
    entity: MonitoredEntity,
    lines: Iterable[str],
    artifact: ArtifactMeta,
    *,
    parser: LogParser | None = None,
    marker: str = DEFAULT_CREATE_MARKER,
    window: timedelta = DEFAULT_STALENESS_WINDOW,
) -> Outcome:
    """Classify one run from its log lines. Never raises on log content."""
    problem = artifact_problem(artifact, window)
    if problem is not None:
        return _short_circuit(entity, artifact, problem)

    acc = EvidenceAccumulator(marker)
    for record in iter_records(lines, parser=parser):
        acc.add(record)

    status, reason = decide(acc.evidence)
    return Outcome(
        entity=entity,
        status=status,
        evidence=acc.evidence,
        artifact=artifact,
        reason=reason,
    )


async def classify_artifact(
    entity: MonitoredEntity,
    artifact: ArtifactMeta,
    *,
    parser: LogParser | None = None,
    marker: str = DEFAULT_CREATE_MARKER,
    window: timedelta = DEFAULT_STALENESS_WINDOW,
) -> Outcome:
    """Classify one run by streaming its artifact from disk."""
    problem = artifact_problem(artifact, window)
    if problem is not None:
        return _short_circuit(entity, artifact, problem)

    acc = EvidenceAccumulator(marker)
    try:
        async for record in aiter_records(artifact.path, parser=parser):
            acc.add(record)
    except OSError as exc:
        return _short_circuit(entity, artifact, f"log file could not be read: {exc}")

    status, reason = decide(acc.evidence)
    logger.info(
        "Classified %s as %s (%s lines, %s errors, %s data events)",
        entity.name,
        status.value,
        acc.evidence.total_lines,
        len(acc.evidence.errors),
        len(acc.evidence.data_events),
    )
    return Outcome(
        entity=entity,
        status=status,
        evidence=acc.evidence,
        artifact=artifact,
        reason=reason,
    )
