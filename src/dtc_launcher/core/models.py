"""Core data models for run classification and notification."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path


class Severity(str, Enum):
    """Severity keywords emitted by the data-transfer client."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"


# Severities kept in the cleaned archive copy.
ARCHIVED_SEVERITIES: frozenset[Severity] = frozenset(
    {Severity.ERROR, Severity.WARN, Severity.INFO}
)


class RunMode(str, Enum):
    """What the client transfers; values are passed on its command line."""

    DATA = "data"
    METADATA = "metadata"
    SCAN_ONLY = "scan-only"


class OutcomeStatus(str, Enum):
    CLEAN = "CLEAN"
    DATA_FOUND = "DATA_FOUND"
    ERROR = "ERROR"
    INDETERMINATE = "INDETERMINATE"


class Channel(str, Enum):
    EMAIL = "email"
    CHAT = "chat"


class EntityState(str, Enum):
    """Pipeline states of one monitored entity, in execution order."""

    PRECHECK = "PRECHECK"
    INVOKE = "INVOKE"
    AWAIT_ARTIFACT = "AWAIT_ARTIFACT"
    CLASSIFY = "CLASSIFY"
    COMPOSE = "COMPOSE"
    NOTIFY = "NOTIFY"
    ARCHIVE = "ARCHIVE"
    DONE = "DONE"


@dataclass(frozen=True, slots=True)
class LogRecord:
    """One parsed log line."""

    line_no: int
    severity: Severity
    raw: str  # verbatim line without the trailing newline
    fields: tuple[str, ...] = ()
    message: str = ""


@dataclass(slots=True)
class RunEvidence:
    """Log excerpts accumulated during a single pass over one run's log."""

    errors: list[LogRecord] = field(default_factory=list)
    summary: list[LogRecord] = field(default_factory=list)
    data_events: list[LogRecord] = field(default_factory=list)
    total_lines: int = 0
    unknown_lines: int = 0
    warnings: int = 0


@dataclass(frozen=True, slots=True)
class EntityRecord:
    """Unvalidated study list entry: CONF_PATH STUDY_NAME RUN_MODE."""

    config_ref: str
    name: str
    run_mode: str
    line_no: int | None = None


@dataclass(frozen=True, slots=True)
class MonitoredEntity:
    """A validated study / data-transfer job."""

    name: str
    config_ref: Path
    run_mode: RunMode


@dataclass(frozen=True, slots=True)
class ArtifactMeta:
    """Filesystem facts about a verbose log, gathered without reading it."""

    path: Path
    invoked_at: datetime
    exists: bool
    readable: bool
    modified_at: datetime | None = None

    @property
    def age(self) -> timedelta | None:
        """How long before the invocation start the artifact was last written."""
        if self.modified_at is None:
            return None
        return self.invoked_at - self.modified_at

    def is_stale(self, window: timedelta) -> bool:
        age = self.age
        return age is None or age > window


@dataclass(frozen=True, slots=True)
class Outcome:
    """Verdict for one run plus the evidence it was derived from."""

    entity: MonitoredEntity
    status: OutcomeStatus
    evidence: RunEvidence
    artifact: ArtifactMeta
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class NotificationTarget:
    channel: Channel
    address: str
    severity_filter: frozenset[OutcomeStatus]

    def accepts(self, status: OutcomeStatus) -> bool:
        return status in self.severity_filter


@dataclass(frozen=True, slots=True)
class Report:
    """Channel-agnostic notification content."""

    subject: str
    body: str
    status: OutcomeStatus | None = None
    attachment: Path | None = None


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    target: NotificationTarget
    ok: bool
    detail: str | None = None
