from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from dtc_launcher.core.models import (
    ArtifactMeta,
    Channel,
    DeliveryResult,
    MonitoredEntity,
    NotificationTarget,
    OutcomeStatus,
    RunMode,
)

INVOKED_AT = datetime(2024, 1, 1, 9, 0, 0, tzinfo=UTC)

CLEAN_LINES = [
    "2024-01-01 10:00:00 INFO omics.mf.upload.Main - Starting scan",
    "2024-01-01 10:00:01 DEBUG omics.mf.upload.Scanner - Walking /data/study",
    "2024-01-01 10:00:02 TRACE omics.mf.upload.Scanner - Checking file a.txt",
    "2024-01-01 10:00:03 WARN omics.mf.upload.Scanner - Skipping unreadable b.txt",
    "2024-01-01 10:00:04 INFO omics.mf.upload.Main - Scan complete, 0 new files",
]


@pytest.fixture
def entity() -> MonitoredEntity:
    return MonitoredEntity(name="study1", config_ref=Path("study1.conf"), run_mode=RunMode.DATA)


@pytest.fixture
def fresh_artifact() -> Callable[[Path], ArtifactMeta]:
    def _make(path: Path) -> ArtifactMeta:
        return ArtifactMeta(
            path=path,
            invoked_at=INVOKED_AT,
            exists=True,
            readable=True,
            modified_at=INVOKED_AT + timedelta(minutes=30),
        )

    return _make


@pytest.fixture
def write_log() -> Callable[[Path, Sequence[str]], None]:
    def _write(path: Path, lines: Sequence[str]) -> None:
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")

    return _write


class RecordingSink:
    """In-memory sink that records every call."""

    def __init__(self, channel: Channel = Channel.EMAIL, *, fail: set[str] | None = None) -> None:
        self.channel = channel
        self.fail = fail or set()
        self.calls: list[dict] = []

    def _result(self, recipients: Sequence[str]) -> DeliveryResult:
        address = ", ".join(recipients)
        target = NotificationTarget(
            channel=self.channel, address=address, severity_filter=frozenset(OutcomeStatus)
        )
        ok = not any(r in self.fail for r in recipients)
        return DeliveryResult(target=target, ok=ok, detail=None if ok else "refused")

    async def send_digest(self, recipients, subject, body) -> DeliveryResult:
        self.calls.append(
            {"recipients": list(recipients), "subject": subject, "body": body, "attachment": None}
        )
        return self._result(recipients)

    async def send_with_attachment(self, recipients, subject, body, attachment) -> DeliveryResult:
        self.calls.append(
            {
                "recipients": list(recipients),
                "subject": subject,
                "body": body,
                "attachment": attachment,
            }
        )
        return self._result(recipients)

    def to(self, address: str) -> list[dict]:
        return [c for c in self.calls if address in c["recipients"]]


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_sink() -> type[RecordingSink]:
    return RecordingSink


@pytest.fixture
def clean_lines() -> list[str]:
    return list(CLEAN_LINES)


@pytest.fixture
def invoked_at() -> datetime:
    return INVOKED_AT
