from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from dtc_launcher.core.classifier import classify
from dtc_launcher.core.composer import EMPTY_SECTION, OPERATOR_SUBJECT, compose, compose_fault
from dtc_launcher.core.faults import Fault, FaultKind
from dtc_launcher.core.models import EntityState, OutcomeStatus

ERROR_LINE = "2024-01-01 10:00:00 ERROR omics.mf.upload x failed"
CREATE_LINE = "2024-01-01 10:00:05 TRACE x - TRACE omics.mf.upload.daris.DarisUtil - Creating asset"


def test_subject_has_name_and_invocation_date(entity, fresh_artifact, clean_lines, tmp_path: Path) -> None:
    outcome = classify(entity, clean_lines, fresh_artifact(tmp_path / "x.log"))
    report = compose(outcome)
    assert report.subject == "[CLEAN] study1 Log 2024-01-01"


def test_clean_report_has_summary_and_no_attachment(
    entity, fresh_artifact, clean_lines, tmp_path: Path
) -> None:
    outcome = classify(entity, clean_lines, fresh_artifact(tmp_path / "x.log"))
    report = compose(outcome)

    assert report.attachment is None
    assert "Summary:\n" + clean_lines[0] in report.body
    assert "Errors:" not in report.body
    assert "New data:" not in report.body
    assert "DEBUG" not in report.body


def test_data_found_report_lists_new_data(entity, fresh_artifact, clean_lines, tmp_path: Path) -> None:
    outcome = classify(entity, clean_lines + [CREATE_LINE], fresh_artifact(tmp_path / "x.log"))
    assert outcome.status == OutcomeStatus.DATA_FOUND

    report = compose(outcome)

    assert "New data:\n" + CREATE_LINE in report.body


def test_digest_can_attach_archive(entity, fresh_artifact, clean_lines, tmp_path: Path) -> None:
    outcome = classify(entity, clean_lines, fresh_artifact(tmp_path / "x.log"))
    archive = tmp_path / "study1_2024-01-01.log"
    assert compose(outcome, attach_archive=archive).attachment == archive


def test_error_report_attaches_raw_log(entity, fresh_artifact, clean_lines, tmp_path: Path) -> None:
    raw = tmp_path / "study1_verbose.log"
    outcome = classify(entity, clean_lines + [ERROR_LINE], fresh_artifact(raw))

    report = compose(outcome, attach_archive=tmp_path / "ignored.log")

    assert report.attachment == raw
    assert "Errors:\n" + ERROR_LINE in report.body
    assert f"New data:\n{EMPTY_SECTION}" in report.body


def test_empty_evidence_renders_markers(entity, fresh_artifact, tmp_path: Path) -> None:
    outcome = classify(entity, [], fresh_artifact(tmp_path / "x.log"))
    report = compose(outcome)

    assert report.body == (
        "Study: study1 (mode: data)\n"
        "Status: INDETERMINATE\n"
        "Reason: INFO summary returned no entries\n"
        "Lines: 0 total, 0 errors, 0 warnings, 0 unrecognized\n"
        "\n"
        "Errors:\n(no entries)\n"
        "\n"
        "Summary:\n(no entries)\n"
        "\n"
        "New data:\n(no entries)\n"
    )


def test_compose_is_idempotent(entity, fresh_artifact, clean_lines, tmp_path: Path) -> None:
    outcome = classify(entity, clean_lines + [ERROR_LINE, CREATE_LINE], fresh_artifact(tmp_path / "x.log"))
    first = compose(outcome)
    second = compose(outcome)
    assert first == second
    assert first.body.encode() == second.body.encode()


def test_compose_fault() -> None:
    fault = Fault(
        kind=FaultKind.OPERATOR,
        message="bogus not valid run mode for study2",
        entity="study2",
        state=EntityState.PRECHECK,
    )
    when = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    report = compose_fault(fault, when=when)

    assert report.subject == OPERATOR_SUBJECT
    assert "bogus not valid run mode" in report.body
    assert "State: PRECHECK" in report.body
    assert "Time: 2024-01-01T09:00:00+00:00" in report.body
    assert report.attachment is None
