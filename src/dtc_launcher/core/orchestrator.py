"""Run orchestration.

Drives each study through

    PRECHECK -> INVOKE -> AWAIT_ARTIFACT -> CLASSIFY -> COMPOSE -> NOTIFY -> ARCHIVE -> DONE

and runs the whole study list. Failures are contained per study: they are
recorded on that study's result, escalated to the operator channel where
required, and never stop the remaining studies. Once a study has passed
precheck its cleaned log is archived whatever happened afterwards.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
from collections.abc import Callable, Sequence
from contextlib import nullcontext, suppress
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .archive import archive_path, compress_attachment, write_archive
from .classifier import artifact_problem, classify_artifact
from .composer import compose
from .config import LauncherConfig
from .entities import precheck
from .faults import Fault, FaultKind, LauncherError, OperatorFaultError
from .log_service import stat_artifact
from .models import (
    DeliveryResult,
    EntityRecord,
    EntityState,
    MonitoredEntity,
    Outcome,
    OutcomeStatus,
    Report,
    RunEvidence,
)
from .router import NotificationRouter, all_failed

logger = logging.getLogger(__name__)

_GOOD_STATUSES = frozenset({OutcomeStatus.CLEAN, OutcomeStatus.DATA_FOUND})

KILL_GRACE_SECONDS = 5.0


class InvocationTimeout(LauncherError):
    def __init__(self, entity: str, timeout: float) -> None:
        super().__init__(
            Fault(
                kind=FaultKind.INDETERMINATE,
                message=f"client did not finish within {timeout:g}s and was terminated",
                entity=entity,
                state=EntityState.INVOKE,
            )
        )


class Invoker(Protocol):
    """Runs the data-transfer client for one study, writing its log to ``log_path``."""

    async def __call__(self, entity: MonitoredEntity, log_path: Path) -> int | None: ...


class SubprocessInvoker:
    """Invoke the client as a child process with combined stdout/stderr captured."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        timeout: float | None = None,
        cwd: str | Path | None = None,
        kill_grace: float = KILL_GRACE_SECONDS,
    ) -> None:
        if not command:
            raise ValueError("command must not be empty")
        self.command = list(command)
        self.timeout = timeout
        self.cwd = cwd
        self.kill_grace = kill_grace

    def build_argv(self, entity: MonitoredEntity) -> list[str]:
        return [
            part.format(config=str(entity.config_ref), mode=entity.run_mode.value, name=entity.name)
            for part in self.command
        ]

    async def _terminate_group(self, proc: asyncio.subprocess.Process) -> None:
        """Stop the client and everything it started (it runs in its own session)."""
        with suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            pass
        # Stragglers that ignored SIGTERM or outlived the leader.
        with suppress(ProcessLookupError):
            os.killpg(proc.pid, signal.SIGKILL)
        await proc.wait()

    async def __call__(self, entity: MonitoredEntity, log_path: Path) -> int | None:
        argv = self.build_argv(entity)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("Running DTC for %s: %s", entity.name, " ".join(argv))

        # Overwrites the previous run's verbose log.
        with log_path.open("wb") as out:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=out,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.cwd,
                start_new_session=True,
            )
            try:
                return await asyncio.wait_for(proc.wait(), timeout=self.timeout)
            except asyncio.TimeoutError:
                raise InvocationTimeout(entity.name, self.timeout or 0) from None
            finally:
                if proc.returncode is None:
                    await self._terminate_group(proc)


@dataclass(slots=True)
class EntityResult:
    name: str
    state: EntityState = EntityState.PRECHECK
    passed: bool = False
    outcome: Outcome | None = None
    faults: list[Fault] = field(default_factory=list)
    deliveries: list[DeliveryResult] = field(default_factory=list)
    archive_path: Path | None = None
    exit_code: int | None = None

    @property
    def failed_at_precheck(self) -> bool:
        return not self.passed and self.state is EntityState.PRECHECK


@dataclass(frozen=True, slots=True)
class BatchResult:
    results: list[EntityResult]

    @property
    def passed(self) -> list[EntityResult]:
        return [r for r in self.results if r.passed]

    @property
    def failed(self) -> list[EntityResult]:
        return [r for r in self.results if not r.passed]

    @property
    def ok(self) -> bool:
        return not self.failed


def _now() -> datetime:
    return datetime.now().astimezone()


def preflight(cfg: LauncherConfig) -> None:
    """Check that the launcher can run at all. Raises OperatorFaultError."""
    exe = cfg.client_command[0]
    if os.sep in exe or (os.altsep and os.altsep in exe):
        path = Path(exe)
        if not path.is_absolute() and cfg.client_workdir is not None:
            path = cfg.client_workdir / path
        if not (path.is_file() and os.access(path, os.X_OK)):
            raise OperatorFaultError(f"{path} not found", state=None)
    elif shutil.which(exe) is None:
        raise OperatorFaultError(f"{exe} not found on PATH", state=None)

    for d in (cfg.log_dir, cfg.resolved_archive_dir):
        try:
            d.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OperatorFaultError(f"cannot create {d}: {exc}", state=None) from exc


class Orchestrator:
    def __init__(
        self,
        config: LauncherConfig,
        router: NotificationRouter,
        *,
        invoker: Invoker | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.config = config
        self.router = router
        self.invoker = invoker or SubprocessInvoker(
            config.client_command,
            timeout=config.invoke_timeout_seconds,
            cwd=config.client_workdir,
        )
        self.clock = clock
        self._mount_locks: dict[str, asyncio.Lock] = {}

    def _mount_lock(self, name: str):
        mount = self.config.mount_for(name)
        if mount is None:
            return nullcontext()
        lock = self._mount_locks.get(mount)
        if lock is None:
            lock = self._mount_locks[mount] = asyncio.Lock()
        return lock

    async def _escalate(self, result: EntityResult, fault: Fault) -> None:
        result.faults.append(fault)
        await self.router.escalate(fault, when=self.clock())

    async def run_batch(self, records: Sequence[EntityRecord]) -> BatchResult:
        """Process every study; results keep the input order."""
        logger.info("Running DTC for %s studies", len(records))
        seen: set[str] = set()
        sem = asyncio.Semaphore(self.config.max_concurrency)

        async def guarded(record: EntityRecord) -> EntityResult:
            # Precheck runs before the first await so duplicate detection
            # follows list order.
            try:
                entity = precheck(record, seen_names=seen)
            except OperatorFaultError as exc:
                result = EntityResult(name=record.name)
                await self._escalate(result, exc.fault)
                return result
            async with sem:
                return await self.run_entity(entity)

        results = await asyncio.gather(*(guarded(r) for r in records))
        batch = BatchResult(results=list(results))
        logger.info(
            "DTC launcher completed: %s passed, %s failed",
            len(batch.passed),
            len(batch.failed),
        )
        return batch

    async def run_record(self, record: EntityRecord) -> EntityResult:
        """Precheck and run a single study record."""
        try:
            entity = precheck(record)
        except OperatorFaultError as exc:
            result = EntityResult(name=record.name)
            await self._escalate(result, exc.fault)
            return result
        return await self.run_entity(entity)

    async def run_entity(self, entity: MonitoredEntity) -> EntityResult:
        """Run one prechecked study through the rest of the pipeline."""
        logger.info("Passed pre-checks OK for %s", entity.name)
        cfg = self.config
        result = EntityResult(name=entity.name)
        log_path = cfg.verbose_log_path(entity.name)
        invoked_at = self.clock()
        dest = archive_path(cfg.resolved_archive_dir, entity.name, invoked_at.date())
        archived = False

        try:
            outcome: Outcome | None = None

            result.state = EntityState.INVOKE
            try:
                async with self._mount_lock(entity.name):
                    result.exit_code = await self.invoker(entity, log_path)
            except InvocationTimeout as exc:
                result.faults.append(exc.fault)
                outcome = Outcome(
                    entity=entity,
                    status=OutcomeStatus.INDETERMINATE,
                    evidence=RunEvidence(),
                    artifact=stat_artifact(log_path, invoked_at=invoked_at),
                    reason=exc.fault.message,
                )
            except OSError as exc:
                raise OperatorFaultError(
                    f"could not start client: {exc}", entity=entity.name, state=EntityState.INVOKE
                ) from exc
            if result.exit_code:
                logger.warning("DTC for %s exited with code %s", entity.name, result.exit_code)

            result.state = EntityState.AWAIT_ARTIFACT
            artifact = stat_artifact(log_path, invoked_at=invoked_at)
            problem = artifact_problem(artifact, cfg.staleness_window) if outcome is None else None
            if problem is not None:
                result.faults.append(
                    Fault(
                        kind=FaultKind.INDETERMINATE,
                        message=problem,
                        entity=entity.name,
                        state=EntityState.AWAIT_ARTIFACT,
                    )
                )
                await self._escalate(
                    result,
                    Fault(
                        kind=FaultKind.OPERATOR,
                        message=problem,
                        entity=entity.name,
                        state=EntityState.AWAIT_ARTIFACT,
                    ),
                )

            result.state = EntityState.CLASSIFY
            if outcome is None:
                logger.info("DTC run completed for %s, processing...", entity.name)
                outcome = await classify_artifact(
                    entity,
                    artifact,
                    marker=cfg.create_marker,
                    window=cfg.staleness_window,
                )
            result.outcome = outcome
            if outcome.status is OutcomeStatus.ERROR:
                result.faults.append(
                    Fault(
                        kind=FaultKind.RUN,
                        message=f"{len(outcome.evidence.errors)} ERROR records logged",
                        entity=entity.name,
                        state=EntityState.CLASSIFY,
                    )
                )
            elif outcome.status is OutcomeStatus.INDETERMINATE and problem is None:
                if not any(f.kind is FaultKind.INDETERMINATE for f in result.faults):
                    result.faults.append(
                        Fault(
                            kind=FaultKind.INDETERMINATE,
                            message=outcome.reason or "no verdict",
                            entity=entity.name,
                            state=EntityState.CLASSIFY,
                        )
                    )

            result.state = EntityState.COMPOSE
            attach: Path | None = None
            if cfg.attach_archive_to_digest and outcome.status in _GOOD_STATUSES:
                result.state = EntityState.ARCHIVE
                await write_archive(log_path, dest)
                archived = True
                result.archive_path = attach = dest
                result.state = EntityState.COMPOSE
            report = self._shape_attachment(compose(outcome, attach_archive=attach))

            result.state = EntityState.NOTIFY
            logger.info("Processing completed for %s, notifying %s", entity.name, outcome.status.value)
            result.deliveries = await self.router.route(report, outcome.status)
            for d in result.deliveries:
                if not d.ok:
                    result.faults.append(
                        Fault(
                            kind=FaultKind.DELIVERY,
                            message=f"{d.target.channel.value} {d.target.address}: {d.detail}",
                            entity=entity.name,
                            state=EntityState.NOTIFY,
                        )
                    )
            if all_failed(result.deliveries):
                await self._escalate(
                    result,
                    Fault(
                        kind=FaultKind.OPERATOR,
                        message="all notification deliveries failed",
                        entity=entity.name,
                        state=EntityState.NOTIFY,
                    ),
                )
        except LauncherError as exc:
            await self._escalate(result, exc.fault)
        except Exception as exc:
            logger.exception("Unexpected failure for %s in %s", entity.name, result.state.value)
            await self._escalate(
                result,
                Fault(
                    kind=FaultKind.OPERATOR,
                    message=f"unexpected {type(exc).__name__}: {exc}",
                    entity=entity.name,
                    state=result.state,
                ),
            )

        failed_state = result.state
        if not archived:
            archived = await self._archive(result, log_path, dest)

        has_operator_fault = any(f.kind is FaultKind.OPERATOR for f in result.faults)
        result.passed = (
            archived
            and not has_operator_fault
            and result.outcome is not None
            and result.outcome.status in _GOOD_STATUSES
        )
        # A failed result keeps the state where it went wrong.
        result.state = EntityState.DONE if result.passed or result.outcome else failed_state
        logger.info("DTC run for %s completed (%s)", entity.name, "PASSED" if result.passed else "FAILED")
        return result

    def _shape_attachment(self, report: Report) -> Report:
        if not (self.config.compress_attachments and report.attachment is not None):
            return report
        if report.status in _GOOD_STATUSES:
            return report
        try:
            return replace(report, attachment=compress_attachment(report.attachment))
        except OSError as exc:
            logger.warning("Could not compress %s, attaching as-is: %s", report.attachment, exc)
            return report

    async def _archive(self, result: EntityResult, log_path: Path, dest: Path) -> bool:
        prev = result.state
        result.state = EntityState.ARCHIVE
        logger.info("Cycling cleaned log for storage: %s", dest)
        try:
            await write_archive(log_path, dest)
        except OSError as exc:
            await self._escalate(
                result,
                Fault(
                    kind=FaultKind.OPERATOR,
                    message=f"archive failed: {exc}",
                    entity=result.name,
                    state=EntityState.ARCHIVE,
                ),
            )
            result.state = prev
            return False
        result.archive_path = dest
        return True
