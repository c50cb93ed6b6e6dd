from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import date, datetime
from pathlib import Path

from dtc_launcher.core.archive import archive_path, write_archive
from dtc_launcher.core.config import LauncherConfig, build_router, load_config
from dtc_launcher.core.entities import load_studies
from dtc_launcher.core.faults import OperatorFaultError
from dtc_launcher.core.orchestrator import BatchResult, Orchestrator, preflight
from dtc_launcher.tools.run_log import classify_run_log_impl

logger = logging.getLogger("dtc_launcher")


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.getenv("DTC_LAUNCHER_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_batch(batch: BatchResult) -> None:
    for r in batch.results:
        status = r.outcome.status.value if r.outcome else "-"
        verdict = "PASSED" if r.passed else f"FAILED@{r.state.value}"
        print(f"{r.name} {verdict} {status}")
        for f in r.faults:
            print(f"  {f.describe()}")
    print(f"\n{len(batch.passed)} passed, {len(batch.failed)} failed.")


async def _run(cfg: LauncherConfig, studies: Path) -> int:
    router = build_router(cfg)
    logger.info("Starting DTC Launcher")
    try:
        preflight(cfg)
        records = load_studies(studies)
    except FileNotFoundError as e:
        fault = OperatorFaultError(str(e), state=None).fault
        await router.escalate(fault, when=datetime.now().astimezone())
        print(str(e), file=sys.stderr)
        return 1
    except OperatorFaultError as e:
        await router.escalate(e.fault, when=datetime.now().astimezone())
        print(f"Error: {e}", file=sys.stderr)
        return 1
    logger.info("Tests passed OK")

    batch = await Orchestrator(cfg, router).run_batch(records)
    _print_batch(batch)
    return 0 if batch.ok else 1


async def _classify(args: argparse.Namespace) -> int:
    out = await classify_run_log_impl(
        log_path=args.log_path,
        study=args.study,
        run_mode=args.mode,
        invoked_at=args.invoked_at,
        staleness_minutes=args.staleness_minutes,
        limit=args.max,
    )
    print(f"{out['study']}: {out['status']}" + (f" ({out['reason']})" if out["reason"] else ""))
    for section in ("errors", "data_events", "summary"):
        print(f"\n{section} ({len(out[section])}):")
        for r in out[section]:
            print(f"{r['line_no']} {r['raw']}")
    return 0


async def _archive(args: argparse.Namespace) -> int:
    day = date.fromisoformat(args.day) if args.day else date.today()
    dest = archive_path(args.archive_dir, args.study, day)
    kept = await write_archive(args.log_path, dest)
    print(f"Wrote {kept} lines to {dest}")
    return 0


def main() -> None:
    p = argparse.ArgumentParser(description="Launcher and monitor for the data transfer client.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the client for every study in the list")
    run.add_argument("studies", help="Study list: CONF_PATH STUDY_NAME RUN_MODE per line")
    run.add_argument("--config", default=None, help="Launcher YAML config")

    cl = sub.add_parser("classify", help="Classify an existing verbose log")
    cl.add_argument("log_path")
    cl.add_argument("--study", required=True)
    cl.add_argument("--mode", default="data", help="data, metadata or scan-only")
    cl.add_argument("--invoked-at", default=None, help="ISO8601 invocation start (default: now)")
    cl.add_argument("--staleness-minutes", type=int, default=None)
    cl.add_argument("--max", type=int, default=None, help="Max records per section")

    ar = sub.add_parser("archive", help="Write the cleaned copy of a verbose log")
    ar.add_argument("log_path")
    ar.add_argument("--study", required=True)
    ar.add_argument("--archive-dir", default=".")
    ar.add_argument("--day", default=None, help="YYYY-MM-DD (default: today)")

    args = p.parse_args()
    _configure_logging(args.verbose)

    try:
        if args.command == "run":
            code = asyncio.run(_run(load_config(args.config), Path(args.studies)))
        elif args.command == "classify":
            code = asyncio.run(_classify(args))
        else:
            code = asyncio.run(_archive(args))
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)

    raise SystemExit(code)


if __name__ == "__main__":
    main()
