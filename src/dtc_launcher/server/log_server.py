"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: classify a study's verbose log, preview its report
- Resources: archived cleaned logs and the config schema
- Prompts: a template that explains a run outcome

Run locally (stdio):
    python -m dtc_launcher.server.log_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from dtc_launcher.prompts.registry import register_prompts
from dtc_launcher.resources.registry import register_resources
from dtc_launcher.tools.run_log import classify_run_log_impl, preview_report_impl

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure a reasonable default logging setup.

    The MCP client typically captures stderr; keeping logs concise makes them easier to consume.
    """
    level_name = os.getenv("DTC_LAUNCHER_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


mcp = FastMCP("dtc-launcher", json_response=True)

register_resources(mcp)
register_prompts(mcp)


@mcp.tool()
async def classify_run_log(
    log_path: str,
    study: str,
    run_mode: str = "data",
    invoked_at: str | None = None,
    staleness_minutes: int | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """Classify a data-transfer client's verbose log.

    Parameters
    ----------
    log_path:
        Path to the verbose log (plain text or .gz).
    study:
        Study name used in the verdict.
    run_mode:
        One of data, metadata, scan-only.
    invoked_at:
        ISO-8601 invocation start. The log must have been written no more than
        ``staleness_minutes`` before it. Defaults to now.
    staleness_minutes:
        Staleness window (default 1400).
    limit:
        Maximum records returned per excerpt section.

    Returns
    -------
    dict:
        {"status": str, "reason": str | None, "errors": [...], "summary": [...],
         "data_events": [...], ...}
    """
    return await classify_run_log_impl(
        log_path=log_path,
        study=study,
        run_mode=run_mode,
        invoked_at=invoked_at,
        staleness_minutes=staleness_minutes,
        limit=limit,
    )


@mcp.tool()
async def preview_report(
    log_path: str,
    study: str,
    run_mode: str = "data",
    invoked_at: str | None = None,
    staleness_minutes: int | None = None,
) -> dict[str, Any]:
    """Return the subject, body and attachment that a run would be reported with."""
    return await preview_report_impl(
        log_path=log_path,
        study=study,
        run_mode=run_mode,
        invoked_at=invoked_at,
        staleness_minutes=staleness_minutes,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Start the MCP server over stdio."""
    _configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    _ = argv or sys.argv[1:]
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
