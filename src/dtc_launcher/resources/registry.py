"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

import asyncio
import os
import re
from datetime import date
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from dtc_launcher.core.archive import archive_path
from dtc_launcher.core.config import LauncherConfig

ARCHIVE_DIR_ENV = "DTC_LAUNCHER_ARCHIVE_DIR"
TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "replace"

_STUDY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def _archive_dir() -> Path:
    """Return the resolved archive directory."""
    raw = os.getenv(ARCHIVE_DIR_ENV) or os.getenv("DTC_LAUNCHER_LOG_DIR") or "/var/log/dtc"
    return Path(raw).resolve()


def _resolve_archive(study: str, day: str) -> Path:
    """Resolve the archive file for a study and ISO day."""
    if not _STUDY_RE.match(study):
        raise ValueError("study may only contain letters, digits, '.', '_' and '-'")
    d = date.fromisoformat(day)
    p = archive_path(_archive_dir(), study, d)
    if not p.is_file():
        raise FileNotFoundError(f"No archive for {study} on {d.isoformat()}")
    return p


def register_resources(mcp: FastMCP) -> None:
    """Register resource handlers on the MCP server."""

    @mcp.resource("app://dtc-launcher/help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        return (
            "Resources:\n"
            "- app://dtc-launcher/help\n"
            "- app://dtc-launcher/schemas/config\n"
            "- archive://{study}/{day} (cleaned log, day as YYYY-MM-DD)\n"
            f"\nArchive directory: {_archive_dir()}\n"
        )

    @mcp.resource("app://dtc-launcher/schemas/config")
    def config_schema() -> dict[str, Any]:
        """Return the JSON schema of the launcher config file."""
        return LauncherConfig.model_json_schema()

    @mcp.resource("archive://{study}/{day}")
    async def read_archive(study: str, day: str) -> str:
        """Return one study's cleaned log for a day."""
        p = _resolve_archive(study, day)
        return await asyncio.to_thread(p.read_text, encoding=TEXT_ENCODING, errors=TEXT_ERRORS)
