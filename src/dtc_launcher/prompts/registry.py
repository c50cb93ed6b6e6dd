"""MCP prompt registry.

Prompts are predefined conversation/workflow templates that the client can invoke explicitly.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP


def register_prompts(mcp: FastMCP) -> None:
    """Register prompt templates on the MCP server."""

    @mcp.prompt()
    def explain_run_outcome(
        log_path: str,
        study: str,
        run_mode: str = "data",
        invoked_at: str | None = None,
    ) -> list[dict[str, Any]]:
        """Build a prompt that explains one data-transfer run."""
        when = f"- invoked_at: {invoked_at}\n" if invoked_at else ""
        return [
            {
                "role": "system",
                "content": (
                    "You are an operations assistant for a scheduled data-transfer client. "
                    "Use the classify_run_log tool before answering. Only cite log lines "
                    "returned by the tool. Distinguish a broken upload (ERROR) from broken "
                    "monitoring (INDETERMINATE: missing, stale or summary-less log)."
                ),
            },
            {
                "role": "user",
                "content": (
                    "Explain the outcome of this run and suggest the next step.\n"
                    f"- log_path: {log_path}\n"
                    f"- study: {study}\n"
                    f"- run_mode: {run_mode}\n"
                    f"{when}"
                ),
            },
        ]
