"""Launcher configuration.

Settings come from a YAML file validated with pydantic; a few values can be
overridden through ``DTC_LAUNCHER_*`` environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from ..sinks import EmailSink, SlackSink
from .classifier import DEFAULT_CREATE_MARKER
from .models import Channel, NotificationTarget
from .router import NotificationRouter, NotificationSink, RouteClass, RoutingTable

DEFAULT_CLIENT_COMMAND = ["./omics-mf-upload", "--config", "{config}", "-v", "{mode}"]


class SmtpSettings(BaseModel):
    host: str = "localhost"
    port: int = 25
    sender: str = "data.client@omics.data.edu.au (Data Transfer Client)"
    starttls: bool = False
    username: str | None = None
    password: str | None = None
    timeout_seconds: float = 30.0


class SlackSettings(BaseModel):
    token: str | None = None
    api_base: str = "https://slack.com/api"
    max_message_chars: int = Field(default=3500, ge=100)
    timeout_seconds: float = 30.0


class ChannelRecipients(BaseModel):
    """Addresses for one channel, by recipient group."""

    daily: list[str] = Field(default_factory=list)
    upload: list[str] = Field(default_factory=list)
    error: list[str] = Field(default_factory=list)
    operator: list[str] = Field(default_factory=list)


class RecipientSettings(BaseModel):
    email: ChannelRecipients = Field(default_factory=ChannelRecipients)
    chat: ChannelRecipients = Field(default_factory=ChannelRecipients)


class LauncherConfig(BaseModel):
    log_dir: Path = Path("/var/log/dtc")
    archive_dir: Path | None = None
    client_command: list[str] = Field(default_factory=lambda: list(DEFAULT_CLIENT_COMMAND))
    client_workdir: Path | None = None
    staleness_minutes: int = Field(default=1400, ge=1)
    invoke_timeout_seconds: float | None = Field(default=None, gt=0)
    max_concurrency: int = Field(default=1, ge=1)
    mounts: dict[str, str] = Field(default_factory=dict)
    default_mount: str | None = "default"
    create_marker: str = DEFAULT_CREATE_MARKER
    attach_archive_to_digest: bool = False
    compress_attachments: bool = False
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    recipients: RecipientSettings = Field(default_factory=RecipientSettings)

    @field_validator("client_command")
    @classmethod
    def _command_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("client_command must not be empty")
        return v

    @property
    def staleness_window(self) -> timedelta:
        return timedelta(minutes=self.staleness_minutes)

    @property
    def resolved_archive_dir(self) -> Path:
        return self.archive_dir or self.log_dir

    def verbose_log_path(self, name: str) -> Path:
        return self.log_dir / f"{name}_verbose.log"

    def mount_for(self, name: str) -> str | None:
        return self.mounts.get(name, self.default_mount)


def resolve_config(cfg: LauncherConfig | None = None) -> LauncherConfig:
    """Return config with optional env overrides applied."""
    if cfg is None:
        cfg = LauncherConfig()

    updates: dict[str, object] = {}

    log_dir = os.getenv("DTC_LAUNCHER_LOG_DIR")
    if log_dir:
        updates["log_dir"] = Path(log_dir)

    env = os.getenv("DTC_LAUNCHER_MAX_CONCURRENCY")
    if env:
        try:
            value = int(env)
        except ValueError as exc:
            raise ValueError("DTC_LAUNCHER_MAX_CONCURRENCY must be an integer") from exc
        if value < 1:
            raise ValueError("DTC_LAUNCHER_MAX_CONCURRENCY must be >= 1")
        updates["max_concurrency"] = value

    token = os.getenv("DTC_LAUNCHER_SLACK_TOKEN")
    if token:
        updates["slack"] = cfg.slack.model_copy(update={"token": token})

    if not updates:
        return cfg
    return cfg.model_copy(update=updates)


def load_config(path: str | Path | None) -> LauncherConfig:
    """Load a YAML config file (or defaults when ``path`` is None)."""
    if path is None:
        return resolve_config(None)

    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Config file not found: {p}")
    with p.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return resolve_config(LauncherConfig.model_validate(data))


def _targets(channel: Channel, addresses: list[str], route: RouteClass) -> list[NotificationTarget]:
    return [
        NotificationTarget(channel=channel, address=a, severity_filter=route.statuses)
        for a in addresses
    ]


def routing_table(cfg: LauncherConfig) -> RoutingTable:
    """Per-channel, per-route-class targets from the recipient settings."""
    table: dict[Channel, dict[RouteClass, list[NotificationTarget]]] = {}
    for channel, recipients in (
        (Channel.EMAIL, cfg.recipients.email),
        (Channel.CHAT, cfg.recipients.chat),
    ):
        table[channel] = {
            RouteClass.DAILY: _targets(channel, recipients.daily, RouteClass.DAILY),
            RouteClass.UPLOAD: _targets(channel, recipients.upload, RouteClass.UPLOAD),
            RouteClass.ERROR: _targets(channel, recipients.error, RouteClass.ERROR),
        }
    return table


def operator_targets(cfg: LauncherConfig) -> list[NotificationTarget]:
    every = frozenset(RouteClass.ERROR.statuses | RouteClass.DAILY.statuses)
    out: list[NotificationTarget] = []
    for channel, recipients in (
        (Channel.EMAIL, cfg.recipients.email),
        (Channel.CHAT, cfg.recipients.chat),
    ):
        out.extend(
            NotificationTarget(channel=channel, address=a, severity_filter=every)
            for a in recipients.operator
        )
    return out


def build_sinks(cfg: LauncherConfig) -> dict[Channel, NotificationSink]:
    """Construct the configured sinks; chat is left out without a token."""
    sinks: dict[Channel, NotificationSink] = {
        Channel.EMAIL: EmailSink(
            host=cfg.smtp.host,
            port=cfg.smtp.port,
            sender=cfg.smtp.sender,
            starttls=cfg.smtp.starttls,
            username=cfg.smtp.username,
            password=cfg.smtp.password,
            timeout=cfg.smtp.timeout_seconds,
        )
    }
    if cfg.slack.token:
        sinks[Channel.CHAT] = SlackSink(
            token=cfg.slack.token,
            api_base=cfg.slack.api_base,
            max_message_chars=cfg.slack.max_message_chars,
            timeout=cfg.slack.timeout_seconds,
        )
    return sinks


def build_router(
    cfg: LauncherConfig,
    sinks: Mapping[Channel, NotificationSink] | None = None,
) -> NotificationRouter:
    return NotificationRouter(
        routing_table(cfg),
        operator_targets=operator_targets(cfg),
        sinks=sinks if sinks is not None else build_sinks(cfg),
    )
