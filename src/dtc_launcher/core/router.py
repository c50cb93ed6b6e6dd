"""Notification routing.

Fans a composed report out to every configured target whose severity filter
accepts the outcome status. Deliveries are independent: one failing target
never cancels the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol

from .composer import compose_fault
from .faults import Fault
from .models import Channel, DeliveryResult, NotificationTarget, OutcomeStatus, Report

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Uniform delivery contract shared by every channel."""

    async def send_digest(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
    ) -> DeliveryResult: ...

    async def send_with_attachment(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachment: Path,
    ) -> DeliveryResult: ...


class RouteClass(str, Enum):
    """Recipient groups and the outcome statuses each one receives."""

    DAILY = "daily"
    UPLOAD = "upload"
    ERROR = "error"

    @property
    def statuses(self) -> frozenset[OutcomeStatus]:
        return _ROUTE_STATUSES[self]


_ROUTE_STATUSES: dict[RouteClass, frozenset[OutcomeStatus]] = {
    RouteClass.DAILY: frozenset({OutcomeStatus.CLEAN, OutcomeStatus.DATA_FOUND}),
    RouteClass.UPLOAD: frozenset({OutcomeStatus.DATA_FOUND}),
    RouteClass.ERROR: frozenset({OutcomeStatus.ERROR, OutcomeStatus.INDETERMINATE}),
}

RoutingTable = Mapping[Channel, Mapping[RouteClass, Sequence[NotificationTarget]]]


def all_failed(results: Sequence[DeliveryResult]) -> bool:
    """True when there was at least one delivery and none succeeded."""
    return bool(results) and not any(r.ok for r in results)


async def _dispatch(
    report: Report,
    target: NotificationTarget,
    sinks: Mapping[Channel, NotificationSink],
) -> DeliveryResult:
    sink = sinks.get(target.channel)
    if sink is None:
        return DeliveryResult(target=target, ok=False, detail=f"no sink for {target.channel.value}")

    try:
        if report.attachment is not None:
            result = await sink.send_with_attachment(
                [target.address], report.subject, report.body, report.attachment
            )
        else:
            result = await sink.send_digest([target.address], report.subject, report.body)
    except Exception as exc:
        logger.warning("Delivery to %s via %s raised: %s", target.address, target.channel.value, exc)
        return DeliveryResult(target=target, ok=False, detail=str(exc))

    # Sinks address a list; results are reported per target.
    return DeliveryResult(target=target, ok=result.ok, detail=result.detail)


async def route(
    report: Report,
    status: OutcomeStatus | None,
    targets: Iterable[NotificationTarget],
    sinks: Mapping[Channel, NotificationSink],
) -> list[DeliveryResult]:
    """Deliver ``report`` to each target accepting ``status``.

    ``status=None`` delivers to every target (operator escalations).
    Results are returned in target order.
    """
    selected = [t for t in targets if status is None or t.accepts(status)]
    if not selected:
        return []

    results = await asyncio.gather(*(_dispatch(report, t, sinks) for t in selected))
    for r in results:
        if not r.ok:
            logger.warning(
                "Delivery failed: %s -> %s (%s)", r.target.channel.value, r.target.address, r.detail
            )
    return list(results)


class NotificationRouter:
    """Routing table plus the sinks and operator channel it delivers through."""

    def __init__(
        self,
        table: RoutingTable,
        *,
        operator_targets: Sequence[NotificationTarget] = (),
        sinks: Mapping[Channel, NotificationSink],
    ) -> None:
        self.table = table
        self.operator_targets = list(operator_targets)
        self.sinks = sinks

    def targets(self) -> list[NotificationTarget]:
        """Flatten the routing table.

        An address listed under several route classes becomes one target
        whose filter is the union, so it gets one report per run.
        """
        merged: dict[tuple[Channel, str], frozenset[OutcomeStatus]] = {}
        for channel, by_class in self.table.items():
            for targets in by_class.values():
                for t in targets:
                    key = (channel, t.address)
                    merged[key] = merged.get(key, frozenset()) | t.severity_filter
        return [
            NotificationTarget(channel=channel, address=address, severity_filter=statuses)
            for (channel, address), statuses in merged.items()
        ]

    async def route(self, report: Report, status: OutcomeStatus) -> list[DeliveryResult]:
        return await route(report, status, self.targets(), self.sinks)

    async def escalate(self, fault: Fault, *, when: datetime) -> list[DeliveryResult]:
        """Send a fault to the operator channel. Never raises."""
        logger.error("%s", fault.describe())
        if not self.operator_targets:
            logger.error("No operator targets configured; fault only logged")
            return []
        report = compose_fault(fault, when=when)
        return await route(report, None, self.operator_targets, self.sinks)
