"""Slack chat sink.

Chat messages cannot carry a file and a multi-line body in one call, so
attachments are sent as a text post followed by a separate file upload.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from ..core.models import Channel, DeliveryResult, NotificationTarget, OutcomeStatus

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... (truncated)"
_ANY_STATUS = frozenset(OutcomeStatus)


class SlackAPIError(RuntimeError):
    pass


def _target(recipients: Sequence[str]) -> NotificationTarget:
    return NotificationTarget(
        channel=Channel.CHAT,
        address=", ".join(recipients),
        severity_filter=_ANY_STATUS,
    )


def shape_text(subject: str, body: str, *, max_chars: int) -> str:
    """Render a chat message, truncating the body to fit ``max_chars``."""
    text = f"*{subject}*\n```\n{body.rstrip()}\n```"
    if len(text) <= max_chars:
        return text
    room = max_chars - len(f"*{subject}*\n```\n\n```") - len(TRUNCATION_MARKER)
    clipped = body[: max(0, room)].rstrip()
    return f"*{subject}*\n```\n{clipped}{TRUNCATION_MARKER}\n```"


@dataclass(frozen=True, slots=True)
class SlackSink:
    token: str
    api_base: str = "https://slack.com/api"
    max_message_chars: int = 3500
    timeout: float = 30.0
    transport: httpx.AsyncBaseTransport | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base.rstrip("/") + "/",
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self.timeout,
            transport=self.transport,
        )

    @staticmethod
    def _check(resp: httpx.Response, method: str) -> dict[str, Any]:
        resp.raise_for_status()
        payload = resp.json()
        if not payload.get("ok"):
            raise SlackAPIError(f"{method}: {payload.get('error', 'unknown error')}")
        return payload

    async def _post_message(self, client: httpx.AsyncClient, channel: str, text: str) -> str:
        """Post ``text`` and return the ID of the conversation it landed in.

        Recipients may be names (``#uploads``, ``@user``); file uploads only
        accept conversation IDs, which the post response carries.
        """
        resp = await client.post("chat.postMessage", json={"channel": channel, "text": text})
        payload = self._check(resp, "chat.postMessage")
        return payload.get("channel") or channel

    async def _upload_file(
        self,
        client: httpx.AsyncClient,
        channel_id: str,
        title: str,
        path: Path,
    ) -> None:
        data = path.read_bytes()
        resp = await client.post(
            "files.getUploadURLExternal",
            data={"filename": path.name, "length": str(len(data))},
        )
        ticket = self._check(resp, "files.getUploadURLExternal")

        up = await client.post(ticket["upload_url"], files={"file": (path.name, data)})
        up.raise_for_status()

        resp = await client.post(
            "files.completeUploadExternal",
            json={"files": [{"id": ticket["file_id"], "title": title}], "channel_id": channel_id},
        )
        self._check(resp, "files.completeUploadExternal")

    async def _deliver(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachment: Path | None,
    ) -> DeliveryResult:
        target = _target(recipients)
        text = shape_text(subject, body, max_chars=self.max_message_chars)
        failures: list[str] = []

        async with self._client() as client:
            for channel in recipients:
                try:
                    channel_id = await self._post_message(client, channel, text)
                    if attachment is not None:
                        await self._upload_file(client, channel_id, subject, attachment)
                except (httpx.HTTPError, SlackAPIError, OSError) as exc:
                    logger.warning("Slack delivery to %s failed: %s", channel, exc)
                    failures.append(f"{channel}: {exc}")

        if failures:
            return DeliveryResult(target=target, ok=False, detail="; ".join(failures))
        return DeliveryResult(target=target, ok=True)

    async def send_digest(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
    ) -> DeliveryResult:
        return await self._deliver(recipients, subject, body, None)

    async def send_with_attachment(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachment: Path,
    ) -> DeliveryResult:
        return await self._deliver(recipients, subject, body, attachment)
