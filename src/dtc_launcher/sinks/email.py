"""SMTP notification sink."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import smtplib
from collections.abc import Sequence
from dataclasses import dataclass
from email.message import EmailMessage
from pathlib import Path

from ..core.models import Channel, DeliveryResult, NotificationTarget, OutcomeStatus

logger = logging.getLogger(__name__)

_ANY_STATUS = frozenset(OutcomeStatus)


def _target(recipients: Sequence[str]) -> NotificationTarget:
    return NotificationTarget(
        channel=Channel.EMAIL,
        address=", ".join(recipients),
        severity_filter=_ANY_STATUS,
    )


@dataclass(frozen=True, slots=True)
class EmailSink:
    """Send reports as plain-text mail, optionally with one attachment."""

    host: str = "localhost"
    port: int = 25
    sender: str = "data.client@localhost"
    starttls: bool = False
    username: str | None = None
    password: str | None = None
    timeout: float = 30.0

    def build_message(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachment: Path | None = None,
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.set_content(body)

        if attachment is not None:
            ctype, encoding = mimetypes.guess_type(attachment.name)
            if ctype is None or encoding is not None:
                ctype = "application/octet-stream"
            maintype, subtype = ctype.split("/", 1)
            msg.add_attachment(
                attachment.read_bytes(),
                maintype=maintype,
                subtype=subtype,
                filename=attachment.name,
            )
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(msg)

    async def _deliver(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachment: Path | None,
    ) -> DeliveryResult:
        target = _target(recipients)
        try:
            msg = self.build_message(recipients, subject, body, attachment)
            await asyncio.to_thread(self._send, msg)
        except (OSError, smtplib.SMTPException) as exc:
            logger.warning("SMTP delivery to %s failed: %s", target.address, exc)
            return DeliveryResult(target=target, ok=False, detail=str(exc))
        logger.debug("Mailed %r to %s", subject, target.address)
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
