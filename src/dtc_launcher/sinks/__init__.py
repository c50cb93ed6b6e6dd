"""Notification sinks.

Each sink implements ``send_digest`` and ``send_with_attachment`` and
reports failures through the returned DeliveryResult.
"""

from __future__ import annotations

from .email import EmailSink
from .slack import SlackAPIError, SlackSink, shape_text

__all__ = [
    "EmailSink",
    "SlackAPIError",
    "SlackSink",
    "shape_text",
]
