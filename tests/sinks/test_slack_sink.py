from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from dtc_launcher.core.models import Channel
from dtc_launcher.sinks import SlackSink
from dtc_launcher.sinks.slack import TRUNCATION_MARKER, shape_text

UPLOAD_URL = "https://files.slack.test/upload/abc"
CHANNEL_IDS = {"#uploads": "C0UPLOADS", "@thom": "D0THOM"}


def _handler(requests: list[httpx.Request], *, post_error: str | None = None):
    def handle(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        path = request.url.path
        if path.endswith("chat.postMessage"):
            if post_error:
                return httpx.Response(200, json={"ok": False, "error": post_error})
            channel = json.loads(request.content)["channel"]
            return httpx.Response(200, json={"ok": True, "channel": CHANNEL_IDS.get(channel, channel)})
        if path.endswith("files.getUploadURLExternal"):
            return httpx.Response(200, json={"ok": True, "upload_url": UPLOAD_URL, "file_id": "F1"})
        if str(request.url) == UPLOAD_URL:
            return httpx.Response(200, text="OK")
        if path.endswith("files.completeUploadExternal"):
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)

    return handle


def test_shape_text_fits_short_body() -> None:
    text = shape_text("subj", "hello\n", max_chars=200)
    assert text == "*subj*\n```\nhello\n```"


def test_shape_text_truncates_long_body() -> None:
    text = shape_text("subj", "x" * 5000, max_chars=300)
    assert len(text) <= 300
    assert TRUNCATION_MARKER in text
    assert text.startswith("*subj*")


@pytest.mark.asyncio
async def test_send_digest_posts_each_channel() -> None:
    requests: list[httpx.Request] = []
    sink = SlackSink(token="xoxb-t", transport=httpx.MockTransport(_handler(requests)))

    result = await sink.send_digest(["#daily", "#ops"], "[CLEAN] s Log 2024-01-01", "Summary")

    assert result.ok
    assert result.target.channel is Channel.CHAT
    assert [json.loads(r.content)["channel"] for r in requests] == ["#daily", "#ops"]
    assert requests[0].headers["Authorization"] == "Bearer xoxb-t"


@pytest.mark.asyncio
async def test_send_with_attachment_uploads_file(tmp_path: Path) -> None:
    log = tmp_path / "s_verbose.log"
    log.write_text("2024-01-01 10:00:00 ERROR a - boom\n", encoding="utf-8")
    requests: list[httpx.Request] = []
    sink = SlackSink(token="t", transport=httpx.MockTransport(_handler(requests)))

    result = await sink.send_with_attachment(["C123"], "[ERROR] s Log 2024-01-01", "body", log)

    assert result.ok
    steps = [r.url.path.rsplit("/", 1)[-1] for r in requests]
    assert steps == ["chat.postMessage", "files.getUploadURLExternal", "abc", "files.completeUploadExternal"]
    complete = json.loads(requests[-1].content)
    assert complete["channel_id"] == "C123"
    assert complete["files"][0]["id"] == "F1"


@pytest.mark.asyncio
async def test_api_error_is_reported_not_raised() -> None:
    requests: list[httpx.Request] = []
    sink = SlackSink(token="t", transport=httpx.MockTransport(_handler(requests, post_error="channel_not_found")))

    result = await sink.send_digest(["#nope"], "s", "b")

    assert not result.ok
    assert "channel_not_found" in (result.detail or "")


@pytest.mark.asyncio
async def test_upload_targets_conversation_id_for_named_recipients(tmp_path: Path) -> None:
    log = tmp_path / "s_verbose.log"
    log.write_text("2024-01-01 10:00:00 ERROR a - boom\n", encoding="utf-8")
    requests: list[httpx.Request] = []
    sink = SlackSink(token="t", transport=httpx.MockTransport(_handler(requests)))

    result = await sink.send_with_attachment(["#uploads", "@thom"], "[ERROR] s Log 2024-01-01", "body", log)

    assert result.ok
    completes = [r for r in requests if r.url.path.endswith("files.completeUploadExternal")]
    assert [json.loads(r.content)["channel_id"] for r in completes] == ["C0UPLOADS", "D0THOM"]
