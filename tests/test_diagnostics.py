"""Tests for failure snapshots and on-disk helpers."""

import base64

import pytest

from webchat_driver.errors import MissingAuthCookies, ProtocolError, Timeout, format_error
from webchat_driver.services.diagnostics import log_dom_failure
from webchat_driver.utils.cookie_storage import load_cookies, persist_cookies
from webchat_driver.utils.screenshot_storage import save_screenshot_from_base64

PNG = base64.b64encode(b"\x89PNG\r\n\x1a\nfake").decode("ascii")


class SnapshotClient:
    def __init__(self, summary=None, screenshot=None, fail=False):
        self.summary = summary
        self.screenshot = screenshot
        self.fail = fail

    async def evaluate(self, expression):
        if self.fail:
            raise ProtocolError("target closed")
        return self.summary

    async def capture_screenshot(self):
        if self.fail:
            raise ProtocolError("target closed")
        return self.screenshot


class TestLogDomFailure:
    @pytest.mark.asyncio
    async def test_captures_page_and_screenshot(self, tmp_path):
        client = SnapshotClient({"url": "https://gemini.google.com/app", "title": "Gemini", "body": "Hi"}, PNG)
        lines = []

        snapshot = await log_dom_failure(client, lines.append, "gemini-web-flow", target_dir=tmp_path)

        assert snapshot["url"] == "https://gemini.google.com/app"
        assert snapshot["screenshot"].endswith("_gemini-web-flow.png")
        assert len(list(tmp_path.glob("*.png"))) == 1
        assert lines[0].startswith("DOM failure [gemini-web-flow] url=https://gemini.google.com/app")

    @pytest.mark.asyncio
    async def test_never_raises(self, tmp_path):
        snapshot = await log_dom_failure(SnapshotClient(fail=True), None, "broken", target_dir=tmp_path)

        assert snapshot == {"label": "broken"}


class TestStorage:
    def test_screenshot_with_data_url_prefix(self, tmp_path):
        saved = save_screenshot_from_base64(f"data:image/png;base64,{PNG}", "Send Button!", tmp_path)

        assert saved is not None
        assert saved.endswith("_send-button.png")

    def test_invalid_screenshot_returns_none(self, tmp_path):
        assert save_screenshot_from_base64("@@not-base64@@", "x", tmp_path) is None

    def test_cookie_file_round_trip_accepts_bare_list(self, tmp_path):
        target = tmp_path / "cookies.json"
        target.write_text('[{"name": "oai-did", "value": "d", "domain": "chatgpt.com", "httpOnly": true}]')

        cookies = load_cookies(target)

        assert cookies[0].http_only is True
        assert cookies[0].to_cdp() == {
            "name": "oai-did",
            "value": "d",
            "domain": "chatgpt.com",
            "path": "/",
            "httpOnly": True,
        }

    def test_persist_reports_path(self, tmp_path):
        saved = persist_cookies([{"name": "a", "value": "b"}], tmp_path / "nested" / "c.json")
        assert saved == str((tmp_path / "nested" / "c.json").resolve())

    def test_missing_file_is_empty(self, tmp_path):
        assert load_cookies(tmp_path / "absent.json") == []


class TestErrors:
    def test_format_error_appends_hint(self):
        rendered = format_error(MissingAuthCookies("gemini", ["__Secure-1PSID"]))

        assert rendered.startswith("gemini requires auth cookies (missing __Secure-1PSID).")
        assert "\nHint: " in rendered

    def test_timeout_mentions_last_state(self):
        assert "last_state={'status': 'generating'}" in str(Timeout("slow", last_state={"status": "generating"}))
        assert format_error(ValueError("plain")) == "plain"
