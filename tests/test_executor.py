"""Tests for the request executor."""

import asyncio
from unittest.mock import AsyncMock

import browser_cookie3
import pytest

from webchat_driver.errors import ExecutionModeUnavailable, MissingAttachment, MissingAuthCookies, Timeout
from webchat_driver.schemas.cookies import CookieParam
from webchat_driver.schemas.request import Attachment, BrowserConfig, BrowserRunRequest
from webchat_driver.services import executor
from webchat_driver.services.executor import (
    HttpExecutionResponse,
    build_markdown,
    check_attachments,
    decorate_prompt,
    estimate_tokens,
    resolve_http_timeout,
    run_browser_request,
)
from webchat_driver.services.provider_flow import ProviderDomFlowResult

GEMINI_AUTH = [
    CookieParam(name="__Secure-1PSID", value="psid", domain=".google.com"),
    CookieParam(name="__Secure-1PSIDTS", value="psidts", domain=".google.com"),
]


@pytest.fixture(autouse=True)
def no_settle_delay(monkeypatch):
    monkeypatch.setattr(executor, "GEMINI_SETTLE_DELAY", 0)


def deep_think_request(browser_env, prompt="ping", **overrides):
    overrides.setdefault("cookie_sync", False)
    config = browser_env.config(provider="gemini", desired_model="gemini-3-deep-think", **overrides)
    return BrowserRunRequest(prompt=prompt, config=config)


class TestHelpers:
    def test_estimate_tokens_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("pong") == 1
        assert estimate_tokens("hello") == 2

    def test_markdown_with_and_without_thoughts(self):
        assert build_markdown("answer") == "answer"
        assert build_markdown("answer", "reasoning") == "## Thinking\n\nreasoning\n\n## Response\n\nanswer"

    def test_prompt_decoration(self):
        config = BrowserConfig(provider="gemini", aspect_ratio="16:9", youtube="https://youtu.be/x")

        decorated = decorate_prompt("a cat", config, "/tmp/cat.png", None)

        assert decorated == "Generate an image: a cat (aspect ratio: 16:9)\n\nYouTube video: https://youtu.be/x"
        assert decorate_prompt("edit it", BrowserConfig(), None, "/tmp/in.png") == "edit it"

    @pytest.mark.parametrize(
        "kwargs, expected",
        [
            ({}, 120.0),
            ({"youtube": "https://youtu.be/x"}, 240.0),
            ({"generate_image": "out.png"}, 300.0),
            ({"timeout_s": 0.2}, 1.0),
            ({"timeout_s": 5000}, 600.0),
        ],
    )
    def test_http_timeouts(self, kwargs, expected):
        assert resolve_http_timeout(BrowserConfig(**kwargs)) == expected


class TestDomPath:
    @pytest.mark.asyncio
    async def test_success_builds_result(self, browser_env, monkeypatch):
        flow = AsyncMock(return_value=ProviderDomFlowResult(text="pong", side_channel="thinking hard"))
        monkeypatch.setattr(executor, "run_provider_dom_flow", flow)
        request = deep_think_request(browser_env, show_thoughts=True, inline_cookies=GEMINI_AUTH)

        result = await run_browser_request(request, manager=browser_env.manager)

        client = browser_env.clients[0]
        assert result.answer_text == "pong"
        assert result.answer_markdown == "## Thinking\n\nthinking hard\n\n## Response\n\npong"
        assert result.answer_tokens == 1
        assert result.answer_chars == 4
        assert client.navigated == ["https://gemini.google.com/app"]
        assert {c["name"] for c in client.cookies_set[0]} == {"__Secure-1PSID", "__Secure-1PSIDTS"}
        ctx = flow.await_args.args[1]
        assert ctx.prompt == "ping"
        assert ctx.attachments == []

    @pytest.mark.asyncio
    async def test_gemini_keeps_chrome_by_default(self, browser_env, monkeypatch):
        monkeypatch.setattr(executor, "run_provider_dom_flow", AsyncMock(return_value=ProviderDomFlowResult(text="ok")))

        await run_browser_request(deep_think_request(browser_env), manager=browser_env.manager)

        client = browser_env.clients[0]
        assert client.closed == 1
        assert client.targets_closed == 0
        assert browser_env.launcher.launched[0].terminated == 0

    @pytest.mark.asyncio
    async def test_failure_tears_down_session(self, browser_env, monkeypatch):
        monkeypatch.setattr(executor, "run_provider_dom_flow", AsyncMock(side_effect=RuntimeError("page crashed")))

        with pytest.raises(RuntimeError, match="page crashed"):
            await run_browser_request(deep_think_request(browser_env, keep_browser=False), manager=browser_env.manager)

        client = browser_env.clients[0]
        assert client.closed == 1
        assert client.targets_closed == 1
        assert browser_env.launcher.launched[0].terminated == 1

    @pytest.mark.asyncio
    async def test_overall_deadline_raises_timeout(self, browser_env, monkeypatch):
        async def slow_flow(adapter, ctx):
            await asyncio.sleep(5)

        monkeypatch.setattr(executor, "run_provider_dom_flow", slow_flow)
        request = deep_think_request(browser_env, timeout_s=0.05, keep_browser=False)

        with pytest.raises(Timeout, match="overall timeout"):
            await run_browser_request(request, manager=browser_env.manager)

        assert browser_env.launcher.launched[0].terminated == 1

    @pytest.mark.asyncio
    async def test_manual_login_skips_cookie_injection(self, browser_env, monkeypatch):
        monkeypatch.setattr(executor, "run_provider_dom_flow", AsyncMock(return_value=ProviderDomFlowResult(text="ok")))
        request = deep_think_request(browser_env, manual_login=True, inline_cookies=GEMINI_AUTH)

        await run_browser_request(request, manager=browser_env.manager)

        assert browser_env.clients[0].cookies_set == []

    @pytest.mark.asyncio
    async def test_default_run_leaves_local_cookie_store_alone(self, browser_env, monkeypatch):
        reads = []

        def chrome(*args, **kwargs):
            reads.append((args, kwargs))
            return []

        monkeypatch.setattr(browser_cookie3, "chrome", chrome)
        monkeypatch.setattr(executor, "run_provider_dom_flow", AsyncMock(return_value=ProviderDomFlowResult(text="ok")))
        config = browser_env.config(provider="chatgpt")

        await run_browser_request(BrowserRunRequest(prompt="ping", config=config), manager=browser_env.manager)

        assert config.cookie_sync is True
        assert reads == []
        assert browser_env.clients[0].cookies_set == []


class TestAttachmentCheck:
    @pytest.mark.asyncio
    async def test_missing_file_fails_before_launch(self, browser_env, tmp_path):
        config = browser_env.config(provider="chatgpt", cookie_sync=False)
        missing = str(tmp_path / "nope.pdf")
        request = BrowserRunRequest(prompt="read this", attachments=[Attachment(path=missing)], config=config)

        with pytest.raises(MissingAttachment) as excinfo:
            await run_browser_request(request, manager=browser_env.manager)

        assert excinfo.value.path == missing
        assert excinfo.value.hint == MissingAttachment.default_hint
        assert browser_env.launcher.launches == []

    def test_directory_is_rejected(self, tmp_path):
        with pytest.raises(MissingAttachment):
            check_attachments([Attachment(path=str(tmp_path))])

    def test_existing_file_passes(self, tmp_path):
        target = tmp_path / "notes.md"
        target.write_text("notes")

        check_attachments([Attachment(path=str(target))])


class TestHttpPath:
    @pytest.mark.asyncio
    async def test_without_client_fails_before_touching_browser(self, browser_env):
        config = browser_env.config(provider="gemini", desired_model="gemini-3-pro", cookie_sync=False)

        with pytest.raises(ExecutionModeUnavailable) as excinfo:
            await run_browser_request(BrowserRunRequest(prompt="hi", config=config), manager=browser_env.manager)

        assert excinfo.value.reasons == ["model"]
        assert browser_env.launcher.launches == []

    @pytest.mark.asyncio
    async def test_attachments_route_deep_think_to_http(self, browser_env, tmp_path):
        attachment = tmp_path / "notes.md"
        attachment.write_text("notes")
        http_client = AsyncMock()
        http_client.execute.return_value = HttpExecutionResponse(text="summary")
        config = browser_env.config(
            provider="gemini",
            desired_model="gemini-3-deep-think",
            inline_cookies=GEMINI_AUTH,
            youtube="https://youtu.be/x",
        )
        request = BrowserRunRequest(prompt="summarize", attachments=[Attachment(path=str(attachment))], config=config)

        result = await run_browser_request(request, http_client=http_client, manager=browser_env.manager)

        sent = http_client.execute.await_args.args[0]
        assert result.answer_text == "summary"
        assert sent.model == "gemini-3-pro-deep-think"
        assert sent.prompt == "summarize\n\nYouTube video: https://youtu.be/x"
        assert sent.timeout_s == 240.0
        assert sent.files == [str(attachment)]
        assert sent.cookies == {"__Secure-1PSID": "psid", "__Secure-1PSIDTS": "psidts"}
        assert browser_env.launcher.launches == []

    @pytest.mark.asyncio
    async def test_missing_cookies_rejected(self, browser_env):
        http_client = AsyncMock()
        config = browser_env.config(provider="gemini", cookie_sync=False)

        with pytest.raises(MissingAuthCookies):
            await run_browser_request(BrowserRunRequest(prompt="hi", config=config), http_client=http_client)

        http_client.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generated_image_note(self, browser_env, tmp_path):
        http_client = AsyncMock()
        http_client.execute.return_value = HttpExecutionResponse(text="done", image_count=1)
        output = tmp_path / "cat.png"
        config = browser_env.config(
            provider="gemini", inline_cookies=GEMINI_AUTH, generate_image=str(output)
        )

        result = await run_browser_request(BrowserRunRequest(prompt="a cat", config=config), http_client=http_client)

        sent = http_client.execute.await_args.args[0]
        assert sent.prompt == "Generate an image: a cat"
        assert sent.generate_image == str(output.resolve())
        assert result.answer_markdown == f"done\n\n*Generated 1 image(s). Saved to: {output.resolve()}*"
