"""Run one prompt against a provider and return the answer."""
from __future__ import annotations

import asyncio
import math
import os
import time
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from loguru import logger
from pydantic import BaseModel, Field

from webchat_driver.config import CHATGPT_URL, GEMINI_URL
from webchat_driver.errors import ExecutionModeUnavailable, MissingAttachment, Timeout, UnsupportedControl
from webchat_driver.providers.chatgpt import chatgpt_adapter
from webchat_driver.providers.gemini_deep_think import gemini_deep_think_adapter
from webchat_driver.schemas.request import Attachment, BrowserConfig, BrowserRunRequest, BrowserRunResult
from webchat_driver.services.cookie_service import (
    COOKIE_SPECS,
    CookieMap,
    cookie_map_to_params,
    load_inline_cookies,
    require_cookies,
    resolve_cookies,
)
from webchat_driver.services.diagnostics import log_dom_failure
from webchat_driver.services.execution_mode import ExecutionModeSelection, ModelVariant, resolve_model, select_execution_mode
from webchat_driver.services.provider_flow import ProviderDomAdapter, ProviderDomFlowContext, ProviderDomFlowResult, run_provider_dom_flow
from webchat_driver.services.session_manager import BrowserSession, SessionManager, browser_session
from webchat_driver.utils.logger import BrowserLogger, make_log

ADAPTERS: Dict[str, ProviderDomAdapter] = {
    "gemini": gemini_deep_think_adapter,
    "chatgpt": chatgpt_adapter,
}
PROVIDER_URLS: Dict[str, str] = {"gemini": GEMINI_URL, "chatgpt": CHATGPT_URL}

DOM_DEFAULT_TIMEOUT = 20 * 60.0
GEMINI_SETTLE_DELAY = 3.0
HTTP_DEFAULT_TIMEOUT = 120.0
HTTP_YOUTUBE_TIMEOUT = 240.0
HTTP_IMAGE_TIMEOUT = 300.0
HTTP_MAX_TIMEOUT = 600.0
MIN_TIMEOUT = 1.0


class HttpExecutionRequest(BaseModel):
    provider: str
    model: str
    prompt: str
    files: List[str] = Field(default_factory=list)
    cookies: Dict[str, str] = Field(default_factory=dict)
    timeout_s: float
    show_thoughts: bool = False
    generate_image: Optional[str] = None
    edit_image: Optional[str] = None
    output_path: Optional[str] = None


class HttpExecutionResponse(BaseModel):
    text: str = ""
    thoughts: Optional[str] = None
    image_count: int = 0
    image_path: Optional[str] = None


class HttpExecutionClient(Protocol):
    """Cookie-authenticated client for the provider's web endpoints."""

    async def execute(self, request: HttpExecutionRequest) -> HttpExecutionResponse: ...


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def build_markdown(text: str, side_channel: Optional[str] = None) -> str:
    if side_channel:
        return f"## Thinking\n\n{side_channel}\n\n## Response\n\n{text}"
    return text


def resolve_invocation_path(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip():
        return None
    return str(Path(value.strip()).expanduser().resolve())


def decorate_prompt(prompt: str, config: BrowserConfig, generate_image: Optional[str], edit_image: Optional[str]) -> str:
    if config.aspect_ratio and (generate_image or edit_image):
        prompt = f"{prompt} (aspect ratio: {config.aspect_ratio})"
    if config.youtube:
        prompt = f"{prompt}\n\nYouTube video: {config.youtube}"
    if generate_image and not edit_image:
        prompt = f"Generate an image: {prompt}"
    return prompt


def resolve_http_timeout(config: BrowserConfig) -> float:
    if config.youtube:
        default = HTTP_YOUTUBE_TIMEOUT
    elif config.generate_image or config.edit_image:
        default = HTTP_IMAGE_TIMEOUT
    else:
        default = HTTP_DEFAULT_TIMEOUT
    configured = max(MIN_TIMEOUT, config.timeout_s) if config.timeout_s else None
    return min(configured or default, HTTP_MAX_TIMEOUT)


def _dom_cookies(config: BrowserConfig, log: Optional[BrowserLogger]) -> CookieMap:
    # The controlled profile keeps its own session; only explicit inline cookies go on top.
    if config.manual_login:
        return {}
    return load_inline_cookies(config, COOKIE_SPECS[config.provider], log)


def check_attachments(attachments: List[Attachment]) -> None:
    for attachment in attachments:
        path = Path(attachment.path).expanduser()
        if not path.is_file() or not os.access(path, os.R_OK):
            raise MissingAttachment(attachment.path)


async def _drive_session(
    session: BrowserSession,
    adapter: ProviderDomAdapter,
    ctx: ProviderDomFlowContext,
    url: str,
    cookies: CookieMap,
    config: BrowserConfig,
) -> ProviderDomFlowResult:
    client = session.client
    if cookies:
        await client.set_cookies(cookie_map_to_params(cookies, COOKIE_SPECS[config.provider]))
        ctx.emit(f"Applied {len(cookies)} {config.provider} cookie(s) to the browser context.")
    await client.navigate(url)
    if config.provider == "gemini":
        await ctx.delay(GEMINI_SETTLE_DELAY)
    try:
        return await run_provider_dom_flow(adapter, ctx)
    except (UnsupportedControl, Timeout):
        await log_dom_failure(client, ctx.log, f"{adapter.provider_name}-flow")
        raise


async def run_dom_path(
    request: BrowserRunRequest,
    prompt: str,
    model: ModelVariant,
    log: Optional[BrowserLogger] = None,
    *,
    manager: Optional[SessionManager] = None,
) -> ProviderDomFlowResult:
    config = request.config
    adapter = ADAPTERS[config.provider]
    url = config.url or PROVIDER_URLS[config.provider]
    timeout = config.timeout_s or DOM_DEFAULT_TIMEOUT
    cookies = _dom_cookies(config, log)

    async with browser_session(
        config,
        f"{adapter.provider_name} run",
        keep_browser_default=config.provider == "gemini",
        log=log,
        manager=manager,
    ) as session:
        ctx = ProviderDomFlowContext(
            prompt=prompt,
            evaluate=session.client.evaluate,
            log=log,
            client=session.client,
            attachments=list(request.attachments) if model.dom_uploads else [],
            state={
                "input_timeout": config.input_timeout_s,
                "attachment_timeout": config.attachment_timeout_s,
                "response_timeout": timeout,
            },
        )
        try:
            return await asyncio.wait_for(_drive_session(session, adapter, ctx, url, cookies, config), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise Timeout(f"{adapter.provider_name} run exceeded the overall timeout of {timeout:.0f}s.") from exc


async def run_http_path(
    request: BrowserRunRequest,
    prompt: str,
    model: ModelVariant,
    selection: ExecutionModeSelection,
    http_client: Optional[HttpExecutionClient],
    log: Optional[BrowserLogger] = None,
    *,
    generate_image: Optional[str] = None,
    edit_image: Optional[str] = None,
) -> Tuple[str, str]:
    if http_client is None:
        raise ExecutionModeUnavailable(selection.reasons)

    config = request.config
    spec = COOKIE_SPECS[config.provider]
    resolved = await resolve_cookies(config, spec, log, prefer_manual=config.manual_login)
    require_cookies(resolved.cookies, spec)

    timeout = resolve_http_timeout(config)
    output_path = resolve_invocation_path(config.output_path)
    http_request = HttpExecutionRequest(
        provider=config.provider,
        model=model.id,
        prompt=prompt,
        files=[str(Path(a.path).expanduser()) for a in request.attachments],
        cookies=resolved.cookies,
        timeout_s=timeout,
        show_thoughts=config.show_thoughts,
        generate_image=generate_image,
        edit_image=edit_image,
        output_path=output_path,
    )
    try:
        response = await asyncio.wait_for(http_client.execute(http_request), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise Timeout(f"{config.provider} HTTP request exceeded {timeout:.0f}s.") from exc

    text = response.text or ""
    markdown = build_markdown(text, response.thoughts if config.show_thoughts else None)
    if response.image_count > 0:
        saved_to = response.image_path or generate_image or output_path or "generated.png"
        markdown += f"\n\n*Generated {response.image_count} image(s). Saved to: {saved_to}*"
    return text, markdown


async def run_browser_request(
    request: BrowserRunRequest,
    log: Optional[BrowserLogger] = None,
    http_client: Optional[HttpExecutionClient] = None,
    *,
    manager: Optional[SessionManager] = None,
) -> BrowserRunResult:
    """
    Execute ``request`` through the browser or the HTTP path.

    The execution mode is decided once, before any browser is touched.
    """
    started = time.monotonic()
    emit = make_log(log)
    config = request.config

    check_attachments(request.attachments)
    model = resolve_model(config.desired_model, config.provider, log)
    generate_image = resolve_invocation_path(config.generate_image)
    edit_image = resolve_invocation_path(config.edit_image)
    selection = select_execution_mode(model, request.attachments, generate_image, edit_image)
    logger.debug("Execution mode for {}: {} {}", model.id, selection.mode, selection.reasons)

    prompt = request.prompt
    if config.provider == "gemini":
        prompt = decorate_prompt(prompt, config, generate_image, edit_image)

    if selection.mode == "dom":
        emit(f"Using browser DOM automation for {model.id}.")
        flow = await run_dom_path(request, prompt, model, log, manager=manager)
        text = flow.text
        markdown = build_markdown(text, flow.side_channel if config.show_thoughts else None)
        emit(f"Response received ({len(text)} chars).")
    else:
        if model.dom_capable:
            emit(f"DOM path skipped ({', '.join(selection.reasons)} requested); using HTTP path.")
        text, markdown = await run_http_path(
            request,
            prompt,
            model,
            selection,
            http_client,
            log,
            generate_image=generate_image,
            edit_image=edit_image,
        )

    took_ms = int((time.monotonic() - started) * 1000)
    emit(f"Completed in {took_ms}ms")
    return BrowserRunResult(
        answer_text=text,
        answer_markdown=markdown,
        took_ms=took_ms,
        answer_tokens=estimate_tokens(text),
        answer_chars=len(text),
    )


__all__ = [
    "HttpExecutionClient",
    "HttpExecutionRequest",
    "HttpExecutionResponse",
    "build_markdown",
    "check_attachments",
    "decorate_prompt",
    "estimate_tokens",
    "resolve_http_timeout",
    "run_browser_request",
]
