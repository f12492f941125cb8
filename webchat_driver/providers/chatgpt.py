"""ChatGPT web UI adapter."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from webchat_driver.clients.dom_script import (
    CountMatches,
    InsertText,
    QueryReady,
    ResponseStatus,
    Selectors,
    SignInHints,
    SubmitOrEnter,
)
from webchat_driver.errors import RequiresSignIn, Timeout, UnsupportedControl
from webchat_driver.services.attachments import (
    ComposerSelectors,
    upload_attachment,
    wait_for_attachment_completion,
    wait_for_user_turn_attachments,
)
from webchat_driver.services.provider_flow import ProviderDomAdapter, ProviderDomFlowContext, ProviderDomResponse
from webchat_driver.utils.polling import wait_until

PROVIDER_NAME = "chatgpt-web"

DEFAULT_INPUT_TIMEOUT = 30.0
DEFAULT_ATTACHMENT_TIMEOUT = 25.0
DEFAULT_RESPONSE_TIMEOUT = 20 * 60.0
INPUT_POLL_INTERVAL = 0.2
COMMIT_TIMEOUT = 15.0
COMMIT_POLL_INTERVAL = 0.25
RESPONSE_POLL_INTERVAL = 0.5
RESPONSE_STABLE_FOR = 1.0
PROGRESS_LOG_INTERVAL = 10.0


@dataclass(frozen=True)
class ChatgptSelectors:
    input: Selectors = (
        "#prompt-textarea",
        'textarea[name="prompt-textarea"]',
        'textarea[data-id="prompt-textarea"]',
        'div[contenteditable="true"][id="prompt-textarea"]',
        'textarea[placeholder*="Send a message"]',
    )
    send_button: Selectors = (
        'button[data-testid="send-button"]',
        'button[data-testid*="composer-send"]',
        'form button[type="submit"]',
    )
    conversation_turn: Selectors = (
        'article[data-testid^="conversation-turn"]',
        'div[data-testid^="conversation-turn"]',
        'section[data-testid^="conversation-turn"]',
    )
    assistant_turn: Selectors = (
        'article[data-testid^="conversation-turn"]:has([data-message-author-role="assistant"])',
        'div[data-message-author-role="assistant"]',
    )
    user_message: Selectors = ('[data-message-author-role="user"]',)
    assistant_text: Selectors = (".markdown", '[data-message-author-role="assistant"] .whitespace-pre-wrap')
    copy_button: Selectors = ('button[data-testid="copy-turn-action-button"]',)
    stop_button: Selectors = ('button[data-testid="stop-button"]',)
    upload_status: Selectors = (
        '[data-testid*="upload"]',
        '[data-testid*="attachment"]',
        '[aria-busy="true"]',
    )
    login_cta: Selectors = (
        'a[href*="/auth/login"]',
        'a[href*="/auth/signin"]',
        'button[data-testid*="login"]',
        'button[data-testid*="log-in"]',
        'button[data-testid*="sign-in"]',
        "button",
        "a",
    )


SELECTORS = ChatgptSelectors()

COMPOSER = ComposerSelectors(
    input=SELECTORS.input,
    send_button=SELECTORS.send_button,
    conversation_turn=SELECTORS.conversation_turn,
    upload_status=SELECTORS.upload_status,
)

SIGN_IN = SignInHints(
    url_fragments=("auth.openai.com",),
    path_pattern=r"^/(auth|login|signin)",
    cta_selectors=SELECTORS.login_cta,
    cta_prefixes=("log in", "login", "sign in", "signin", "continue with"),
)


async def wait_for_ui(ctx: ProviderDomFlowContext) -> None:
    command = QueryReady(SELECTORS.input, require_enabled=True, sign_in=SIGN_IN)
    saw_login = False

    async def probe() -> Dict[str, Any]:
        nonlocal saw_login
        status = await ctx.run(command) or {}
        saw_login = saw_login or bool(status.get("requiresLogin"))
        return status

    try:
        await wait_until(
            probe,
            timeout=ctx.state.get("input_timeout", DEFAULT_INPUT_TIMEOUT),
            interval=INPUT_POLL_INTERVAL,
            predicate=lambda status: status.get("ready"),
            description="the ChatGPT prompt textarea",
            clock=ctx.clock,
            sleep=ctx.delay,
        )
    except Timeout as exc:
        if saw_login:
            raise RequiresSignIn(
                "ChatGPT session not detected; the page is showing a login screen.",
                hint="Sign in to chatgpt.com in Chrome or pass inline cookies, then retry.",
            ) from exc
        raise
    ctx.emit(f"[{PROVIDER_NAME}] prompt textarea ready")


async def type_prompt(ctx: ProviderDomFlowContext) -> None:
    names = [attachment.name for attachment in ctx.attachments]
    if ctx.attachments:
        for attachment in ctx.attachments:
            await upload_attachment(ctx.client, attachment, COMPOSER, ctx.log, clock=ctx.clock, sleep=ctx.delay)
        await wait_for_attachment_completion(
            ctx.client,
            names,
            ctx.state.get("attachment_timeout", DEFAULT_ATTACHMENT_TIMEOUT),
            COMPOSER,
            ctx.log,
            clock=ctx.clock,
            sleep=ctx.delay,
        )
    ctx.state["attachment_names"] = names

    result = await ctx.run(InsertText(SELECTORS.input, ctx.prompt))
    if result != "typed":
        raise UnsupportedControl("prompt-input", f"ChatGPT prompt input rejected the text ({result}).")


async def submit_prompt(ctx: ProviderDomFlowContext) -> None:
    ctx.state["baseline_turns"] = int(await ctx.run(CountMatches(SELECTORS.assistant_turn)) or 0)
    user_baseline = int(await ctx.run(CountMatches(SELECTORS.user_message)) or 0)

    result = await ctx.submit(SubmitOrEnter(SELECTORS.send_button, SELECTORS.input))
    if result not in ("clicked", "enter"):
        raise UnsupportedControl("send-button", "ChatGPT send button not found.")

    committed = await wait_until(
        lambda: ctx.run(CountMatches(SELECTORS.user_message)),
        timeout=COMMIT_TIMEOUT,
        interval=COMMIT_POLL_INTERVAL,
        predicate=lambda count: int(count or 0) > user_baseline,
        description="the prompt to appear in the conversation",
        clock=ctx.clock,
        sleep=ctx.delay,
    )
    ctx.state["committed_turns"] = int(committed)

    names = ctx.state.get("attachment_names") or []
    if names:
        await wait_for_user_turn_attachments(
            ctx.client,
            names,
            ctx.state.get("attachment_timeout", DEFAULT_ATTACHMENT_TIMEOUT),
            COMPOSER,
            ctx.log,
            clock=ctx.clock,
            sleep=ctx.delay,
        )


async def wait_for_response(ctx: ProviderDomFlowContext) -> ProviderDomResponse:
    command = ResponseStatus(
        turn_selectors=SELECTORS.assistant_turn,
        text_selectors=SELECTORS.assistant_text,
        complete_selectors=SELECTORS.copy_button,
        busy_selectors=SELECTORS.stop_button,
        min_turns=ctx.state.get("baseline_turns", 0),
    )
    previous_text = None
    last_progress = float("-inf")

    async def probe() -> Dict[str, Any]:
        nonlocal previous_text, last_progress
        status = await ctx.run(command) or {}
        text = status.get("text")
        status["stable"] = bool(text) and text == previous_text
        previous_text = text
        now = ctx.clock()
        if status.get("status") != "done" and now - last_progress >= PROGRESS_LOG_INTERVAL:
            ctx.emit(f"[{PROVIDER_NAME}] response {status.get('status', 'waiting')}...")
            last_progress = now
        return status

    status = await wait_until(
        probe,
        timeout=ctx.state.get("response_timeout", DEFAULT_RESPONSE_TIMEOUT),
        interval=RESPONSE_POLL_INTERVAL,
        stable_for=RESPONSE_STABLE_FOR,
        predicate=lambda value: value.get("status") == "done" and value.get("stable"),
        description="the ChatGPT response",
        clock=ctx.clock,
        sleep=ctx.delay,
    )
    return ProviderDomResponse(
        text=status["text"],
        html=status.get("html"),
        turn_id=status.get("turnId"),
        message_id=status.get("messageId"),
    )


chatgpt_adapter = ProviderDomAdapter(
    provider_name=PROVIDER_NAME,
    wait_for_ui=wait_for_ui,
    type_prompt=type_prompt,
    submit_prompt=submit_prompt,
    wait_for_response=wait_for_response,
)


__all__ = ["COMPOSER", "SELECTORS", "ChatgptSelectors", "chatgpt_adapter"]
