"""Gemini web UI in Deep Think mode."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from webchat_driver.clients.dom_script import (
    ActiveState,
    Click,
    ClickByText,
    CountMatches,
    InsertText,
    QueryReady,
    ReadRevealedText,
    ResponseStatus,
    Selectors,
    SignInHints,
    SubmitOrEnter,
)
from webchat_driver.errors import RequiresSignIn, Timeout, UnsupportedControl
from webchat_driver.services.provider_flow import ProviderDomAdapter, ProviderDomFlowContext, ProviderDomResponse
from webchat_driver.utils.polling import wait_until

PROVIDER_NAME = "gemini-web"

UI_TIMEOUT = 60.0
UI_POLL_INTERVAL = 1.0
TOOLS_MENU_DELAY = 1.0
MODE_SWITCH_DELAY = 1.5
TYPING_DELAY = 0.5
RESPONSE_TIMEOUT = 10 * 60.0
RESPONSE_POLL_INTERVAL = 3.0
PROGRESS_LOG_INTERVAL = 10.0
THOUGHTS_REVEAL_DELAY = 1.5

DEEP_THINK_LABEL = "deep think"
GENERATING_PHRASES = ("generating your response", "check back later", "i'm on it")


@dataclass(frozen=True)
class DeepThinkSelectors:
    input: Selectors = (
        "rich-textarea .ql-editor",
        '[role="textbox"][aria-label*="prompt" i]',
        'div[contenteditable="true"]',
    )
    send_button: Selectors = ("button.send-button", 'button[aria-label="Send message"]')
    tools_button: Selectors = ("button.toolbox-drawer-button", 'button[aria-label="Tools"]')
    tools_menu_item: Selectors = ('[role="menuitemcheckbox"]', ".toolbox-drawer-item-list-button")
    deep_think_active: Selectors = (
        ".toolbox-drawer-item-deselect-button",
        'button[aria-label*="Deselect Deep Think"]',
    )
    response_turn: Selectors = ("model-response",)
    response_text: Selectors = ("message-content", ".model-response-text message-content")
    response_complete: Selectors = (".response-footer.complete",)
    spinner: Selectors = ('[role="progressbar"]',)
    thoughts_toggle: Selectors = (".thoughts-header-button", '[data-test-id="thoughts-header-button"]')
    thoughts_content: Selectors = ("model-thoughts", '[data-test-id="model-thoughts"]')


SELECTORS = DeepThinkSelectors()

SIGN_IN = SignInHints(url_fragments=("accounts.google.com",), body_phrases=("sign in", "google"))


async def wait_for_ui(ctx: ProviderDomFlowContext) -> None:
    command = QueryReady(SELECTORS.input, require_enabled=False, sign_in=SIGN_IN)
    saw_sign_in = False

    async def probe() -> Dict[str, Any]:
        nonlocal saw_sign_in
        status = await ctx.run(command) or {}
        if status.get("requiresLogin"):
            saw_sign_in = True
        return status

    try:
        await wait_until(
            probe,
            timeout=UI_TIMEOUT,
            interval=UI_POLL_INTERVAL,
            predicate=lambda status: status.get("ready"),
            description="the Gemini prompt input",
            clock=ctx.clock,
            sleep=ctx.delay,
        )
    except Timeout as exc:
        if saw_sign_in:
            raise RequiresSignIn(
                "Gemini redirected to Google sign-in; the browser profile is not signed in.",
                hint="Run the login helper or sign in to gemini.google.com in the controlled Chrome, then retry.",
            ) from exc
        raise


async def select_mode(ctx: ProviderDomFlowContext) -> None:
    if await ctx.run(Click(SELECTORS.tools_button)) != "clicked":
        raise UnsupportedControl("tools-button", "Gemini Tools button not found; cannot enable Deep Think.")
    await ctx.delay(TOOLS_MENU_DELAY)

    if await ctx.run(ClickByText(SELECTORS.tools_menu_item, DEEP_THINK_LABEL)) != "clicked":
        raise UnsupportedControl(
            "deep-think-menu-item",
            "Deep Think option not found in the Gemini Tools menu (is it available for this account?).",
        )
    await ctx.delay(MODE_SWITCH_DELAY)

    if not await ctx.run(ActiveState(SELECTORS.deep_think_active, DEEP_THINK_LABEL)):
        raise UnsupportedControl("deep-think-chip", "Deep Think did not show as active after selecting it.")
    ctx.emit(f"[{PROVIDER_NAME}] Deep Think mode active")


async def type_prompt(ctx: ProviderDomFlowContext) -> None:
    result = await ctx.run(InsertText(SELECTORS.input, ctx.prompt))
    if result == "no-editor":
        raise UnsupportedControl("prompt-input", "Gemini prompt input disappeared before typing.")
    if result != "typed":
        raise UnsupportedControl("prompt-input", "Gemini prompt input stayed empty after typing.")
    await ctx.delay(TYPING_DELAY)


async def submit_prompt(ctx: ProviderDomFlowContext) -> None:
    ctx.state["baseline_turns"] = int(await ctx.run(CountMatches(SELECTORS.response_turn)) or 0)
    result = await ctx.submit(SubmitOrEnter(SELECTORS.send_button, SELECTORS.input))
    if result not in ("clicked", "enter"):
        raise UnsupportedControl("send-button", "Failed to submit prompt in Gemini Deep Think mode (send control not found).")


async def wait_for_response(ctx: ProviderDomFlowContext) -> ProviderDomResponse:
    command = ResponseStatus(
        turn_selectors=SELECTORS.response_turn,
        text_selectors=SELECTORS.response_text,
        complete_selectors=SELECTORS.response_complete,
        spinner_selectors=SELECTORS.spinner,
        generating_phrases=GENERATING_PHRASES,
        min_turns=ctx.state.get("baseline_turns", 0),
    )
    last_progress = float("-inf")

    async def probe() -> Dict[str, Any]:
        nonlocal last_progress
        status = await ctx.run(command) or {}
        now = ctx.clock()
        if status.get("status") != "done" and now - last_progress >= PROGRESS_LOG_INTERVAL:
            ctx.emit(f"[{PROVIDER_NAME}] Deep Think still generating... ({status.get('status', 'unknown')})")
            last_progress = now
        return status

    status = await wait_until(
        probe,
        timeout=RESPONSE_TIMEOUT,
        interval=RESPONSE_POLL_INTERVAL,
        predicate=lambda value: value.get("status") == "done" and bool(value.get("text")),
        description="the Deep Think response",
        clock=ctx.clock,
        sleep=ctx.delay,
    )
    return ProviderDomResponse(
        text=status["text"],
        html=status.get("html"),
        turn_id=status.get("turnId"),
        message_id=status.get("messageId"),
    )


async def extract_thoughts(ctx: ProviderDomFlowContext) -> Optional[str]:
    """Reveal the thinking panel of the last response; None when there is none."""
    try:
        if await ctx.run(Click(SELECTORS.thoughts_toggle)) != "clicked":
            return None
        await ctx.delay(THOUGHTS_REVEAL_DELAY)
        thoughts = await ctx.run(ReadRevealedText(SELECTORS.thoughts_content, SELECTORS.thoughts_toggle))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Reading Gemini thoughts failed: {}", exc)
        return None
    return thoughts if isinstance(thoughts, str) and thoughts else None


gemini_deep_think_adapter = ProviderDomAdapter(
    provider_name=PROVIDER_NAME,
    wait_for_ui=wait_for_ui,
    select_mode=select_mode,
    type_prompt=type_prompt,
    submit_prompt=submit_prompt,
    wait_for_response=wait_for_response,
    extract_side_channel=extract_thoughts,
)


__all__ = ["SELECTORS", "DeepThinkSelectors", "gemini_deep_think_adapter"]
