"""Staged DOM pipeline shared by every provider adapter."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from webchat_driver.clients.dom_script import DomCommand, render
from webchat_driver.schemas.request import Attachment
from webchat_driver.utils.logger import BrowserLogger

Evaluate = Callable[[str], Awaitable[Any]]
Delay = Callable[[float], Awaitable[Any]]


@dataclass
class ProviderDomFlowContext:
    """
    Everything a stage may touch.

    ``state`` is the only channel between stages (baseline turn counts,
    attachment names). ``client`` is present when a stage needs more than
    ``Runtime.evaluate`` (file inputs, key events).
    """

    prompt: str
    evaluate: Evaluate
    delay: Delay = asyncio.sleep
    log: Optional[BrowserLogger] = None
    state: Dict[str, Any] = field(default_factory=dict)
    client: Any = None
    attachments: List[Attachment] = field(default_factory=list)
    clock: Callable[[], float] = time.monotonic

    def emit(self, line: str) -> None:
        logger.info("{}", line)
        if self.log is not None:
            self.log(line)

    async def run(self, command: DomCommand) -> Any:
        return await self.evaluate(render(command))

    async def submit(self, command: DomCommand) -> Any:
        """Run a submit command; an 'enter' result is completed with a real keystroke."""
        result = await self.run(command)
        if result == "enter":
            await self.client.press_enter()
        return result


@dataclass
class ProviderDomResponse:
    text: str
    html: Optional[str] = None
    turn_id: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class ProviderDomFlowResult(ProviderDomResponse):
    side_channel: Optional[str] = None


Stage = Callable[[ProviderDomFlowContext], Awaitable[Any]]


@dataclass(frozen=True)
class ProviderDomAdapter:
    provider_name: str
    wait_for_ui: Stage
    type_prompt: Stage
    submit_prompt: Stage
    wait_for_response: Callable[[ProviderDomFlowContext], Awaitable[ProviderDomResponse]]
    select_mode: Optional[Stage] = None
    extract_side_channel: Optional[Callable[[ProviderDomFlowContext], Awaitable[Optional[str]]]] = None


async def run_provider_submission_flow(adapter: ProviderDomAdapter, ctx: ProviderDomFlowContext) -> None:
    """wait_for_ui -> select_mode? -> type_prompt -> submit_prompt. Failures propagate."""
    name = adapter.provider_name
    ctx.emit(f"[{name}] waiting for UI")
    await adapter.wait_for_ui(ctx)
    if adapter.select_mode is not None:
        ctx.emit(f"[{name}] selecting mode")
        await adapter.select_mode(ctx)
    ctx.emit(f"[{name}] typing prompt")
    await adapter.type_prompt(ctx)
    ctx.emit(f"[{name}] submitting prompt")
    await adapter.submit_prompt(ctx)


async def run_provider_dom_flow(adapter: ProviderDomAdapter, ctx: ProviderDomFlowContext) -> ProviderDomFlowResult:
    await run_provider_submission_flow(adapter, ctx)
    ctx.emit(f"[{adapter.provider_name}] waiting for response")
    response = await adapter.wait_for_response(ctx)

    side_channel: Optional[str] = None
    if adapter.extract_side_channel is not None:
        side_channel = await adapter.extract_side_channel(ctx)
        if side_channel:
            ctx.emit(f"[{adapter.provider_name}] captured side channel ({len(side_channel)} chars)")

    return ProviderDomFlowResult(
        text=response.text,
        html=response.html,
        turn_id=response.turn_id,
        message_id=response.message_id,
        side_channel=side_channel,
    )


__all__ = [
    "ProviderDomAdapter",
    "ProviderDomFlowContext",
    "ProviderDomFlowResult",
    "ProviderDomResponse",
    "run_provider_dom_flow",
    "run_provider_submission_flow",
]
