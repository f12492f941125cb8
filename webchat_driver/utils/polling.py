"""Cooperative polling used by every layer that waits on the page."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from webchat_driver.errors import Timeout

T = TypeVar("T")

DEFAULT_INTERVAL = 0.25


async def wait_until(
    probe: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    interval: float = DEFAULT_INTERVAL,
    stable_for: float = 0.0,
    predicate: Callable[[T], Any] = bool,
    description: str = "condition",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Evaluate ``probe`` until ``predicate`` holds on its result.

    Args:
        probe: Async callable returning the observed state.
        timeout: Seconds before giving up.
        interval: Delay between probes.
        stable_for: When > 0 the predicate must hold continuously this long;
            any failing probe resets the window.
        predicate: Success test applied to the probed value.
        description: Used in the ``Timeout`` message.

    Returns:
        The probed value that satisfied the condition.

    Raises:
        Timeout: With ``last_state`` set to the last probed value.
    """
    start = clock()
    deadline = start + timeout
    holding_since: Optional[float] = None
    last: Any = None

    while True:
        last = await probe()
        now = clock()
        if predicate(last):
            if stable_for <= 0:
                return last
            if holding_since is None:
                holding_since = now
            if now - holding_since >= stable_for:
                return last
        else:
            holding_since = None

        if now >= deadline:
            raise Timeout(
                f"Timed out after {timeout:.1f}s waiting for {description}.",
                last_state=last,
            )

        delay = min(interval, deadline - now)
        if holding_since is not None:
            delay = min(delay, holding_since + stable_for - now)
        await sleep(max(delay, 0.0))


__all__ = ["DEFAULT_INTERVAL", "wait_until"]
