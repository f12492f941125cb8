"""Snapshots of the page taken when a DOM step gives up."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from webchat_driver.config import FAILURES_DIR
from webchat_driver.utils.logger import BrowserLogger, make_log
from webchat_driver.utils.screenshot_storage import save_screenshot_from_base64

BODY_EXCERPT_CHARS = 600

_PAGE_SUMMARY = f"""(() => ({{
  url: location.href,
  title: document.title,
  body: (document.body?.innerText || '').slice(0, {BODY_EXCERPT_CHARS}),
}}))()"""


async def log_dom_failure(
    client: Any,
    log: Optional[BrowserLogger],
    label: str,
    *,
    target_dir: Path = FAILURES_DIR,
) -> Dict[str, Any]:
    """
    Record url, title, a body excerpt and a screenshot for a failed step.

    Never raises; whatever could be captured is returned and logged.
    """
    emit = make_log(log)
    snapshot: Dict[str, Any] = {"label": label}
    try:
        summary = await client.evaluate(_PAGE_SUMMARY) or {}
        snapshot.update(summary)
    except Exception as exc:  # noqa: BLE001
        logger.debug("DOM summary for {} failed: {}", label, exc)

    try:
        data = await client.capture_screenshot()
        if data:
            snapshot["screenshot"] = save_screenshot_from_base64(data, label, target_dir)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Screenshot for {} failed: {}", label, exc)

    emit(
        f"DOM failure [{label}] url={snapshot.get('url')} title={snapshot.get('title')!r} "
        f"screenshot={snapshot.get('screenshot')}"
    )
    if snapshot.get("body"):
        logger.debug("DOM failure [{}] body excerpt: {}", label, snapshot["body"])
    return snapshot


__all__ = ["log_dom_failure"]
