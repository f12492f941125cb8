"""Helper utilities to persist page screenshots."""
from __future__ import annotations

import base64
import re
import time
from pathlib import Path
from typing import Optional

from loguru import logger

from webchat_driver.config import FAILURES_DIR


def _slug(label: str) -> str:
    return re.sub(r"[^a-z0-9_-]+", "-", label.lower()).strip("-") or "page"


def save_screenshot_from_base64(data: str, label: str, target_dir: Path = FAILURES_DIR) -> Optional[str]:
    """
    Persist a base64 encoded PNG to ``target_dir``.

    Args:
        data: Base64 payload, optionally prefixed with ``data:image/...``.
        label: Short tag used in the filename.

    Returns:
        The absolute file path if the image was written successfully, else None.
    """
    try:
        payload = data.split(",", 1)[1] if "," in data else data
        image_bytes = base64.b64decode(payload)

        file_path = target_dir / f"{int(time.time() * 1000)}_{_slug(label)}.png"
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(image_bytes)

        logger.info("Screenshot saved to {}", file_path)
        return str(file_path.resolve())
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to persist screenshot: {}", exc)
        return None


__all__ = ["save_screenshot_from_base64"]
