"""Helpers for persisting captured cookies to disk and reading them back as inline cookies."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from loguru import logger
from pydantic import ValidationError

from webchat_driver.config import COOKIES_DIR
from webchat_driver.schemas.cookies import CookieParam


def default_cookie_file(provider: str) -> Path:
    return COOKIES_DIR / f"{provider}.json"


def persist_cookies(cookies: Iterable[Mapping[str, object]], target_path: Path) -> Optional[str]:
    """
    Write cookies (CDP ``Network.getCookies`` dicts) to ``target_path``.

    Returns:
        Absolute string path when data is written, else None.
    """
    cookie_list = list(cookies)
    payload = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "count": len(cookie_list),
        "cookies": cookie_list,
    }

    try:
        target_path.parent.mkdir(parents=True, exist_ok=True)
        with target_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError as exc:
        logger.warning("Failed to persist cookies: {}", exc)
        return None

    resolved = str(target_path.resolve())
    logger.info("Persisted {} cookies to {}", len(cookie_list), resolved)
    return resolved


def load_cookies(source_path: Path) -> List[CookieParam]:
    """
    Read a cookie export from disk.

    Accepts either a bare JSON list or the ``{"cookies": [...]}`` payload
    written by :func:`persist_cookies`. Malformed entries are skipped.
    """
    if not source_path.exists():
        logger.warning("Inline cookie file not found: {}", source_path)
        return []
    try:
        with source_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Failed to load cookies from {}: {}", source_path, exc)
        return []

    raw = data.get("cookies") if isinstance(data, dict) else data
    if not isinstance(raw, list):
        logger.warning("Cookie payload malformed: {}", source_path)
        return []

    cookies: List[CookieParam] = []
    for entry in raw:
        try:
            cookies.append(CookieParam.model_validate(entry))
        except ValidationError:
            continue
    return cookies


__all__ = ["default_cookie_file", "load_cookies", "persist_cookies"]
