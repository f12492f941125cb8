#!/usr/bin/env python3
"""
Webchat login helper.

Run it (or double-click it), sign in to the provider in the Chrome window that
opens, and the auth cookies are saved under ``data/cookies/<provider>.json``.
The MCP server picks that file up as inline cookies on the next request.

Usage: ``python login_helper.py [gemini|chatgpt]`` (default: $WEBCHAT_LOGIN_PROVIDER or gemini).
"""

import asyncio
import os
import sys
from typing import Dict, List

from webchat_driver.errors import EngineError, format_error
from webchat_driver.schemas.request import BrowserConfig
from webchat_driver.services.cookie_service import COOKIE_SPECS, ProviderCookieSpec, load_cookies_via_browser
from webchat_driver.utils.cookie_storage import default_cookie_file, persist_cookies
from webchat_driver.utils.logger import configure_logging


def cookie_records(cookie_map: Dict[str, str], spec: ProviderCookieSpec) -> List[dict]:
    """Cookie map -> records scoped to the provider's apex domain."""
    return [
        {"name": name, "value": value, "domain": f".{spec.apex_domain}", "path": "/", "secure": True}
        for name, value in cookie_map.items()
    ]


async def main(provider: str) -> int:
    spec = COOKIE_SPECS.get(provider)
    if spec is None:
        print(f"❌ Unknown provider '{provider}'. Choose one of: {', '.join(sorted(COOKIE_SPECS))}")
        return 2

    print()
    print("=" * 50)
    print(f"   Webchat login helper ({provider})")
    print("=" * 50)
    print()
    print(f"📱 Opening Chrome on {spec.sign_in_url} ...")
    print("🔔 Sign in within 5 minutes; cookies are saved automatically.")
    print()

    config = BrowserConfig(provider=provider, manual_login=True, keep_browser=False)  # type: ignore[arg-type]
    try:
        cookie_map = await load_cookies_via_browser(config, spec, log=lambda line: print(f"   {line}"))
    except EngineError as exc:
        print(f"❌ {format_error(exc)}")
        return 1

    saved = persist_cookies(cookie_records(cookie_map, spec), default_cookie_file(provider))
    if not saved:
        print("❌ Could not write the cookie file; see logs for details.")
        return 1

    print()
    print(f"🎉 Signed in. Saved {len(cookie_map)} cookie(s) to {saved}")
    print("✅ You can close the browser now.")
    return 0


if __name__ == "__main__":
    configure_logging(os.getenv("LOG_LEVEL", "WARNING"))
    selected = sys.argv[1] if len(sys.argv) > 1 else os.getenv("WEBCHAT_LOGIN_PROVIDER", "gemini")
    exit_code = asyncio.run(main(selected.strip().lower()))
    if sys.stdin.isatty():
        input("\nPress Enter to exit...")
    sys.exit(exit_code)
