"""Resolve a provider's auth cookies: inline values, a manual sign-in, or the local Chrome store."""
from __future__ import annotations

import asyncio
import os
import platform
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence
from urllib.parse import urlparse

import browser_cookie3
from loguru import logger

from webchat_driver.errors import MissingAuthCookies, SignInTimeout, Timeout
from webchat_driver.schemas.request import BrowserConfig
from webchat_driver.services.session_manager import SessionManager, browser_session
from webchat_driver.utils.cookie_storage import load_cookies
from webchat_driver.utils.logger import BrowserLogger, make_log
from webchat_driver.utils.polling import wait_until

CookieMap = Dict[str, str]

SIGN_IN_POLL_INTERVAL = 2.0
SIGN_IN_TIMEOUT = 5 * 60.0
SIGN_IN_NOTICE_INTERVAL = 10.0
NATIVE_READ_TIMEOUT = 5.0


@dataclass(frozen=True)
class ProviderCookieSpec:
    provider: str
    names: Sequence[str]
    required: Sequence[str]
    origins: Sequence[str]
    apex_domain: str
    sign_in_url: str


GEMINI_COOKIES = ProviderCookieSpec(
    provider="gemini",
    names=(
        "__Secure-1PSID",
        "__Secure-1PSIDTS",
        "__Secure-1PSIDCC",
        "__Secure-1PAPISID",
        "NID",
        "AEC",
        "SOCS",
        "__Secure-BUCKET",
        "__Secure-ENID",
        "SID",
        "HSID",
        "SSID",
        "APISID",
        "SAPISID",
        "__Secure-3PSID",
        "__Secure-3PSIDTS",
        "__Secure-3PAPISID",
        "SIDCC",
    ),
    required=("__Secure-1PSID", "__Secure-1PSIDTS"),
    origins=("https://gemini.google.com", "https://accounts.google.com", "https://www.google.com"),
    apex_domain="google.com",
    sign_in_url="https://gemini.google.com",
)

CHATGPT_COOKIES = ProviderCookieSpec(
    provider="chatgpt",
    names=(
        "__Secure-next-auth.session-token",
        "oai-did",
        "__Host-next-auth.csrf-token",
        "__Secure-next-auth.callback-url",
        "oai-sc",
        "cf_clearance",
        "__cf_bm",
        "_cfuvid",
    ),
    required=("__Secure-next-auth.session-token", "oai-did"),
    origins=("https://chatgpt.com", "https://auth.openai.com"),
    apex_domain="chatgpt.com",
    sign_in_url="https://chatgpt.com/auth/login",
)

COOKIE_SPECS: Dict[str, ProviderCookieSpec] = {
    GEMINI_COOKIES.provider: GEMINI_COOKIES,
    CHATGPT_COOKIES.provider: CHATGPT_COOKIES,
}


class ResolvedCookies(NamedTuple):
    cookies: CookieMap
    source: str


def _field(cookie: Any, key: str) -> Any:
    if isinstance(cookie, Mapping):
        return cookie.get(key)
    return getattr(cookie, key, None)


def resolve_cookie_domain(cookie: Any) -> Optional[str]:
    raw_domain = (_field(cookie, "domain") or "").strip()
    if raw_domain:
        return raw_domain[1:] if raw_domain.startswith(".") else raw_domain
    raw_url = (_field(cookie, "url") or "").strip()
    if raw_url:
        return urlparse(raw_url).hostname
    return None


def pick_cookie_value(cookies: Iterable[Any], name: str, apex_domain: str) -> Optional[str]:
    """
    Pick one value when several cookies share ``name``.

    Preference: apex domain with root path, then the apex or any subdomain,
    then the first match.
    """
    matches = [c for c in cookies if _field(c, "name") == name and isinstance(_field(c, "value"), str)]
    if not matches:
        return None
    for cookie in matches:
        if resolve_cookie_domain(cookie) == apex_domain and (_field(cookie, "path") or "/") == "/":
            return _field(cookie, "value")
    for cookie in matches:
        domain = resolve_cookie_domain(cookie) or ""
        if domain == apex_domain or domain.endswith("." + apex_domain):
            return _field(cookie, "value")
    return _field(matches[0], "value")


def build_cookie_map(cookies: Iterable[Any], spec: ProviderCookieSpec) -> CookieMap:
    cookie_list = list(cookies)
    cookie_map: CookieMap = {}
    for name in spec.names:
        value = pick_cookie_value(cookie_list, name, spec.apex_domain)
        if value:
            cookie_map[name] = value
    return cookie_map


def missing_required(cookie_map: Mapping[str, str], spec: ProviderCookieSpec) -> List[str]:
    return [name for name in spec.required if not cookie_map.get(name)]


def has_required_cookies(cookie_map: Mapping[str, str], spec: ProviderCookieSpec) -> bool:
    return not missing_required(cookie_map, spec)


def require_cookies(cookie_map: Mapping[str, str], spec: ProviderCookieSpec) -> None:
    missing = missing_required(cookie_map, spec)
    if missing:
        raise MissingAuthCookies(spec.provider, missing)


def cookie_map_to_params(cookie_map: Mapping[str, str], spec: ProviderCookieSpec) -> List[Dict[str, Any]]:
    """Payload for ``Network.setCookies`` scoped to the provider's first origin."""
    url = spec.origins[0]
    return [
        {"name": name, "value": value, "url": url, "path": "/", "secure": True}
        for name, value in cookie_map.items()
    ]


def load_inline_cookies(
    config: BrowserConfig,
    spec: ProviderCookieSpec,
    log: Optional[BrowserLogger] = None,
) -> CookieMap:
    emit = make_log(log)
    inline = list(config.inline_cookies)
    source = config.inline_cookies_source or "inline"
    if config.inline_cookies_file:
        inline.extend(load_cookies(Path(config.inline_cookies_file).expanduser()))
        source = config.inline_cookies_source or "file"
    if not inline:
        return {}

    cookie_map = build_cookie_map([c.model_dump() for c in inline if c.name], spec)
    if cookie_map:
        emit(f"Loaded {spec.provider} cookies from inline payload ({source}): {len(cookie_map)} cookie(s).")
    else:
        emit(f"Inline cookie payload provided but no {spec.provider} cookies matched.")
    return cookie_map


async def load_cookies_via_browser(
    config: BrowserConfig,
    spec: ProviderCookieSpec,
    log: Optional[BrowserLogger] = None,
    *,
    manager: Optional[SessionManager] = None,
    poll_interval: float = SIGN_IN_POLL_INTERVAL,
    timeout: float = SIGN_IN_TIMEOUT,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> CookieMap:
    """Open the controlled Chrome on the sign-in page and wait for the required cookies."""
    emit = make_log(log)
    async with browser_session(
        config,
        f"{spec.provider} manual-login cookie extraction",
        log=log,
        manager=manager,
    ) as session:
        client = session.client
        emit(f"Navigating to {spec.sign_in_url} for sign-in/cookie capture...")
        await client.navigate(spec.sign_in_url)

        last_notice = [float("-inf")]

        async def probe() -> CookieMap:
            cookies = await client.get_cookies(spec.origins)
            cookie_map = build_cookie_map(cookies, spec)
            now = clock()
            if not has_required_cookies(cookie_map, spec) and now - last_notice[0] > SIGN_IN_NOTICE_INTERVAL:
                emit(f"Waiting for {spec.provider} sign-in... please sign in in the opened Chrome window.")
                last_notice[0] = now
            return cookie_map

        try:
            cookie_map = await wait_until(
                probe,
                timeout=timeout,
                interval=poll_interval,
                predicate=lambda value: has_required_cookies(value, spec),
                description=f"{spec.provider} sign-in cookies",
                clock=clock,
                sleep=sleep,
            )
        except Timeout as exc:
            raise SignInTimeout(
                f"Timed out waiting for {spec.provider} sign-in ({timeout / 60:.0f} minutes). Please sign in and retry.",
                last_state=sorted(exc.last_state or {}),
            ) from exc

    emit(f"Extracted {len(cookie_map)} {spec.provider} cookie(s) via CDP.")
    return cookie_map


def _chrome_user_data_root() -> Path:
    system = platform.system()
    if system == "Darwin":
        return Path.home() / "Library" / "Application Support" / "Google" / "Chrome"
    if system == "Windows":
        return Path(os.environ.get("LOCALAPPDATA", Path.home())) / "Google" / "Chrome" / "User Data"
    return Path.home() / ".config" / "google-chrome"


def resolve_cookie_file(config: BrowserConfig) -> Optional[Path]:
    """Locate the Cookies DB for an explicit path or a profile name; None means the library default."""
    candidate = config.chrome_cookie_path or config.chrome_profile
    if not candidate or not candidate.strip():
        return None
    path = Path(candidate.strip()).expanduser()
    if path.is_file():
        return path
    profile_dir = path if path.is_dir() else _chrome_user_data_root() / candidate.strip()
    for relative in ("Network/Cookies", "Cookies"):
        if (profile_dir / relative).is_file():
            return profile_dir / relative
    return profile_dir / "Cookies"


def read_chrome_cookie_store(cookie_file: Optional[Path], spec: ProviderCookieSpec) -> List[Dict[str, Any]]:
    """Blocking read of the local Chrome cookie DB restricted to the provider's cookie names and origins."""
    jar = browser_cookie3.chrome(
        cookie_file=str(cookie_file) if cookie_file else None,
        domain_name=spec.apex_domain,
    )
    hosts = [urlparse(origin).hostname or "" for origin in spec.origins]
    wanted = set(spec.names)
    cookies: List[Dict[str, Any]] = []
    for cookie in jar:
        if cookie.name not in wanted:
            continue
        domain = cookie.domain.lstrip(".")
        if not any(host == domain or host.endswith(f".{domain}") for host in hosts):
            continue
        cookies.append({"name": cookie.name, "value": cookie.value, "domain": cookie.domain, "path": cookie.path})
    return cookies


NativeReader = Callable[[Optional[Path], ProviderCookieSpec], List[Dict[str, Any]]]


async def load_cookies_from_native(
    config: BrowserConfig,
    spec: ProviderCookieSpec,
    log: Optional[BrowserLogger] = None,
    *,
    reader: NativeReader = read_chrome_cookie_store,
) -> CookieMap:
    emit = make_log(log)
    try:
        cookies = await asyncio.wait_for(
            asyncio.to_thread(reader, resolve_cookie_file(config), spec),
            timeout=NATIVE_READ_TIMEOUT,
        )
    except asyncio.TimeoutError:
        emit(f"Reading Chrome cookies for {spec.provider} timed out after {NATIVE_READ_TIMEOUT:.0f}s.")
        return {}
    except Exception as exc:  # noqa: BLE001
        emit(f"Failed to load Chrome cookies for {spec.provider}: {exc}")
        return {}
    cookie_map = build_cookie_map(cookies, spec)
    emit(f"Loaded {spec.provider} cookies from Chrome: {len(cookie_map)} cookie(s).")
    return cookie_map


async def resolve_cookies(
    config: BrowserConfig,
    spec: ProviderCookieSpec,
    log: Optional[BrowserLogger] = None,
    *,
    prefer_manual: bool = False,
    browser_loader: Callable[..., Awaitable[CookieMap]] = load_cookies_via_browser,
    native_loader: Callable[..., Awaitable[CookieMap]] = load_cookies_from_native,
) -> ResolvedCookies:
    """
    Inline cookies first; then manual sign-in through the controlled Chrome when
    requested; otherwise the local Chrome store. Inline values always win on a
    name collision.
    """
    emit = make_log(log)
    inline_map = load_inline_cookies(config, spec, log)
    if has_required_cookies(inline_map, spec):
        return ResolvedCookies(inline_map, "inline")

    if config.manual_login or prefer_manual:
        emit(f"Using manual-login cookie extraction for {spec.provider} (no local cookie store read).")
        extracted = await browser_loader(config, spec, log)
        return ResolvedCookies({**extracted, **inline_map}, "manual")

    if not config.cookie_sync:
        emit(f"Cookie sync disabled and inline cookies are missing {spec.provider} auth tokens.")
        return ResolvedCookies(inline_map, "inline" if inline_map else "none")

    native_map = await native_loader(config, spec, log)
    merged = {**native_map, **inline_map}
    logger.debug("Resolved {} cookie names for {}: {}", len(merged), spec.provider, sorted(merged))
    return ResolvedCookies(merged, "native" if native_map else ("inline" if inline_map else "none"))


__all__ = [
    "CHATGPT_COOKIES",
    "COOKIE_SPECS",
    "CookieMap",
    "GEMINI_COOKIES",
    "ProviderCookieSpec",
    "ResolvedCookies",
    "build_cookie_map",
    "cookie_map_to_params",
    "has_required_cookies",
    "load_cookies_from_native",
    "load_cookies_via_browser",
    "load_inline_cookies",
    "missing_required",
    "pick_cookie_value",
    "require_cookies",
    "resolve_cookie_domain",
    "resolve_cookies",
]
