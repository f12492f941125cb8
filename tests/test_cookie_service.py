"""Tests for cookie selection and the resolution chain."""

from unittest.mock import AsyncMock

import pytest

from webchat_driver.errors import MissingAuthCookies, SignInTimeout
from webchat_driver.schemas.cookies import CookieParam
from webchat_driver.services.cookie_service import (
    CHATGPT_COOKIES,
    GEMINI_COOKIES,
    build_cookie_map,
    cookie_map_to_params,
    load_cookies_from_native,
    load_cookies_via_browser,
    load_inline_cookies,
    pick_cookie_value,
    require_cookies,
    resolve_cookie_domain,
    resolve_cookies,
)
from webchat_driver.schemas.request import BrowserConfig
from webchat_driver.utils.cookie_storage import persist_cookies

GEMINI_AUTH = [
    CookieParam(name="__Secure-1PSID", value="psid-inline", domain=".google.com"),
    CookieParam(name="__Secure-1PSIDTS", value="psidts-inline", domain=".google.com"),
]


class TestCookieSelection:
    def test_domain_from_domain_or_url(self):
        assert resolve_cookie_domain({"domain": ".google.com"}) == "google.com"
        assert resolve_cookie_domain({"url": "https://gemini.google.com/app"}) == "gemini.google.com"
        assert resolve_cookie_domain({"name": "x"}) is None

    def test_apex_root_path_wins(self):
        cookies = [
            {"name": "NID", "value": "sub", "domain": "accounts.google.com", "path": "/"},
            {"name": "NID", "value": "scoped", "domain": ".google.com", "path": "/search"},
            {"name": "NID", "value": "apex", "domain": ".google.com", "path": "/"},
        ]
        assert pick_cookie_value(cookies, "NID", "google.com") == "apex"

    def test_subdomain_beats_foreign_domain(self):
        cookies = [
            {"name": "NID", "value": "foreign", "domain": "example.org"},
            {"name": "NID", "value": "sub", "domain": "accounts.google.com"},
        ]
        assert pick_cookie_value(cookies, "NID", "google.com") == "sub"

    def test_lookalike_domain_is_not_a_subdomain(self):
        cookies = [
            {"name": "NID", "value": "lookalike", "domain": ".notgoogle.com"},
            {"name": "NID", "value": "sub", "domain": "mail.google.com"},
        ]
        assert pick_cookie_value(cookies, "NID", "google.com") == "sub"

    def test_first_match_as_last_resort(self):
        cookies = [
            {"name": "NID", "value": "first", "domain": "example.org"},
            {"name": "NID", "value": "second", "domain": "example.net"},
        ]
        assert pick_cookie_value(cookies, "NID", "google.com") == "first"
        assert pick_cookie_value(cookies, "SID", "google.com") is None

    def test_map_only_keeps_known_names(self):
        cookies = [
            {"name": "__Secure-1PSID", "value": "a", "domain": ".google.com"},
            {"name": "tracking", "value": "b", "domain": ".google.com"},
            {"name": "NID", "value": "", "domain": ".google.com"},
        ]
        assert build_cookie_map(cookies, GEMINI_COOKIES) == {"__Secure-1PSID": "a"}

    def test_require_cookies_names_missing(self):
        with pytest.raises(MissingAuthCookies) as excinfo:
            require_cookies({"oai-did": "x"}, CHATGPT_COOKIES)

        assert excinfo.value.missing == ["__Secure-next-auth.session-token"]
        assert excinfo.value.provider == "chatgpt"

    def test_params_scoped_to_first_origin(self):
        params = cookie_map_to_params({"NID": "n"}, GEMINI_COOKIES)
        assert params == [
            {"name": "NID", "value": "n", "url": "https://gemini.google.com", "path": "/", "secure": True}
        ]


class TestInlineCookies:
    def test_reads_exported_file(self, tmp_path):
        target = tmp_path / "gemini.json"
        persist_cookies(
            [
                {"name": "__Secure-1PSID", "value": "from-file", "domain": ".google.com", "path": "/"},
                {"name": "broken"},
            ],
            target,
        )
        config = BrowserConfig(provider="gemini", inline_cookies_file=str(target))

        assert load_inline_cookies(config, GEMINI_COOKIES) == {"__Secure-1PSID": "from-file"}

    def test_empty_when_nothing_given(self):
        assert load_inline_cookies(BrowserConfig(provider="gemini"), GEMINI_COOKIES) == {}


class TestResolveCookies:
    @pytest.mark.asyncio
    async def test_inline_satisfying_required_short_circuits(self):
        browser_loader = AsyncMock()
        native_loader = AsyncMock()
        config = BrowserConfig(provider="gemini", inline_cookies=GEMINI_AUTH, manual_login=True)

        resolved = await resolve_cookies(
            config, GEMINI_COOKIES, browser_loader=browser_loader, native_loader=native_loader
        )

        assert resolved.source == "inline"
        assert resolved.cookies["__Secure-1PSID"] == "psid-inline"
        browser_loader.assert_not_awaited()
        native_loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_native_merged_with_inline_winning(self):
        native_loader = AsyncMock(
            return_value={"__Secure-1PSID": "psid-native", "__Secure-1PSIDTS": "psidts-native"}
        )
        config = BrowserConfig(provider="gemini", inline_cookies=GEMINI_AUTH[:1])

        resolved = await resolve_cookies(config, GEMINI_COOKIES, native_loader=native_loader)

        assert resolved.source == "native"
        assert resolved.cookies == {"__Secure-1PSID": "psid-inline", "__Secure-1PSIDTS": "psidts-native"}

    @pytest.mark.asyncio
    async def test_manual_login_never_reads_native_store(self):
        browser_loader = AsyncMock(return_value={"__Secure-1PSID": "m", "__Secure-1PSIDTS": "m"})
        native_loader = AsyncMock()
        config = BrowserConfig(provider="gemini", manual_login=True)

        resolved = await resolve_cookies(
            config, GEMINI_COOKIES, browser_loader=browser_loader, native_loader=native_loader
        )

        assert resolved.source == "manual"
        browser_loader.assert_awaited_once()
        native_loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cookie_sync_disabled_skips_loaders(self):
        native_loader = AsyncMock()
        config = BrowserConfig(provider="gemini", cookie_sync=False, inline_cookies=GEMINI_AUTH[:1])

        resolved = await resolve_cookies(config, GEMINI_COOKIES, native_loader=native_loader)

        assert resolved.source == "inline"
        assert resolved.cookies == {"__Secure-1PSID": "psid-inline"}
        native_loader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_found_reports_none(self):
        native_loader = AsyncMock(return_value={})

        resolved = await resolve_cookies(BrowserConfig(provider="gemini"), GEMINI_COOKIES, native_loader=native_loader)

        assert resolved == ({}, "none")


class TestNativeStore:
    @pytest.mark.asyncio
    async def test_reader_failure_yields_empty_map(self):
        def reader(cookie_file, spec):
            raise PermissionError("keychain locked")

        lines = []
        cookie_map = await load_cookies_from_native(
            BrowserConfig(provider="gemini"), GEMINI_COOKIES, lines.append, reader=reader
        )

        assert cookie_map == {}
        assert any("keychain locked" in line for line in lines)

    @pytest.mark.asyncio
    async def test_reader_results_are_filtered(self):
        def reader(cookie_file, spec):
            return [
                {"name": "__Secure-1PSID", "value": "a", "domain": ".google.com", "path": "/"},
                {"name": "unrelated", "value": "b", "domain": ".google.com", "path": "/"},
            ]

        cookie_map = await load_cookies_from_native(BrowserConfig(provider="gemini"), GEMINI_COOKIES, reader=reader)

        assert cookie_map == {"__Secure-1PSID": "a"}


class TestManualSignIn:
    @pytest.mark.asyncio
    async def test_waits_until_required_cookies_appear(self, browser_env, clock):
        def setup(client):
            client.cookie_batches = [
                [],
                [{"name": "__Secure-1PSID", "value": "a", "domain": ".google.com"}],
                [
                    {"name": "__Secure-1PSID", "value": "a", "domain": ".google.com"},
                    {"name": "__Secure-1PSIDTS", "value": "b", "domain": ".google.com"},
                ],
            ]

        browser_env.client_setup = setup

        cookie_map = await load_cookies_via_browser(
            browser_env.config(provider="gemini"),
            GEMINI_COOKIES,
            manager=browser_env.manager,
            clock=clock,
            sleep=clock.sleep,
        )

        client = browser_env.clients[0]
        assert cookie_map == {"__Secure-1PSID": "a", "__Secure-1PSIDTS": "b"}
        assert client.navigated == ["https://gemini.google.com"]
        assert client.closed == 1

    @pytest.mark.asyncio
    async def test_deadline_raises_sign_in_timeout(self, browser_env, clock):
        lines = []

        with pytest.raises(SignInTimeout):
            await load_cookies_via_browser(
                browser_env.config(provider="chatgpt"),
                CHATGPT_COOKIES,
                lines.append,
                manager=browser_env.manager,
                timeout=30,
                clock=clock,
                sleep=clock.sleep,
            )

        reminders = [line for line in lines if line.startswith("Waiting for chatgpt sign-in")]
        assert 1 < len(reminders) <= 4
        assert browser_env.clients[0].closed == 1
