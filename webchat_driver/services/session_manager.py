"""Open/reuse a controlled Chrome and hand out one connected tab per request."""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from loguru import logger

from webchat_driver.clients.chrome_devtools import ChromeDevToolsClient
from webchat_driver.config import DEFAULT_PROFILE_DIR
from webchat_driver.schemas.request import BrowserConfig
from webchat_driver.utils.browser_guard import ChromeLauncher, LaunchedChrome
from webchat_driver.utils.logger import BrowserLogger, make_log
from webchat_driver.utils.profile_state import ProfileState


@dataclass
class BrowserSession:
    profile_dir: Path
    port: int
    client: ChromeDevToolsClient
    keep_browser: bool
    launched: Optional[LaunchedChrome] = None
    target_id: Optional[str] = None
    _manager: Optional["SessionManager"] = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)

    @property
    def pid(self) -> Optional[int]:
        """Pid of the Chrome launched for this session; None when an existing one was reused."""
        return self.launched.pid if self.launched else None

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._manager is not None:
            await self._manager.close_session(self, keep_alive=self.keep_browser)


class SessionManager:
    def __init__(
        self,
        *,
        launcher_factory: Callable[[BrowserConfig], ChromeLauncher] | None = None,
        client_factory: Callable[[int], ChromeDevToolsClient] = ChromeDevToolsClient,
        state_factory: Callable[[Path], ProfileState] = ProfileState,
    ) -> None:
        self._launcher_factory = launcher_factory or (
            lambda config: ChromeLauncher(binary=config.chrome_path, headless=config.headless)
        )
        self._client_factory = client_factory
        self._state_factory = state_factory

    @staticmethod
    def resolve_profile_dir(config: BrowserConfig) -> Path:
        profile_dir = Path(config.profile_dir).expanduser() if config.profile_dir else DEFAULT_PROFILE_DIR
        profile_dir.mkdir(parents=True, exist_ok=True)
        return profile_dir

    async def open_session(
        self,
        config: BrowserConfig,
        purpose: str,
        *,
        keep_browser_default: bool = False,
        log: Optional[BrowserLogger] = None,
    ) -> BrowserSession:
        emit = make_log(log)
        profile_dir = self.resolve_profile_dir(config)
        state = self._state_factory(profile_dir)
        keep_browser = config.keep_browser if config.keep_browser is not None else keep_browser_default

        launched: Optional[LaunchedChrome] = None
        port = await state.acquire()
        if port is None:
            emit(f"Launching Chrome for {purpose}.")
            launched = await self._launcher_factory(config).launch(profile_dir)
            port = launched.port
            state.write_port(port)
            if launched.pid:
                state.write_pid(launched.pid)
        else:
            emit(f"Reusing Chrome on port {port} for {purpose}.")

        client = self._client_factory(port)
        session = BrowserSession(
            profile_dir=profile_dir,
            port=port,
            client=client,
            keep_browser=keep_browser,
            launched=launched,
            _manager=self,
        )
        try:
            await client.connect()
        except BaseException:
            session.keep_browser = False
            await session.close()
            raise
        session.target_id = client.target_id
        return session

    async def close_session(self, session: BrowserSession, keep_alive: bool) -> None:
        client = session.client
        if keep_alive:
            await self._best_effort("close connection", client.close())
            return

        await self._best_effort("close tab", client.close_target())
        await self._best_effort("close connection", client.close())
        if session.launched is not None:
            await self._best_effort("terminate Chrome", session.launched.terminate())
            state = self._state_factory(session.profile_dir)
            try:
                state.cleanup("if_owner_dead", expected_port=session.port)
            except OSError as exc:
                logger.warning("Profile cleanup failed for {}: {}", session.profile_dir, exc)

    @staticmethod
    async def _best_effort(label: str, awaitable) -> None:
        try:
            await awaitable
        except Exception as exc:  # noqa: BLE001
            logger.warning("Session teardown step '{}' failed: {}", label, exc)


_default_manager = SessionManager()


@asynccontextmanager
async def browser_session(
    config: BrowserConfig,
    purpose: str,
    *,
    keep_browser_default: bool = False,
    log: Optional[BrowserLogger] = None,
    manager: Optional[SessionManager] = None,
) -> AsyncIterator[BrowserSession]:
    """Yield a connected session; it is closed on every exit path, cancellation included."""
    session = await (manager or _default_manager).open_session(
        config,
        purpose,
        keep_browser_default=keep_browser_default,
        log=log,
    )
    try:
        yield session
    finally:
        await session.close()


__all__ = ["BrowserSession", "SessionManager", "browser_session"]
