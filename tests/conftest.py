"""Shared fixtures: a fake clock, a fake DevTools client and a fake Chrome launcher."""

import os
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

# Point data/log/profile dirs somewhere disposable before the package is imported.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="webchat-driver-tests-"))
os.environ.setdefault("DATA_DIR", str(_TEST_ROOT / "data"))
os.environ.setdefault("LOG_DIR", str(_TEST_ROOT / "logs"))
os.environ.setdefault("WEBCHAT_PROFILE_DIR", str(_TEST_ROOT / "profile"))

from webchat_driver.schemas.request import BrowserConfig  # noqa: E402
from webchat_driver.services.session_manager import SessionManager  # noqa: E402
from webchat_driver.utils.profile_state import ProfileState  # noqa: E402


class FakeClock:
    """Monotonic clock whose ``sleep`` just advances time."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCDPClient:
    """Records what the engine asks of Chrome; ``evaluate`` is delegated to a handler."""

    def __init__(self, port: int) -> None:
        self.port = port
        self.target_id = f"target-{port}"
        self.evaluate_handler: Optional[Callable[[str], Any]] = None
        self.cookie_batches: List[List[Dict[str, Any]]] = []
        self.connect_error: Optional[BaseException] = None
        self.navigated: List[str] = []
        self.cookies_set: List[List[Dict[str, Any]]] = []
        self.files_set: List[List[str]] = []
        self.closed = 0
        self.targets_closed = 0

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error

    async def evaluate(self, expression: str) -> Any:
        if self.evaluate_handler is None:
            return None
        return self.evaluate_handler(expression)

    async def navigate(self, url: str, timeout: float = 45.0) -> None:
        self.navigated.append(url)

    async def get_cookies(self, urls=None) -> List[Dict[str, Any]]:
        if not self.cookie_batches:
            return []
        if len(self.cookie_batches) > 1:
            return self.cookie_batches.pop(0)
        return self.cookie_batches[0]

    async def set_cookies(self, cookies) -> None:
        self.cookies_set.append(list(cookies))

    async def get_document(self) -> Dict[str, Any]:
        return {"nodeId": 1}

    async def query_selector(self, node_id: int, selector: str) -> Optional[int]:
        return 7

    async def set_file_input_files(self, node_id: int, files) -> None:
        self.files_set.append(list(files))

    async def capture_screenshot(self) -> Optional[str]:
        return None

    async def close(self) -> None:
        self.closed += 1

    async def close_target(self) -> None:
        self.targets_closed += 1


class FakeLaunchedChrome:
    def __init__(self, pid: int, port: int, alive_pids: set) -> None:
        self.pid = pid
        self.port = port
        self.terminated = 0
        self._alive_pids = alive_pids

    async def terminate(self) -> None:
        self.terminated += 1
        self._alive_pids.discard(self.pid)


class FakeLauncher:
    def __init__(self, alive_pids: set) -> None:
        self.launches: List[Path] = []
        self.launched: List[FakeLaunchedChrome] = []
        self._alive_pids = alive_pids

    async def launch(self, profile_dir: Path) -> FakeLaunchedChrome:
        self.launches.append(profile_dir)
        chrome = FakeLaunchedChrome(pid=4000 + len(self.launches), port=9500 + len(self.launches), alive_pids=self._alive_pids)
        self._alive_pids.add(chrome.pid)
        self.launched.append(chrome)
        return chrome


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def browser_env(tmp_path):
    """SessionManager wired to fakes; ``reachable`` holds ports that answer /json/version."""
    env = SimpleNamespace(
        profile_dir=tmp_path / "profile",
        reachable=set(),
        alive_pids=set(),
        clients=[],
        client_setup=None,
    )
    env.launcher = FakeLauncher(env.alive_pids)

    async def prober(port: int) -> bool:
        return port in env.reachable

    def make_state(profile_dir: Path) -> ProfileState:
        return ProfileState(profile_dir, pid_alive=lambda pid: pid in env.alive_pids, prober=prober)

    def make_client(port: int) -> FakeCDPClient:
        client = FakeCDPClient(port)
        if env.client_setup is not None:
            env.client_setup(client)
        env.clients.append(client)
        return client

    env.state = make_state
    env.manager = SessionManager(
        launcher_factory=lambda config: env.launcher,
        client_factory=make_client,
        state_factory=make_state,
    )
    env.config = lambda **kwargs: BrowserConfig(profile_dir=str(env.profile_dir), **kwargs)
    return env
