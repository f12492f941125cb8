"""Persisted lifecycle markers living inside a Chrome profile directory."""
from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Awaitable, Callable, Literal, Optional

import httpx
import psutil
from loguru import logger

from webchat_driver.config import CHROME_REMOTE_HOST

LockRemovalMode = Literal["never", "if_owner_dead"]

ACTIVE_PORT_FILE = "DevToolsActivePort"
PID_FILE = "webchat-driver.pid"
LOCK_FILES = ("SingletonLock", "SingletonCookie", "SingletonSocket")


async def devtools_alive(port: int, host: str = CHROME_REMOTE_HOST, timeout: float = 2.0) -> bool:
    url = f"http://{host}:{port}/json/version"
    try:
        async with httpx.AsyncClient(trust_env=False) as client:
            resp = await client.get(url, timeout=timeout)
        resp.raise_for_status()
        return True
    except (httpx.HTTPError, OSError):
        return False


class ProfileState:
    """
    Port/pid/lock bookkeeping for one profile directory.

    Several invocations may point at the same directory at once, so writes are
    atomic and Chrome's singleton locks are only removed when the recorded owner
    process is gone.
    """

    def __init__(
        self,
        profile_dir: Path,
        *,
        pid_alive: Callable[[int], bool] = psutil.pid_exists,
        prober: Callable[[int], Awaitable[bool]] = devtools_alive,
    ) -> None:
        self.profile_dir = Path(profile_dir)
        self._pid_alive = pid_alive
        self._prober = prober

    @property
    def port_file(self) -> Path:
        return self.profile_dir / ACTIVE_PORT_FILE

    @property
    def pid_file(self) -> Path:
        return self.profile_dir / PID_FILE

    def _read_int(self, path: Path) -> Optional[int]:
        try:
            first_line = path.read_text(encoding="utf-8").splitlines()[0].strip()
        except (OSError, IndexError):
            return None
        try:
            value = int(first_line)
        except ValueError:
            logger.warning("Ignoring malformed marker {}: {!r}", path, first_line)
            return None
        return value if value > 0 else None

    def _write_atomic(self, path: Path, content: str) -> None:
        self.profile_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)

    def read_port(self) -> Optional[int]:
        return self._read_int(self.port_file)

    def write_port(self, port: int) -> None:
        self._write_atomic(self.port_file, f"{port}\n")

    def read_pid(self) -> Optional[int]:
        return self._read_int(self.pid_file)

    def write_pid(self, pid: int) -> None:
        self._write_atomic(self.pid_file, f"{pid}\n")

    async def is_reachable(self, port: int) -> bool:
        return await self._prober(port)

    def owner_alive(self) -> bool:
        pid = self.read_pid()
        return pid is not None and self._pid_alive(pid)

    async def acquire(self) -> Optional[int]:
        """Return the recorded port when Chrome still answers on it, else clean up and return None."""
        port = self.read_port()
        if port is None:
            return None
        if await self.is_reachable(port):
            return port
        logger.warning("Stale DevTools port {} in {}; cleaning profile state", port, self.profile_dir)
        self.cleanup("if_owner_dead", expected_port=port)
        return None

    def cleanup(self, mode: LockRemovalMode, *, expected_port: Optional[int] = None) -> None:
        """
        Remove stale markers.

        The port file is only removed while it still records ``expected_port``
        (when given), so a newer invocation's marker survives.
        """
        recorded = self.read_port()
        if expected_port is None or recorded == expected_port:
            self.port_file.unlink(missing_ok=True)

        if mode == "never":
            return
        if self.owner_alive():
            logger.info("Profile owner pid {} still running; keeping locks", self.read_pid())
            return

        self.pid_file.unlink(missing_ok=True)
        for name in LOCK_FILES:
            target = self.profile_dir / name
            try:
                if not target.exists() and not target.is_symlink():
                    continue
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target, ignore_errors=True)
                else:
                    target.unlink(missing_ok=True)
                logger.info("Removed stale lock file: {}", target)
            except OSError as exc:
                logger.warning("Could not remove {}: {}. Chrome might fail to start.", target, exc)


__all__ = ["LockRemovalMode", "ProfileState", "devtools_alive"]
