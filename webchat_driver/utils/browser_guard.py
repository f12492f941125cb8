"""Launches and stops the Chrome process bound to a profile directory."""
from __future__ import annotations

import asyncio
import os
import shlex
import socket
import subprocess
from pathlib import Path
from typing import List, Optional

from loguru import logger

from webchat_driver.config import (
    CHROME_BINARY,
    CHROME_EXTRA_ARGS,
    CHROME_HEADLESS,
    CHROME_REMOTE_HOST,
    CHROME_STARTUP_TIMEOUT,
)
from webchat_driver.errors import BrowserLaunchError
from webchat_driver.utils.profile_state import devtools_alive


def find_free_port(host: str = CHROME_REMOTE_HOST) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


class LaunchedChrome:
    """Handle for a Chrome process started by this invocation."""

    def __init__(self, proc: asyncio.subprocess.Process, port: int) -> None:
        self.proc = proc
        self.port = port

    @property
    def pid(self) -> Optional[int]:
        return self.proc.pid

    async def terminate(self) -> None:
        if self.proc.returncode is not None:
            return
        logger.info("Shutting down managed Chrome instance (pid={})", self.proc.pid)
        try:
            self.proc.terminate()
            await asyncio.wait_for(self.proc.wait(), timeout=3)
        except (asyncio.TimeoutError, ProcessLookupError):
            logger.warning("Chrome did not exit gracefully, forcing kill.")
            try:
                self.proc.kill()
                await asyncio.wait_for(self.proc.wait(), timeout=2)
            except (asyncio.TimeoutError, ProcessLookupError) as exc:
                logger.error("Failed to kill Chrome process: {}", exc)


class ChromeLauncher:
    """Starts Chrome with remote debugging on a fresh port."""

    def __init__(
        self,
        *,
        binary: str | None = None,
        headless: bool | None = None,
        extra_args: str | None = None,
        startup_timeout: float | None = None,
    ) -> None:
        self.binary = binary or CHROME_BINARY
        self.headless = CHROME_HEADLESS if headless is None else headless
        self.extra_args = self._parse_extra_args(CHROME_EXTRA_ARGS if extra_args is None else extra_args)
        self.startup_timeout = CHROME_STARTUP_TIMEOUT if startup_timeout is None else startup_timeout

    @staticmethod
    def _parse_extra_args(raw: str) -> List[str]:
        if not raw:
            return []
        # Windows paths contain spaces; shlex handles the quoting.
        return [part for part in shlex.split(raw, posix=os.name != "nt") if part]

    def build_args(self, profile_dir: Path, port: int) -> List[str]:
        args = [
            self.binary,
            f"--remote-debugging-port={port}",
            f"--remote-debugging-address={CHROME_REMOTE_HOST}",
            f"--user-data-dir={profile_dir}",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-blink-features=AutomationControlled",
        ]
        if self.headless:
            args.append("--headless=new")
            args.append("--window-size=1920,1080")
        else:
            args.extend([
                "--start-maximized",
                "--disable-infobars",
                "--use-mock-keychain",
            ])
        args.extend(self.extra_args)
        return args

    async def launch(self, profile_dir: Path) -> LaunchedChrome:
        port = find_free_port()
        args = self.build_args(profile_dir, port)

        creationflags = 0
        if os.name == "nt" and hasattr(subprocess, "CREATE_NO_WINDOW"):
            creationflags = subprocess.CREATE_NO_WINDOW  # type: ignore[attr-defined]

        logger.info("Launching managed Chrome instance: {}", " ".join(args))
        stderr_path = Path(profile_dir) / "chrome_stderr.log"
        stderr_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with stderr_path.open("wb") as stderr:
                proc = await asyncio.create_subprocess_exec(
                    *args,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=stderr,
                    creationflags=creationflags,
                )
        except OSError as exc:
            raise BrowserLaunchError(f"Could not start Chrome ({self.binary}): {exc}") from exc

        launched = LaunchedChrome(proc, port)
        try:
            await self._wait_until_ready(launched)
        except BaseException:
            await launched.terminate()
            raise
        return launched

    async def _wait_until_ready(self, launched: LaunchedChrome) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout
        while loop.time() < deadline:
            if await devtools_alive(launched.port):
                return
            if launched.proc.returncode is not None:
                raise BrowserLaunchError(
                    f"Chrome exited during startup with code {launched.proc.returncode}; "
                    "see chrome_stderr.log in the profile directory",
                )
            await asyncio.sleep(0.4)
        raise BrowserLaunchError(
            f"Chrome DevTools port {launched.port} did not come up within {self.startup_timeout:.0f}s",
        )


__all__ = ["ChromeLauncher", "LaunchedChrome", "find_free_port"]
