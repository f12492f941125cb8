"""Async client controlling one Chrome tab via the DevTools protocol."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx
from loguru import logger
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from webchat_driver.config import CHROME_REMOTE_HOST
from webchat_driver.errors import ProtocolError, Timeout


class ChromeDevToolsClient:
    def __init__(
        self,
        port: int,
        *,
        host: str = CHROME_REMOTE_HOST,
        initial_url: str = "about:blank",
    ) -> None:
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self.initial_url = initial_url
        self.session: Optional[ClientConnection] = None
        self.target_id: Optional[str] = None
        self._msg_id = 0
        self._pending_requests: Dict[int, asyncio.Future] = {}
        self._read_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.session is not None and self.session.state is State.OPEN

    async def _create_target(self) -> Tuple[str, str]:
        """
        Open a fresh tab and return ``(webSocketDebuggerUrl, targetId)``.

        Current Chrome only accepts PUT on /json/new; older builds take GET and
        some embedders want POST with a JSON body.
        """
        encoded = quote(self.initial_url, safe=":/?=&%")
        new_url = f"{self.base_url}/json/new?{encoded}"
        async with httpx.AsyncClient(trust_env=False) as client:
            resp = await client.put(new_url, timeout=5)
            if resp.status_code == 405:
                resp = await client.get(new_url, timeout=5)
            if resp.status_code == 405:
                resp = await client.post(
                    f"{self.base_url}/json/new",
                    json={"url": self.initial_url},
                    timeout=5,
                )
            resp.raise_for_status()
            data = resp.json()
        return data["webSocketDebuggerUrl"], data["id"]

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            ws_url, target_id = await self._create_target()
            self.target_id = target_id
            self.session = await connect(ws_url, close_timeout=1, max_size=None)
        except (httpx.HTTPError, OSError, WebSocketException, KeyError, ValueError) as exc:
            raise ProtocolError(f"Could not open DevTools target on port {self.port}: {exc}") from exc
        logger.debug("Connected to Chrome target {}", self.target_id)

        self._read_task = asyncio.create_task(self._read_loop())

        for domain in ("Page", "Runtime", "Network", "DOM"):
            await self.send(f"{domain}.enable")

    async def _read_loop(self) -> None:
        """Resolve pending command futures until the socket closes; events are ignored."""
        assert self.session
        try:
            async for raw in self.session:
                try:
                    data = json.loads(raw)
                except ValueError as exc:
                    logger.error("Undecodable DevTools message: {}", exc)
                    continue
                msg_id = data.get("id")
                if msg_id is None:
                    continue
                future = self._pending_requests.pop(msg_id, None)
                if future is None or future.done():
                    continue
                if "error" in data:
                    error = data["error"]
                    future.set_exception(
                        ProtocolError(f"DevTools error {error.get('code')}: {error.get('message')}"),
                    )
                else:
                    future.set_result(data.get("result") or {})
        except ConnectionClosed as exc:
            logger.warning("DevTools read loop terminated: {}", exc)
        finally:
            for future in self._pending_requests.values():
                if not future.done():
                    future.set_exception(ProtocolError("DevTools connection closed"))
            self._pending_requests.clear()

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.connected:
            raise ProtocolError(f"DevTools connection is closed (calling {method})")
        assert self.session
        self._msg_id += 1
        msg_id = self._msg_id

        payload: Dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            payload["params"] = params

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[msg_id] = future
        try:
            await self.session.send(json.dumps(payload))
        except ConnectionClosed as exc:
            self._pending_requests.pop(msg_id, None)
            raise ProtocolError(f"DevTools connection closed while sending {method}") from exc
        try:
            return await future
        finally:
            self._pending_requests.pop(msg_id, None)

    async def evaluate(self, expression: str) -> Any:
        result = await self.send(
            "Runtime.evaluate",
            {"expression": expression, "awaitPromise": True, "returnByValue": True},
        )
        details = result.get("exceptionDetails")
        if details:
            exception = details.get("exception") or {}
            text = exception.get("description") or details.get("text") or "unknown error"
            raise ProtocolError(f"In-page script failed: {text}")
        return (result.get("result") or {}).get("value")

    async def navigate(self, url: str, timeout: float = 45.0) -> None:
        logger.info("Navigating Chrome target to {}", url)
        await self.send("Page.navigate", {"url": url})
        await self.wait_for_ready(timeout=timeout)

    async def wait_for_ready(self, timeout: float = 45.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        ready_state = None
        while loop.time() < deadline:
            ready_state = await self.evaluate("document.readyState")
            if ready_state in ("interactive", "complete"):
                return
            await asyncio.sleep(0.1)
        raise Timeout("Page did not reach ready state in time", last_state=ready_state)

    # Input domain

    async def dispatch_key_event(self, event_type: str, key: str, **extra: Any) -> None:
        params: Dict[str, Any] = {"type": event_type, "key": key}
        params.update(extra)
        await self.send("Input.dispatchKeyEvent", params)

    async def press_enter(self) -> None:
        common = {"code": "Enter", "windowsVirtualKeyCode": 13, "nativeVirtualKeyCode": 13}
        await self.dispatch_key_event("keyDown", "Enter", text="\r", **common)
        await self.dispatch_key_event("keyUp", "Enter", **common)

    # DOM domain

    async def get_document(self) -> Dict[str, Any]:
        result = await self.send("DOM.getDocument", {"depth": 0})
        return result.get("root", {})

    async def query_selector(self, node_id: int, selector: str) -> Optional[int]:
        result = await self.send("DOM.querySelector", {"nodeId": node_id, "selector": selector})
        return result.get("nodeId") or None

    async def set_file_input_files(self, node_id: int, files: Sequence[str]) -> None:
        await self.send("DOM.setFileInputFiles", {"nodeId": node_id, "files": list(files)})

    # Network domain

    async def get_cookies(self, urls: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        params = {"urls": list(urls)} if urls else None
        result = await self.send("Network.getCookies", params)
        return result.get("cookies", [])

    async def set_cookies(self, cookies: Sequence[Dict[str, Any]]) -> None:
        await self.send("Network.setCookies", {"cookies": list(cookies)})

    # Page domain

    async def capture_screenshot(self) -> Optional[str]:
        result = await self.send("Page.captureScreenshot", {"format": "png"})
        return result.get("data")

    async def close(self) -> None:
        if self.session:
            try:
                await self.session.close()
            except (WebSocketException, OSError):
                pass
        self.session = None
        if self._read_task and not self._read_task.done():
            self._read_task.cancel()
        self._read_task = None

    async def close_target(self) -> None:
        if not self.target_id:
            return
        close_url = f"{self.base_url}/json/close/{self.target_id}"
        try:
            async with httpx.AsyncClient(trust_env=False) as client:
                await client.get(close_url, timeout=3)
        except httpx.HTTPError as exc:
            logger.debug("Closing target {} failed: {}", self.target_id, exc)
        self.target_id = None


__all__ = ["ChromeDevToolsClient"]
