"""Session gateway that drives real browsers over CDP with Playwright."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from playwright.async_api import Error as PwError, async_playwright

from rpa.config import EngineConfig
from rpa.errors import GatewayError, LaunchError, ScriptEvaluationError
from rpa.gateway import LaunchResult

log = logging.getLogger(__name__)

PORT_FILE = "DevToolsActivePort"


@dataclass(slots=True)
class _Session:
    session_id: str
    profile_path: str
    browser_name: str
    port: int
    process: Optional[asyncio.subprocess.Process] = None
    playwright: Any = None
    browser: Any = None
    page: Any = None
    cdp: Any = None


def browser_args(profile_path: str, url: Optional[str] = None) -> List[str]:
    args = [
        f"--user-data-dir={profile_path}",
        "--remote-debugging-port=0",
        "--no-first-run",
        "--disable-background-networking",
    ]
    if url:
        args.append(url)
    return args


def read_devtools_port(path: Path) -> Optional[int]:
    """Return the port from a ``DevToolsActivePort`` file, if it is complete."""

    try:
        content = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    if not content:
        return None
    first = content.splitlines()[0].strip()
    try:
        port = int(first)
    except ValueError:
        return None
    return port if port > 0 else None


class PlaywrightCdpGateway:
    """Launches profile browsers with remote debugging and talks CDP to them.

    The launched browser is left running on disconnect; only the CDP
    connection is torn down.
    """

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()
        self._sessions: Dict[str, _Session] = {}

    # ------------------------------------------------------------------
    # launch
    # ------------------------------------------------------------------
    def resolve_binary(self, browser: str) -> str:
        binary = self.config.browser_binaries.get(browser.lower())
        if not binary:
            raise LaunchError(f"Unsupported browser for automation: {browser}")
        if not Path(binary).exists():
            raise LaunchError(f"{browser} not found at {binary}")
        return binary

    async def launch(self, profile_path: str, browser: str, url: Optional[str] = None) -> LaunchResult:
        binary = self.resolve_binary(browser)
        profile = Path(profile_path)
        profile.mkdir(parents=True, exist_ok=True)
        port_file = profile / PORT_FILE
        # A file left by an earlier run would point at a dead port.
        port_file.unlink(missing_ok=True)

        try:
            process = await asyncio.create_subprocess_exec(
                binary,
                *browser_args(str(profile), url),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise LaunchError(f"Failed to launch browser: {exc}") from exc

        try:
            port = await self._wait_for_port(port_file, process)
            endpoint = await self._browser_ws_url(port)
        except BaseException:
            await self._terminate(process)
            raise
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = _Session(
            session_id=session_id,
            profile_path=str(profile),
            browser_name=browser,
            port=port,
            process=process,
        )
        log.info("Launched %s for %s with CDP on port %s", browser, profile, port)
        return LaunchResult(session_id=session_id, endpoint=endpoint, port=port)

    async def _wait_for_port(self, port_file: Path, process: asyncio.subprocess.Process) -> int:
        deadline = time.monotonic() + self.config.launch_timeout_ms / 1000
        poll = self.config.launch_poll_ms / 1000
        while time.monotonic() < deadline:
            if process.returncode is not None:
                raise LaunchError(
                    f"Browser exited with code {process.returncode} before exposing CDP "
                    "(is the profile already open?)"
                )
            port = read_devtools_port(port_file)
            if port is not None:
                return port
            await asyncio.sleep(poll)
        raise LaunchError(f"Timeout waiting for browser CDP port ({self.config.launch_timeout_ms}ms)")

    async def _terminate(self, process: asyncio.subprocess.Process, *, grace: float = 5.0) -> None:
        """Stop a browser that never became usable so its profile is released."""

        if process.returncode is not None:
            return
        try:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=grace)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        except ProcessLookupError:
            return
        log.info("Terminated browser pid %s after failed launch", process.pid)

    async def _browser_ws_url(self, port: int, *, timeout: float = 5.0, poll_interval: float = 0.25) -> str:
        version_url = f"http://{self.config.cdp_host}:{port}/json/version"
        deadline = time.monotonic() + timeout
        last_error = "no response"
        async with httpx.AsyncClient(timeout=2.0) as client:
            while time.monotonic() < deadline:
                try:
                    response = await client.get(version_url)
                except httpx.HTTPError as exc:
                    last_error = str(exc)
                    log.debug("CDP endpoint %s not ready: %s", version_url, exc)
                    await asyncio.sleep(poll_interval)
                    continue
                if response.status_code != 200:
                    last_error = f"status {response.status_code}"
                    await asyncio.sleep(poll_interval)
                    continue
                try:
                    payload = response.json()
                except ValueError as exc:
                    raise LaunchError(f"Failed to parse CDP version from {version_url}") from exc
                ws_url = payload.get("webSocketDebuggerUrl") if isinstance(payload, dict) else None
                if not ws_url:
                    raise LaunchError("webSocketDebuggerUrl not found")
                return ws_url
        raise LaunchError(f"Failed to query CDP version at {version_url}: {last_error}")

    # ------------------------------------------------------------------
    # session
    # ------------------------------------------------------------------
    def _require(self, session_id: str) -> _Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise GatewayError(f"CDP session '{session_id}' not found", code="SESSION_NOT_FOUND")
        return session

    async def connect(self, session_id: str, endpoint: str) -> None:
        session = self._require(session_id)
        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.connect_over_cdp(endpoint)
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = context.pages[0] if context.pages else await context.new_page()
            cdp = await context.new_cdp_session(page)
        except PwError as exc:
            await playwright.stop()
            raise GatewayError(f"CDP connect failed: {exc}", code="CONNECT_ERROR") from exc
        session.playwright = playwright
        session.browser = browser
        session.page = page
        session.cdp = cdp
        log.info("Connected CDP session %s -> %s", session_id, endpoint)

    async def execute(self, session_id: str, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        session = self._require(session_id)
        if session.cdp is None:
            raise GatewayError(f"CDP session '{session_id}' is not connected", code="NOT_CONNECTED")
        try:
            result = await session.cdp.send(method, params or {})
        except PwError as exc:
            raise GatewayError(f"CDP error in {method}: {exc}", details={"method": method}) from exc
        return result or {}

    async def evaluate(self, session_id: str, expression: str) -> Dict[str, Any]:
        result = await self.execute(
            session_id,
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        exception = result.get("exceptionDetails")
        if exception:
            description = (exception.get("exception") or {}).get("description") or exception.get("text")
            raise ScriptEvaluationError(f"JS exception: {description}", details=exception)
        return result.get("result") or {}

    async def disconnect(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        if session.cdp is not None:
            try:
                await session.cdp.detach()
            except PwError as exc:
                log.debug("CDP detach failed for %s: %s", session_id, exc)
        if session.browser is not None:
            try:
                await session.browser.close()
            except PwError as exc:
                log.debug("Browser disconnect failed for %s: %s", session_id, exc)
        if session.playwright is not None:
            try:
                await session.playwright.stop()
            except PwError as exc:
                log.debug("Playwright shutdown failed for %s: %s", session_id, exc)
        log.info("Disconnected CDP session %s", session_id)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.disconnect(session_id)
