"""Headless browser process launcher.

Resolves a Chromium-family executable, reserves a free debugging port,
spawns the browser headless with a throwaway profile and polls
`/json/version` until the debugging endpoint answers. Startup time is not
deterministic, so readiness is polled rather than slept for.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import socket
import subprocess
import sys
import tempfile
from dataclasses import dataclass, field

import httpx

from qarunner.config import EXECUTABLE_ENV_VARS, Settings, load_settings
from qarunner.core.errors import BrowserLaunchError, BrowserNotFoundError, BrowserStartTimeoutError

logger = logging.getLogger(__name__)

_COMMAND_NAMES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "microsoft-edge",
    "microsoft-edge-stable",
    "chrome",
]

_KNOWN_PATHS = {
    "linux": [
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/snap/bin/chromium",
        "/usr/bin/microsoft-edge",
        "/opt/google/chrome/chrome",
    ],
    "darwin": [
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
        "/Applications/Chromium.app/Contents/MacOS/Chromium",
        "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
    ],
    "win32": [
        r"C:\Program Files\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
        r"C:\Program Files\Microsoft\Edge\Application\msedge.exe",
        r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
    ],
}

LAUNCH_FLAGS = [
    "--headless=new",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--remote-allow-origins=*",
]

_POLL_INTERVAL = 0.1


@dataclass
class BrowserProcess:
    """One spawned headless browser. Terminated by `terminate()` exactly once."""

    process: asyncio.subprocess.Process
    port: int
    executable: str
    user_data_dir: str | None = None
    ws_url: str = ""
    _terminated: bool = field(default=False, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None

    async def terminate(self, grace: float = 5.0):
        if self._terminated:
            return
        self._terminated = True
        try:
            if self.process.returncode is None:
                _signal_tree(self.process, signal.SIGTERM)
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning("Browser pid=%s ignored SIGTERM, killing", self.pid)
                    _signal_tree(self.process, getattr(signal, "SIGKILL", signal.SIGTERM))
                    await self.process.wait()
            logger.info("Browser pid=%s on port %d terminated", self.pid, self.port)
        finally:
            if self.user_data_dir:
                shutil.rmtree(self.user_data_dir, ignore_errors=True)


def _signal_tree(process: asyncio.subprocess.Process, sig: int):
    """Signal the browser's whole process group so renderer children go too."""
    try:
        if os.name == "posix":
            os.killpg(process.pid, sig)
        elif sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()
    except ProcessLookupError:
        pass


def candidate_executables(
    preferred: str | None = None,
    env: dict[str, str] | None = None,
    platform: str | None = None,
) -> list[str]:
    """Ordered list of executables to try: explicit path, env vars, then well-known names/paths."""
    env = os.environ if env is None else env
    platform = platform or sys.platform
    if platform.startswith("linux"):
        platform = "linux"

    candidates: list[str] = []
    if preferred:
        candidates.append(preferred)
    for key in EXECUTABLE_ENV_VARS:
        if env.get(key):
            candidates.append(env[key])
    candidates.extend(_COMMAND_NAMES)
    candidates.extend(_KNOWN_PATHS.get(platform, []))
    return candidates


def resolve_executable(
    preferred: str | None = None,
    env: dict[str, str] | None = None,
    platform: str | None = None,
) -> str:
    tried = []
    for candidate in candidate_executables(preferred, env, platform):
        tried.append(candidate)
        if os.sep in candidate or (os.altsep and os.altsep in candidate):
            if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                return candidate
            continue
        found = shutil.which(candidate)
        if found:
            return found
    raise BrowserNotFoundError(tried)


def find_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for an unused TCP port, then release it for the browser to bind."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def build_args(executable: str, port: int, user_data_dir: str) -> list[str]:
    return [
        executable,
        f"--remote-debugging-port={port}",
        f"--user-data-dir={user_data_dir}",
        *LAUNCH_FLAGS,
        "about:blank",
    ]


async def wait_for_endpoint(
    port: int,
    timeout_ms: int = 5000,
    process: asyncio.subprocess.Process | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Poll the version endpoint until it answers; return the browser WebSocket URL."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    url = f"http://127.0.0.1:{port}/json/version"
    last_error = ""

    async with httpx.AsyncClient(timeout=1.0, transport=transport) as client:
        while True:
            if process is not None and process.returncode is not None:
                raise BrowserStartTimeoutError(
                    port, timeout_ms, f"process exited with code {process.returncode}"
                )
            try:
                resp = await client.get(url)
                if resp.status_code == 200:
                    ws_url = resp.json().get("webSocketDebuggerUrl")
                    if ws_url:
                        return ws_url
                    last_error = "version info has no webSocketDebuggerUrl"
                else:
                    last_error = f"HTTP {resp.status_code}"
            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e) or type(e).__name__

            if loop.time() >= deadline:
                raise BrowserStartTimeoutError(port, timeout_ms, last_error)
            await asyncio.sleep(_POLL_INTERVAL)


async def launch_browser(
    preferred_path: str | None = None,
    port: int | None = None,
    settings: Settings | None = None,
) -> BrowserProcess:
    """Spawn a headless browser and return once its debugging endpoint is reachable."""
    settings = settings or load_settings()
    executable = resolve_executable(preferred_path or settings.executable_path)
    port = port or find_free_port()
    user_data_dir = tempfile.mkdtemp(prefix="qarunner_profile_")

    try:
        process = await asyncio.create_subprocess_exec(
            *build_args(executable, port, user_data_dir),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        shutil.rmtree(user_data_dir, ignore_errors=True)
        raise BrowserLaunchError(f"Failed to start {executable}: {e}") from e

    browser = BrowserProcess(
        process=process, port=port, executable=executable, user_data_dir=user_data_dir
    )
    logger.info("Launched %s pid=%s debugging port %d", executable, process.pid, port)

    try:
        browser.ws_url = await wait_for_endpoint(
            port, settings.browser_start_timeout_ms, process=process
        )
    except BaseException:
        # includes cancellation by an outer timeout
        await browser.terminate()
        raise
    return browser
