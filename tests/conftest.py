from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest

from qarunner.config import Settings


_CLOSE = object()


class FakeSocket:
    """Stands in for a websockets client connection.

    `responder(message) -> dict | None` may answer commands automatically:
    return a result dict, or a dict with an "error" key to send an error reply.
    """

    def __init__(self, responder: Callable[[dict], Any] | None = None):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()
        self._responder = responder

    async def send(self, data: str):
        if self.closed:
            raise OSError("socket is closed")
        msg = json.loads(data)
        self.sent.append(msg)
        if self._responder is not None:
            reply = self._responder(msg)
            if reply is not None:
                if "error" in reply:
                    self.push({"id": msg["id"], "error": reply["error"]})
                else:
                    self.push({"id": msg["id"], "result": reply})

    def push(self, message: dict):
        self._incoming.put_nowait(json.dumps(message))

    def remote_close(self):
        self._incoming.put_nowait(_CLOSE)

    def fail(self, exc: BaseException):
        self._incoming.put_nowait(exc)

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakePage:
    """Page session double: scripted `send` plus event subscription."""

    def __init__(self, handler: Callable[[str, dict], Any] | None = None):
        self.calls: list[tuple[str, dict]] = []
        self._handler = handler or (lambda method, params: {})
        self._listeners: dict[str, list] = {}

    async def send(self, method: str, params: dict | None = None, timeout: float | None = None) -> dict:
        params = params or {}
        self.calls.append((method, params))
        result = self._handler(method, params)
        if isinstance(result, BaseException):
            raise result
        return result if result is not None else {}

    def on(self, method: str, handler):
        self._listeners.setdefault(method, []).append(handler)

        def unsubscribe():
            self._listeners[method].remove(handler)

        return unsubscribe

    def emit(self, method: str, params: dict):
        for handler in list(self._listeners.get(method, [])):
            handler(params)

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


def evaluate_returning(*values):
    """Handler whose Runtime.evaluate results walk through `values`, repeating the last."""
    remaining = list(values)

    def handler(method, params):
        if method != "Runtime.evaluate":
            return {}
        value = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return {"result": {"type": "object", "value": value}}

    return handler


class FakeConnection:
    def __init__(self, page: FakePage | None = None):
        self.page = page or FakePage(_default_page_handler)
        self.closed = False

    async def create_page_session(self, url: str = "about:blank"):
        if self.closed:
            raise AssertionError("session created on closed connection")
        return self.page

    async def close(self):
        self.closed = True


def _default_page_handler(method, params):
    if method == "Page.captureScreenshot":
        return {"data": "iVBORw0KGgo="}
    if method == "Runtime.evaluate":
        return {"result": {"type": "object", "value": {
            "finalTitle": "Dashboard",
            "finalUrl": "http://app.test/dashboard",
            "elementsFound": {"nav": True, "main": True},
        }}}
    return {}


class FakeBrowser:
    live: list["FakeBrowser"] = []

    def __init__(self):
        self.ws_url = "ws://127.0.0.1:9999/devtools/browser/fake"
        self.terminated = False
        FakeBrowser.live.append(self)

    async def terminate(self):
        self.terminated = True
        FakeBrowser.live.remove(self)


@pytest.fixture
def settings() -> Settings:
    return Settings(base_url="http://app.test", nav_settle_ms=0, test_timeout_ms=5000, http_timeout_ms=2000)


@pytest.fixture(autouse=True)
def _reset_fake_browsers():
    FakeBrowser.live = []
    yield
    FakeBrowser.live = []
