"""Primitive page actions expressed as CDP commands.

Every function takes a page session (anything with async `send` and `on`,
normally a PageSession) as its first argument. Waits are poll-based with
a fixed interval and a hard deadline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from qarunner.core.errors import (
    ConnectionClosedError,
    ElementNotFoundError,
    EvaluationError,
    ProtocolError,
    QARunnerError,
    StepTimeoutError,
)
from qarunner.models.types import ConsoleMessage, DomSnapshot, NetworkRequest
from qarunner.utils.urls import url_matches

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 50

# evaluation errors that retrying cannot fix
_SCRIPT_FAULTS = ("SyntaxError", "DOMException")


async def enable_domains(session):
    await session.send("Page.enable")
    await session.send("Runtime.enable")
    await session.send("Network.enable")


async def navigate(session, url: str, settle_ms: int = 1000) -> dict:
    """Navigate, then wait a fixed settle delay rather than for the load event."""
    result = await session.send("Page.navigate", {"url": url})
    if result.get("errorText"):
        raise ProtocolError(f"Navigation to {url} failed: {result['errorText']}")
    if settle_ms > 0:
        await asyncio.sleep(settle_ms / 1000)
    return result


async def eval_on_page(session, expression: str, await_promise: bool = False) -> Any:
    """Evaluate `expression` in the page and return its value by value."""
    result = await session.send("Runtime.evaluate", {
        "expression": expression,
        "returnByValue": True,
        "awaitPromise": await_promise,
    })
    details = result.get("exceptionDetails")
    if details:
        exc = details.get("exception") or {}
        text = exc.get("description") or details.get("text") or "Script threw"
        raise EvaluationError(text.splitlines()[0])
    return (result.get("result") or {}).get("value")


async def wait_for_selector(
    session, selector: str, timeout_ms: int = 5000, poll_ms: int = POLL_INTERVAL_MS
) -> int:
    """Poll until `selector` matches. Returns elapsed ms; raises StepTimeoutError."""
    expression = f"!!document.querySelector({json.dumps(selector)})"

    async def present() -> bool:
        return bool(await eval_on_page(session, expression))

    return await _poll(present, timeout_ms, poll_ms, f"Timed out after {timeout_ms}ms waiting for selector {selector}")


async def set_input_value(session, selector: str, value: str):
    """Focus the element, set its value and fire input + change so UI frameworks see it."""
    expression = f"""(function() {{
        const el = document.querySelector({json.dumps(selector)});
        if (!el) return {{ error: 'not_found' }};
        el.focus();
        const proto = Object.getPrototypeOf(el);
        const desc = proto && Object.getOwnPropertyDescriptor(proto, 'value');
        if (desc && desc.set) desc.set.call(el, {json.dumps(value)});
        else el.value = {json.dumps(value)};
        el.dispatchEvent(new Event('input', {{ bubbles: true }}));
        el.dispatchEvent(new Event('change', {{ bubbles: true }}));
        return {{ ok: true, value: el.value }};
    }})()"""
    result = await eval_on_page(session, expression)
    _raise_if_missing(result, selector)
    return result


async def click_selector(session, selector: str):
    expression = f"""(function() {{
        const el = document.querySelector({json.dumps(selector)});
        if (!el) return {{ error: 'not_found' }};
        if (el.scrollIntoView) el.scrollIntoView({{ block: 'center' }});
        el.click();
        return {{ ok: true, tag: el.tagName.toLowerCase() }};
    }})()"""
    result = await eval_on_page(session, expression)
    _raise_if_missing(result, selector)
    return result


async def focus_selector(session, selector: str):
    expression = f"""(function() {{
        const el = document.querySelector({json.dumps(selector)});
        if (!el) return {{ error: 'not_found' }};
        el.focus();
        return {{ ok: true, focused: document.activeElement === el }};
    }})()"""
    result = await eval_on_page(session, expression)
    _raise_if_missing(result, selector)
    return result


async def current_url(session) -> str:
    return await eval_on_page(session, "location.href") or ""


async def wait_for_navigation(
    session,
    expected_url: str | None = None,
    timeout_ms: int = 5000,
    poll_ms: int = POLL_INTERVAL_MS,
) -> str:
    """Poll location.href until it matches the glob `expected_url`. Returns the matched URL.

    Without a pattern, the first successful location read counts as done.
    """
    last_seen = {"url": ""}

    async def matched() -> bool:
        href = await current_url(session)
        last_seen["url"] = href
        return bool(href) and (not expected_url or url_matches(href, expected_url))

    message = f"Timed out after {timeout_ms}ms waiting for URL {expected_url or '(any)'}"
    try:
        await _poll(matched, timeout_ms, poll_ms, message)
    except StepTimeoutError as e:
        raise StepTimeoutError(f"{e} (last URL: {last_seen['url'] or 'unknown'})", timeout_ms) from None
    return last_seen["url"]


class EventCapture:
    """Accumulates console and network events for one page session into caller-owned lists."""

    def __init__(self, console_messages: list[ConsoleMessage], network_requests: list[NetworkRequest]):
        self.console_messages = console_messages
        self.network_requests = network_requests
        self._by_id: dict[str, NetworkRequest] = {}
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self, session):
        for method, handler in (
            ("Runtime.consoleAPICalled", self._on_console_api),
            ("Log.entryAdded", self._on_log_entry),
            ("Runtime.exceptionThrown", self._on_exception),
            ("Network.requestWillBeSent", self._on_request),
            ("Network.responseReceived", self._on_response),
            ("Network.loadingFailed", self._on_loading_failed),
        ):
            self._unsubscribers.append(session.on(method, handler))

    def stop(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _on_console_api(self, params: dict):
        parts = []
        for arg in params.get("args") or []:
            if "value" in arg:
                val = arg["value"]
                parts.append(val if isinstance(val, str) else json.dumps(val))
            else:
                parts.append(arg.get("description") or arg.get("type", ""))
        self.console_messages.append(ConsoleMessage(params.get("type", "log"), " ".join(parts)))

    def _on_log_entry(self, params: dict):
        entry = params.get("entry") or {}
        self.console_messages.append(ConsoleMessage(entry.get("level", "info"), entry.get("text", "")))

    def _on_exception(self, params: dict):
        details = params.get("exceptionDetails") or {}
        exc = details.get("exception") or {}
        text = exc.get("description") or details.get("text") or "Uncaught exception"
        self.console_messages.append(ConsoleMessage("error", text.splitlines()[0]))

    def _on_request(self, params: dict):
        request = params.get("request") or {}
        req_id = params.get("requestId", "")
        # redirects reuse the request id; keep the first entry
        if req_id in self._by_id:
            return
        entry = NetworkRequest(
            id=req_id,
            url=request.get("url", ""),
            method=request.get("method", "GET"),
            started_at=params.get("timestamp"),
        )
        self._by_id[req_id] = entry
        self.network_requests.append(entry)

    def _on_response(self, params: dict):
        entry = self._by_id.get(params.get("requestId", ""))
        if entry is None:
            return
        entry.status = (params.get("response") or {}).get("status")
        ts = params.get("timestamp")
        if ts is not None and entry.started_at is not None:
            entry.response_time = max(0, round((ts - entry.started_at) * 1000))

    def _on_loading_failed(self, params: dict):
        entry = self._by_id.get(params.get("requestId", ""))
        if entry is not None:
            entry.failed = params.get("errorText") or "failed"


async def start_event_capture(
    session,
    console_messages: list[ConsoleMessage],
    network_requests: list[NetworkRequest],
) -> EventCapture:
    capture = EventCapture(console_messages, network_requests)
    capture.attach(session)
    await session.send("Log.enable")
    await session.send("Runtime.enable")
    await session.send("Network.enable")
    return capture


async def capture_screenshot(session) -> str | None:
    """Base64 PNG of the current frame, or None. Never raises for protocol failures."""
    try:
        result = await session.send("Page.captureScreenshot", {"format": "png"})
    except QARunnerError as e:
        logger.debug("Screenshot capture failed: %s", e)
        return None
    return result.get("data")


_DOM_SNAPSHOT_JS = """(function() {
    const has = (sel) => !!document.querySelector(sel);
    return {
        finalTitle: document.title || '',
        finalUrl: location.href,
        elementsFound: {
            nav: has('nav, [role="navigation"]'),
            main: has('main, [role="main"]'),
            header: has('header, [role="banner"]'),
            footer: has('footer, [role="contentinfo"]'),
            form: has('form'),
            h1: has('h1'),
        },
    };
})()"""


async def dom_snapshot(session) -> DomSnapshot | None:
    try:
        data = await eval_on_page(session, _DOM_SNAPSHOT_JS)
    except QARunnerError as e:
        logger.debug("DOM snapshot failed: %s", e)
        return None
    if not isinstance(data, dict):
        return None
    return DomSnapshot(
        final_title=data.get("finalTitle", ""),
        final_url=data.get("finalUrl", ""),
        elements_found={k: bool(v) for k, v in (data.get("elementsFound") or {}).items()},
    )


def _raise_if_missing(result, selector: str):
    if not isinstance(result, dict) or result.get("error") == "not_found":
        raise ElementNotFoundError(selector)


async def _poll(check, timeout_ms: int, poll_ms: int, message: str) -> int:
    """Run `check` every poll_ms until it returns True. Returns elapsed ms.

    Evaluation/command errors (e.g. the context being replaced mid-navigation)
    count as "not yet"; a closed connection or a script fault such as an
    invalid selector propagates immediately.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + timeout_ms / 1000
    while True:
        try:
            if await check():
                return round((loop.time() - start) * 1000)
        except ConnectionClosedError:
            raise
        except EvaluationError as e:
            if str(e).startswith(_SCRIPT_FAULTS):
                raise
            logger.debug("Poll check raised: %s", e)
        except ProtocolError as e:
            logger.debug("Poll check raised: %s", e)
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise StepTimeoutError(message, timeout_ms)
        await asyncio.sleep(min(poll_ms / 1000, remaining))
