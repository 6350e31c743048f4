"""HTTP-assertion fallback runner.

Executes declarative HTTP steps in order with their own per-call timeout
and checks status code, required substring and forbidden substring.
"""

from __future__ import annotations

import json
import logging
import time

import httpx

from qarunner.config import Settings, load_settings
from qarunner.models.test_case import HttpStep, TestCase
from qarunner.models.types import HttpStepLog, RunStatus, TestRunResult
from qarunner.utils.urls import resolve_url

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Content-Type": "application/json"}


def check_response(step: HttpStep, status_code: int, text: str) -> str | None:
    """Return a description of the first failed expectation, or None."""
    expect = step.expect
    if expect.status is not None and status_code != expect.status:
        return f"Expected status {expect.status}, got {status_code}"
    if expect.contains is not None and expect.contains not in text:
        return f"Response does not contain required text {expect.contains!r}"
    if expect.not_contains is not None and expect.not_contains in text:
        return f"Response contains forbidden text {expect.not_contains!r}"
    return None


class HttpRunner:
    """Runs HttpStep sequences with httpx."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or load_settings()
        self._transport = transport

    async def run(self, test_case: TestCase) -> TestRunResult:
        start = time.monotonic()
        logs: list[HttpStepLog] = []
        errors: list[str] = []

        timeout = httpx.Timeout(self.settings.http_timeout_ms / 1000)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True) as client:
            for step in test_case.http_requests:
                entry = await self._run_step(client, step, test_case)
                logs.append(entry)
                if not entry.ok:
                    errors.append(entry.error or "HTTP step failed")
                    if test_case.stop_on_first_failure:
                        break

        return TestRunResult(
            status=RunStatus.FAILED if errors else RunStatus.PASSED,
            duration_ms=int((time.monotonic() - start) * 1000),
            errors=errors,
            logs=logs,
        )

    async def _run_step(self, client: httpx.AsyncClient, step: HttpStep, test_case: TestCase) -> HttpStepLog:
        method = (step.method or "GET").upper()
        url = resolve_url(self.settings.base_url, step.url or test_case.page_url or "/")
        headers = step.headers if step.headers is not None else dict(DEFAULT_HEADERS)
        body = step.body
        if body is not None and not isinstance(body, str):
            body = json.dumps(body)

        entry = HttpStepLog(method=method, url=url)
        t0 = time.monotonic()
        try:
            resp = await client.request(method, url, headers=headers, content=body)
            entry.status = resp.status_code
            entry.error = check_response(step, resp.status_code, resp.text)
            entry.ok = entry.error is None
        except httpx.TimeoutException:
            entry.error = f"Request timed out after {self.settings.http_timeout_ms}ms"
        except httpx.HTTPError as e:
            entry.error = str(e) or f"Request failed ({type(e).__name__})"
        entry.duration_ms = int((time.monotonic() - t0) * 1000)

        if not entry.ok:
            logger.info("HTTP step %s %s failed: %s", method, url, entry.error)
        return entry
