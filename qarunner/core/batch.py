"""Batch execution of many test cases at bounded concurrency.

Test cases are run in consecutive batches of `concurrency` runs each; every
run launches its own browser, so the cap bounds how many browser processes
exist at once. One test's failure or crash never stops the batch.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from qarunner.config import Settings, clamp_concurrency, load_settings
from qarunner.core.test_runner import execute_test_case
from qarunner.models.test_case import TestCase
from qarunner.models.types import TestRunResult

logger = logging.getLogger(__name__)

ResultCallback = Callable[[Any, TestRunResult], Any]


class CancellationToken:
    """Cooperative stop signal for one batch, checked between batches."""

    def __init__(self):
        self._cancelled = False
        self.reason = ""

    def cancel(self, reason: str = "cancelled"):
        self._cancelled = True
        self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _chunk(items: list, size: int) -> list[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _describe(raw: Any) -> tuple[str, str]:
    if isinstance(raw, TestCase):
        return raw.test_id or "unknown", raw.title or ""
    if isinstance(raw, dict):
        test_id = raw.get("testId", raw.get("test_id", raw.get("id")))
        return (str(test_id) if test_id is not None else "unknown"), str(raw.get("title") or "")
    return "unknown", ""


async def execute_all(
    test_cases: list[TestCase | dict],
    concurrency: int | None = None,
    settings: Settings | None = None,
    *,
    on_result: ResultCallback | None = None,
    token: CancellationToken | None = None,
    execute: Callable[[Any], Awaitable[TestRunResult]] | None = None,
    on_progress: Callable[[str, dict], None] | None = None,
) -> dict:
    """Run every test case and return a summary of the whole batch.

    `on_result(test_case, result)` is called (and awaited if it returns an
    awaitable) after each run, typically to persist the result.
    """
    settings = settings or load_settings()
    concurrency = clamp_concurrency(concurrency, settings.concurrency)
    execute = execute or (lambda tc: execute_test_case(tc, settings))
    emit = on_progress or (lambda *_: None)

    started = time.monotonic()
    summary: dict[str, Any] = {
        "mode": "parallel",
        "concurrency": concurrency,
        "total": len(test_cases),
        "executed": 0,
        "passed": 0,
        "failed": 0,
        "cancelled": False,
        "startedAt": _now_iso(),
        "endedAt": None,
        "durationMs": 0,
        "details": [],
    }

    async def run_one(raw):
        t0 = time.monotonic()
        started_at = _now_iso()
        result = await execute(raw)
        if on_result is not None:
            ret = on_result(raw, result)
            if inspect.isawaitable(ret):
                await ret
        test_id, title = _describe(raw)
        return {
            "testId": test_id,
            "title": title,
            "status": result.status.value,
            "executionTime": f"{int((time.monotonic() - t0) * 1000)}ms",
            "startedAt": started_at,
            "endedAt": _now_iso(),
        }

    for batch in _chunk(list(test_cases), concurrency):
        if token is not None and token.cancelled:
            summary["cancelled"] = True
            logger.info("Batch cancelled (%s) with %d test(s) not run", token.reason,
                        summary["total"] - summary["executed"])
            break

        outcomes = await asyncio.gather(*(run_one(tc) for tc in batch), return_exceptions=True)
        for raw, outcome in zip(batch, outcomes):
            summary["executed"] += 1
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                test_id, title = _describe(raw)
                logger.error("Test %s raised during batch: %s", test_id, outcome)
                detail = {"testId": test_id, "title": title or "Execution error",
                          "status": "error", "error": str(outcome) or type(outcome).__name__}
                summary["failed"] += 1
            else:
                detail = outcome
                if detail["status"] == "passed":
                    summary["passed"] += 1
                elif detail["status"] == "failed":
                    summary["failed"] += 1
            summary["details"].append(detail)
            emit("test_complete", {**detail, "executed": summary["executed"], "total": summary["total"]})

    summary["endedAt"] = _now_iso()
    summary["durationMs"] = int((time.monotonic() - started) * 1000)
    emit("batch_complete", {k: v for k, v in summary.items() if k != "details"})
    return summary
