"""Browser step runner.

Launches a dedicated headless browser for one test case, attaches a page
session over CDP, executes the declarative browser steps in order and
collects console/network telemetry, a screenshot and a DOM snapshot.

The browser process and socket belong to this run alone and are released
on every exit path, including cancellation by an outer timeout.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable

from qarunner.config import Settings, load_settings
from qarunner.core import page_ops
from qarunner.core.cdp_client import CDPConnection
from qarunner.core.errors import QARunnerError
from qarunner.core.launcher import launch_browser
from qarunner.core.select_checks import assert_select_options, assert_select_selectable
from qarunner.models.test_case import BrowserStep, TestCase
from qarunner.models.types import BrowserRunLog, RunStatus, StepResult, StepStatus, TestRunResult
from qarunner.utils.urls import resolve_url

logger = logging.getLogger(__name__)

DEFAULT_WAIT_MS = 5000

SUPPORTED_ACTIONS = (
    "goto",
    "wait_for_selector",
    "fill_input",
    "click",
    "focus",
    "wait_for_navigation",
    "assert_select_options",
    "assert_select_selectable",
)

_SELECTOR_ACTIONS = {
    "wait_for_selector", "fill_input", "click", "focus",
    "assert_select_options", "assert_select_selectable",
}


class BrowserRunner:
    """Runs declarative browser steps against a freshly launched browser."""

    def __init__(
        self,
        settings: Settings | None = None,
        launch: Callable[[Settings], Awaitable] | None = None,
        connect: Callable[[str], Awaitable[CDPConnection]] | None = None,
        on_progress: Callable[[str, dict], None] | None = None,
    ):
        self.settings = settings or load_settings()
        self._launch = launch or (lambda s: launch_browser(settings=s))
        self._connect = connect or CDPConnection.connect
        self._on_progress = on_progress or (lambda *_: None)

    async def run(self, test_case: TestCase, steps: list[BrowserStep] | None = None) -> TestRunResult:
        """Execute the steps and return a result. Never raises for launch or step failures."""
        start = time.monotonic()
        steps = test_case.browser_steps if steps is None else steps
        page_url = resolve_url(self.settings.base_url, test_case.page_url) if test_case.page_url else None
        log = BrowserRunLog(url=page_url)

        browser = None
        conn = None
        capture = None
        try:
            try:
                browser = await self._launch(self.settings)
                conn = await self._connect(browser.ws_url)
                page = await conn.create_page_session()
                await page_ops.enable_domains(page)
                capture = await page_ops.start_event_capture(page, log.console_messages, log.network_requests)
            except (QARunnerError, OSError) as e:
                logger.warning("Browser setup failed for %s: %s", page_url or "test case", e)
                log.error = f"Browser setup failed: {e}"
                log.total_duration_ms = _elapsed_ms(start)
                return TestRunResult(
                    status=RunStatus.FAILED,
                    duration_ms=log.total_duration_ms,
                    errors=[log.error],
                    logs=[log],
                )

            self._emit("browser_ready", {"url": page_url, "steps": len(steps)})

            for index, step in enumerate(steps):
                result = await self._execute_step(page, step, test_case)
                log.steps.append(result)
                self._emit("step_complete", {"index": index, **result.to_dict()})

                if result.failed and test_case.stop_on_first_failure:
                    for rest in steps[index + 1:]:
                        log.steps.append(StepResult(
                            action=rest.action,
                            status=StepStatus.SKIPPED,
                            selector=rest.selector,
                            url=rest.url,
                            data={"note": "Skipped after earlier failure"},
                        ))
                    break

            # artifacts must be taken while the socket is still open
            log.screenshot = await page_ops.capture_screenshot(page)
            log.dom_snapshot = await page_ops.dom_snapshot(page)
        finally:
            if capture is not None:
                capture.stop()
            if conn is not None:
                await conn.close()
            if browser is not None:
                await browser.terminate()

        failed = [s for s in log.steps if s.failed]
        log.status = RunStatus.FAILED if failed else RunStatus.PASSED
        log.error = failed[0].error if failed else None
        log.total_duration_ms = _elapsed_ms(start)

        return TestRunResult(
            status=log.status,
            duration_ms=log.total_duration_ms,
            errors=[s.error or f"{s.action} failed" for s in failed],
            logs=[log],
        )

    async def _execute_step(self, page, step: BrowserStep, test_case: TestCase) -> StepResult:
        t0 = time.monotonic()
        action = step.action
        selector = step.selector or test_case.selector
        timeout_ms = step.timeout_ms if step.timeout_ms is not None else DEFAULT_WAIT_MS
        data: dict = {}
        url = None

        if action not in SUPPORTED_ACTIONS:
            logger.info("Skipping unknown browser action %r", action)
            return StepResult(
                action=action or "unknown",
                status=StepStatus.SKIPPED,
                selector=step.selector,
                url=step.url,
                data={"note": f"Unknown action: {action}"},
            )
        if action in _SELECTOR_ACTIONS and not selector:
            return StepResult(action=action, status=StepStatus.FAILED, error=f"{action} requires a selector")

        try:
            # ─── GOTO ───
            if action == "goto":
                url = resolve_url(self.settings.base_url, step.url or test_case.page_url or "/")
                await page_ops.navigate(page, url, settle_ms=self.settings.nav_settle_ms)

            # ─── WAIT FOR SELECTOR ───
            elif action == "wait_for_selector":
                waited = await page_ops.wait_for_selector(page, selector, timeout_ms=timeout_ms)
                data = {"found": True, "waitedMs": waited}

            # ─── FILL INPUT ───
            elif action == "fill_input":
                await page_ops.set_input_value(page, selector, step.value or "")
                data = {"found": True}

            # ─── CLICK ───
            elif action == "click":
                await page_ops.click_selector(page, selector)
                data = {"found": True}

            # ─── FOCUS ───
            elif action == "focus":
                await page_ops.focus_selector(page, selector)
                data = {"found": True}

            # ─── WAIT FOR NAVIGATION ───
            elif action == "wait_for_navigation":
                expected = step.expected_url or step.url
                url = expected
                matched = await page_ops.wait_for_navigation(page, expected, timeout_ms=timeout_ms)
                data = {"matchedUrl": matched}

            # ─── SELECT ASSERTIONS ───
            elif action == "assert_select_options":
                expected = step.expected if step.expected is not None else test_case.expected_options
                if expected is None:
                    return self._result(action, StepStatus.FAILED, t0, selector,
                                        error="assert_select_options requires expected options")
                check = await assert_select_options(page, selector, expected)
                return self._result(action, StepStatus.SUCCESS if check.passed else StepStatus.FAILED, t0,
                                    selector, data=check.to_dict(),
                                    error=None if check.passed else check.message)

            elif action == "assert_select_selectable":
                check = await assert_select_selectable(page, selector)
                return self._result(action, StepStatus.SUCCESS if check.passed else StepStatus.FAILED, t0,
                                    selector, data=check.to_dict(),
                                    error=None if check.passed else check.message)

        except QARunnerError as e:
            logger.info("Step %s failed: %s", action, e)
            return self._result(action, StepStatus.FAILED, t0, selector, url=url, error=str(e))

        return self._result(action, StepStatus.SUCCESS, t0, selector, url=url, data=data)

    @staticmethod
    def _result(action, status, t0, selector=None, url=None, data=None, error=None) -> StepResult:
        return StepResult(
            action=action,
            status=status,
            duration_ms=_elapsed_ms(t0),
            selector=selector if action != "goto" else None,
            url=url,
            error=error,
            data=data or {},
        )

    def _emit(self, event_type: str, data: dict):
        try:
            self._on_progress(event_type, data)
        except Exception:
            pass


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
