"""Exception hierarchy for the browser test-execution engine.

These are raised inside the launcher, protocol client and page operations.
The runners convert them into structured result fields; nothing here is
meant to escape `execute_test_case`.
"""

from __future__ import annotations


class QARunnerError(Exception):
    """Base class for all runner errors."""


class BrowserLaunchError(QARunnerError):
    """The browser process could not be started."""


class BrowserNotFoundError(BrowserLaunchError):
    def __init__(self, tried: list[str] | None = None):
        self.tried = list(tried or [])
        msg = "No Chrome/Chromium executable found. Set CHROME_PATH to the browser binary."
        if self.tried:
            msg += f" Tried: {', '.join(self.tried[:8])}"
        super().__init__(msg)


class BrowserStartTimeoutError(BrowserLaunchError):
    def __init__(self, port: int, timeout_ms: int, detail: str = ""):
        self.port = port
        self.timeout_ms = timeout_ms
        msg = f"Browser debugging endpoint on port {port} not reachable after {timeout_ms}ms"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class ProtocolError(QARunnerError):
    """Failure talking to the browser over the debugging protocol."""


class CommandError(ProtocolError):
    """The browser answered a command with an error payload."""

    def __init__(self, method: str, message: str, code: int | None = None):
        self.method = method
        self.code = code
        self.message = message
        super().__init__(f"{method} failed: {message}")


class ConnectionClosedError(ProtocolError):
    """The socket closed or errored while a command was outstanding."""


class EvaluationError(ProtocolError):
    """A script evaluated in the page threw."""


class ElementNotFoundError(QARunnerError):
    def __init__(self, selector: str):
        self.selector = selector
        super().__init__(f"Selector not found: {selector}")


class StepTimeoutError(QARunnerError):
    """A bounded wait (selector or navigation) ran out of time."""

    def __init__(self, message: str, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(message)
