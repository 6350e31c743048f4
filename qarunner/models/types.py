from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class StepStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one executed browser step. Never mutated after creation."""

    action: str
    status: StepStatus
    duration_ms: int = 0
    selector: str | None = None
    url: str | None = None
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == StepStatus.FAILED

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"action": self.action, "status": self.status.value,
                             "durationMs": self.duration_ms}
        if self.selector is not None:
            d["selector"] = self.selector
        if self.url is not None:
            d["url"] = self.url
        d.update(self.data)
        d["error"] = self.error
        return d


@dataclass
class ConsoleMessage:
    level: str
    text: str

    def to_dict(self) -> dict:
        return {"level": self.level, "text": self.text}


@dataclass
class NetworkRequest:
    """Request/response pair keyed by the browser's request id."""

    id: str
    url: str
    method: str
    status: int | None = None
    response_time: int | None = None   # ms between request sent and response headers
    started_at: float | None = None    # browser monotonic timestamp, seconds
    failed: str | None = None

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "url": self.url,
            "method": self.method,
            "status": self.status,
            "responseTime": self.response_time,
        }
        if self.failed:
            d["error"] = self.failed
        return d


@dataclass
class DomSnapshot:
    final_title: str = ""
    final_url: str = ""
    elements_found: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "finalTitle": self.final_title,
            "finalUrl": self.final_url,
            "elementsFound": dict(self.elements_found),
        }


@dataclass
class BrowserRunLog:
    """Log entry describing one browser run, including its artifacts."""

    url: str | None = None
    action: str = "browser_run"
    steps: list[StepResult] = field(default_factory=list)
    total_duration_ms: int = 0
    screenshot: str | None = None
    console_messages: list[ConsoleMessage] = field(default_factory=list)
    network_requests: list[NetworkRequest] = field(default_factory=list)
    dom_snapshot: DomSnapshot | None = None
    status: RunStatus = RunStatus.FAILED
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "type": "cdp",
            "action": self.action,
            "url": self.url,
            "steps": [s.to_dict() for s in self.steps],
            "totalDurationMs": self.total_duration_ms,
            "screenshot": self.screenshot,
            "consoleMessages": [m.to_dict() for m in self.console_messages],
            "networkRequests": [r.to_dict() for r in self.network_requests],
            "domSnapshot": self.dom_snapshot.to_dict() if self.dom_snapshot else None,
            "status": self.status.value,
            "error": self.error,
        }


@dataclass
class HttpStepLog:
    method: str
    url: str
    status: int = 0
    duration_ms: int = 0
    ok: bool = False
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "type": "http",
            "method": self.method,
            "url": self.url,
            "status": self.status,
            "durationMs": self.duration_ms,
            "ok": self.ok,
            "error": self.error,
        }


@dataclass
class InfoLog:
    message: str
    type: str = "info"

    def to_dict(self) -> dict:
        return {"type": self.type, "message": self.message}


LogEntry = Union[BrowserRunLog, HttpStepLog, InfoLog]


@dataclass
class TestRunResult:
    """Terminal output of one test-case execution."""

    __test__ = False

    status: RunStatus
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)
    logs: list[LogEntry] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == RunStatus.PASSED

    @property
    def first_error(self) -> str | None:
        return self.errors[0] if self.errors else None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "duration": self.duration_ms,
            "errors": [{"message": e} for e in self.errors],
            "logs": [entry.to_dict() for entry in self.logs],
        }
