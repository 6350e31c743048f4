from __future__ import annotations

import asyncio
import json

import httpx

from qarunner.core.http_runner import HttpRunner, check_response
from qarunner.models.test_case import HttpExpect, HttpStep, TestCase
from qarunner.models.types import RunStatus


def app(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/health":
        return httpx.Response(200, json={"ok": True})
    if request.url.path == "/api/echo":
        return httpx.Response(201, content=request.content, headers={"x-ct": request.headers.get("content-type", "")})
    if request.url.path == "/api/slow":
        raise httpx.ReadTimeout("timed out", request=request)
    if request.url.path == "/api/down":
        raise httpx.ConnectError("connection refused", request=request)
    return httpx.Response(404, text="not found")


def run(settings, case: dict):
    runner = HttpRunner(settings, transport=httpx.MockTransport(app))
    return asyncio.run(runner.run(TestCase.from_dict(case)))


def test_health_check_passes(settings):
    result = run(settings, {"httpRequests": [
        {"url": "/api/health", "expect": {"status": 200, "contains": '"ok"'}},
    ]})
    assert result.status == RunStatus.PASSED
    (entry,) = result.to_dict()["logs"]
    assert entry == {"type": "http", "method": "GET", "url": "http://app.test/api/health",
                     "status": 200, "durationMs": entry["durationMs"], "ok": True, "error": None}


def test_status_mismatch_fails(settings):
    result = run(settings, {"httpRequests": [{"url": "/api/health", "expect": {"status": 500}}]})
    assert result.status == RunStatus.FAILED
    assert result.errors == ["Expected status 500, got 200"]


def test_forbidden_text_fails(settings):
    result = run(settings, {"httpRequests": [{"url": "/api/health", "expect": {"notContains": "ok"}}]})
    assert result.first_error == "Response contains forbidden text 'ok'"


def test_dict_body_is_sent_as_json(settings):
    result = run(settings, {"httpRequests": [{
        "url": "/api/echo", "method": "post", "body": {"name": "Summer"},
        "expect": {"status": 201, "contains": "Summer"},
    }]})
    assert result.status == RunStatus.PASSED
    assert result.logs[0].method == "POST"


def test_default_content_type_header_is_json(settings):
    result = run(settings, {"httpRequests": [{
        "url": "/api/echo", "method": "POST", "body": "{}", "expect": {"status": 201},
    }]})
    assert result.status == RunStatus.PASSED

    seen = []

    def capture(request):
        seen.append(request.headers.get("content-type"))
        return httpx.Response(200)

    runner = HttpRunner(settings, transport=httpx.MockTransport(capture))
    asyncio.run(runner.run(TestCase(http_requests=[HttpStep(url="/x", method="POST", body="{}")])))
    assert seen == ["application/json"]


def test_timeout_is_reported_per_step(settings):
    result = run(settings, {"httpRequests": [{"url": "/api/slow"}]})
    assert result.errors == ["Request timed out after 2000ms"]


def test_connection_error_is_reported(settings):
    result = run(settings, {"httpRequests": [{"url": "/api/down"}]})
    assert result.status == RunStatus.FAILED
    assert "connection refused" in result.first_error


def test_stop_on_first_failure(settings):
    steps = [
        {"url": "/api/missing", "expect": {"status": 200}},
        {"url": "/api/health", "expect": {"status": 200}},
    ]
    stopped = run(settings, {"httpRequests": steps, "stopOnFirstFailure": True})
    assert len(stopped.logs) == 1

    continued = run(settings, {"httpRequests": steps})
    assert len(continued.logs) == 2
    assert continued.errors == ["Expected status 200, got 404"]


def test_check_response_without_expectations_accepts_anything():
    assert check_response(HttpStep(url="/", expect=HttpExpect()), 503, "") is None


def test_check_response_contains():
    step = HttpStep(url="/", expect=HttpExpect(contains="billboard"))
    assert check_response(step, 200, json.dumps({"items": []})) == \
        "Response does not contain required text 'billboard'"
