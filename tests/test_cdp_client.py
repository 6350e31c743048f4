from __future__ import annotations

import asyncio

import pytest

from conftest import FakeSocket
from qarunner.core.cdp_client import CDPConnection
from qarunner.core.errors import CommandError, ConnectionClosedError


def _target_responder(msg):
    if msg["method"] == "Target.createTarget":
        return {"targetId": "T1"}
    if msg["method"] == "Target.attachToTarget":
        return {"sessionId": f"S-{msg['params']['targetId']}"}
    if msg["method"] == "Broken.command":
        return {"error": {"code": -32601, "message": "'Broken.command' wasn't found"}}
    return {"echo": msg["method"]}


def test_send_resolves_with_matching_result() -> None:
    async def scenario():
        ws = FakeSocket(_target_responder)
        conn = CDPConnection(ws)
        conn.start()
        first = await conn.send("Page.enable")
        second = await conn.send("Runtime.enable", {"x": 1})
        await conn.close()
        return ws, first, second

    ws, first, second = asyncio.run(scenario())
    assert first == {"echo": "Page.enable"}
    assert second == {"echo": "Runtime.enable"}
    assert [m["id"] for m in ws.sent] == [1, 2]
    assert ws.sent[1]["params"] == {"x": 1}
    assert "sessionId" not in ws.sent[0]


def test_error_payload_raises_command_error() -> None:
    async def scenario():
        conn = CDPConnection(FakeSocket(_target_responder))
        conn.start()
        try:
            await conn.send("Broken.command")
        finally:
            await conn.close()

    with pytest.raises(CommandError) as exc:
        asyncio.run(scenario())
    assert exc.value.method == "Broken.command"
    assert exc.value.code == -32601


def test_remote_close_rejects_every_in_flight_command() -> None:
    async def scenario():
        ws = FakeSocket()  # never answers
        conn = CDPConnection(ws)
        conn.start()
        tasks = [asyncio.create_task(conn.send("Runtime.evaluate", {"expression": str(i)})) for i in range(3)]
        await asyncio.sleep(0.01)
        assert conn.pending_count == 3
        ws.remote_close()
        outcomes = await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=1.0)
        await conn.close()
        return conn, outcomes

    conn, outcomes = asyncio.run(scenario())
    assert len(outcomes) == 3
    assert all(isinstance(o, ConnectionClosedError) for o in outcomes)
    assert conn.pending_count == 0
    assert conn.closed


def test_socket_error_rejects_pending_and_later_sends_fail_fast() -> None:
    async def scenario():
        ws = FakeSocket()
        conn = CDPConnection(ws)
        conn.start()
        pending = asyncio.create_task(conn.send("Page.navigate", {"url": "http://x"}))
        await asyncio.sleep(0.01)
        ws.fail(RuntimeError("connection reset"))
        with pytest.raises(ConnectionClosedError, match="connection reset"):
            await asyncio.wait_for(pending, timeout=1.0)
        with pytest.raises(ConnectionClosedError):
            await asyncio.wait_for(conn.send("Page.captureScreenshot"), timeout=1.0)
        await conn.close()

    asyncio.run(scenario())


def test_client_close_rejects_pending() -> None:
    async def scenario():
        conn = CDPConnection(FakeSocket())
        conn.start()
        pending = asyncio.create_task(conn.send("Runtime.evaluate"))
        await asyncio.sleep(0.01)
        await conn.close()
        return await asyncio.gather(pending, return_exceptions=True)

    (outcome,) = asyncio.run(scenario())
    assert isinstance(outcome, ConnectionClosedError)


def test_page_session_stamps_session_id() -> None:
    async def scenario():
        ws = FakeSocket(_target_responder)
        conn = CDPConnection(ws)
        conn.start()
        page = await conn.create_page_session("about:blank")
        await page.send("Runtime.evaluate", {"expression": "1"})
        await conn.close()
        return ws, page

    ws, page = asyncio.run(scenario())
    assert page.target_id == "T1"
    assert page.session_id == "S-T1"
    assert ws.sent[0]["method"] == "Target.createTarget"
    assert ws.sent[1]["params"] == {"targetId": "T1", "flatten": True}
    assert ws.sent[2]["sessionId"] == "S-T1"


def test_events_are_routed_per_session() -> None:
    async def scenario():
        ws = FakeSocket()
        conn = CDPConnection(ws)
        conn.start()
        seen_a, seen_b, seen_browser = [], [], []
        conn.on("Runtime.consoleAPICalled", seen_a.append, session_id="A")
        unsubscribe_b = conn.on("Runtime.consoleAPICalled", seen_b.append, session_id="B")
        conn.on("Target.targetCreated", seen_browser.append)

        ws.push({"method": "Runtime.consoleAPICalled", "sessionId": "A", "params": {"n": 1}})
        ws.push({"method": "Runtime.consoleAPICalled", "sessionId": "B", "params": {"n": 2}})
        ws.push({"method": "Target.targetCreated", "params": {"n": 3}})
        await asyncio.sleep(0.01)
        unsubscribe_b()
        ws.push({"method": "Runtime.consoleAPICalled", "sessionId": "B", "params": {"n": 4}})
        await asyncio.sleep(0.01)
        await conn.close()
        return seen_a, seen_b, seen_browser

    seen_a, seen_b, seen_browser = asyncio.run(scenario())
    assert seen_a == [{"n": 1}]
    assert seen_b == [{"n": 2}]
    assert seen_browser == [{"n": 3}]


def test_failing_event_handler_does_not_break_reader() -> None:
    async def scenario():
        ws = FakeSocket(_target_responder)
        conn = CDPConnection(ws)
        conn.start()

        def explode(params):
            raise ValueError("bad handler")

        conn.on("Network.requestWillBeSent", explode)
        ws.push({"method": "Network.requestWillBeSent", "params": {}})
        result = await asyncio.wait_for(conn.send("Page.enable"), timeout=1.0)
        await conn.close()
        return result

    assert asyncio.run(scenario()) == {"echo": "Page.enable"}
