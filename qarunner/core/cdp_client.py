"""Chrome DevTools Protocol client over a single WebSocket.

Commands are correlated with responses by message id. A background reader
task owns the socket's receive side: it resolves pending futures, routes
id-less event notifications to subscribers keyed by (session id, method),
and when the socket closes or errors it fails every outstanding command so
no caller waits forever.

Page sessions are multiplexed over the same socket with flattened
`Target.attachToTarget`; a PageSession stamps each command with its
session id and only sees events for that session.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from qarunner.core.errors import CommandError, ConnectionClosedError, ProtocolError

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], None]

MAX_MESSAGE_SIZE = 64 * 1024 * 1024


class CDPConnection:
    """One WebSocket connection to the browser's top-level debugging endpoint."""

    def __init__(self, ws: Any, url: str = ""):
        self._ws = ws
        self.url = url
        self._next_id = 0
        self._pending: dict[int, tuple[str, asyncio.Future]] = {}
        self._listeners: dict[tuple[str | None, str], list[EventHandler]] = defaultdict(list)
        self._closed = False
        self._close_reason = ""
        self._reader: asyncio.Task | None = None

    @classmethod
    async def connect(cls, ws_url: str, open_timeout: float = 10.0) -> CDPConnection:
        """Open the socket and start the reader. Socket-level failures raise ProtocolError."""
        try:
            ws = await websockets.connect(
                ws_url, max_size=MAX_MESSAGE_SIZE, open_timeout=open_timeout, ping_interval=None
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise ProtocolError(f"Could not connect to {ws_url}: {e}") from e
        conn = cls(ws, url=ws_url)
        conn.start()
        logger.debug("CDP connected to %s", ws_url)
        return conn

    def start(self):
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def send(
        self,
        method: str,
        params: dict | None = None,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict:
        """Send a command and wait for its result. Raises CommandError or ConnectionClosedError."""
        if self._closed:
            raise ConnectionClosedError(
                f"{method}: connection already closed ({self._close_reason or 'closed'})"
            )

        self._next_id += 1
        msg_id = self._next_id
        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (method, future)

        message: dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
        if session_id:
            message["sessionId"] = session_id

        try:
            await self._ws.send(json.dumps(message))
        except (ConnectionClosed, OSError) as e:
            self._pending.pop(msg_id, None)
            raise ConnectionClosedError(f"{method}: send failed: {e}") from e

        try:
            if timeout is not None:
                return await asyncio.wait_for(future, timeout)
            return await future
        except asyncio.TimeoutError:
            raise ProtocolError(f"{method}: no response within {timeout}s") from None
        finally:
            self._pending.pop(msg_id, None)

    def on(self, method: str, handler: EventHandler, session_id: str | None = None) -> Callable[[], None]:
        """Subscribe to an event for one session (None = browser-level). Returns an unsubscribe callable."""
        key = (session_id, method)
        self._listeners[key].append(handler)

        def unsubscribe():
            handlers = self._listeners.get(key)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def create_page_session(self, url: str = "about:blank") -> PageSession:
        target = await self.send("Target.createTarget", {"url": url})
        target_id = target["targetId"]
        attached = await self.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        return PageSession(self, attached["sessionId"], target_id)

    async def close(self):
        if self._closed and self._reader is None:
            return
        self._closed = True
        self._close_reason = self._close_reason or "closed by client"
        try:
            await self._ws.close()
        except (ConnectionClosed, OSError) as e:
            logger.debug("Error while closing CDP socket: %s", e)
        self._fail_pending(self._close_reason)

        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

    async def _read_loop(self):
        reason = "connection closed"
        try:
            async for raw in self._ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except asyncio.CancelledError:
            reason = "reader cancelled"
            raise
        except Exception as e:
            reason = f"socket error: {e}"
            logger.warning("CDP reader stopped: %s", reason)
        finally:
            self._closed = True
            self._close_reason = self._close_reason or reason
            self._fail_pending(self._close_reason)

    def _dispatch(self, raw: str | bytes):
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON CDP frame")
            return

        if "id" in msg:
            entry = self._pending.pop(msg["id"], None)
            if entry is None:
                return
            method, future = entry
            if future.done():
                return
            if "error" in msg:
                err = msg["error"] or {}
                future.set_exception(
                    CommandError(method, err.get("message", str(err)), err.get("code"))
                )
            else:
                future.set_result(msg.get("result") or {})
            return

        method = msg.get("method")
        if not method:
            return
        for handler in list(self._listeners.get((msg.get("sessionId"), method), ())):
            try:
                handler(msg.get("params") or {})
            except Exception:
                logger.exception("CDP event handler for %s failed", method)

    def _fail_pending(self, reason: str):
        pending, self._pending = self._pending, {}
        for method, future in pending.values():
            if not future.done():
                future.set_exception(ConnectionClosedError(f"{method}: {reason}"))
        if pending:
            logger.info("Rejected %d in-flight CDP command(s): %s", len(pending), reason)


class PageSession:
    """A page target attached in flattened mode. Does not own the connection."""

    def __init__(self, connection: CDPConnection, session_id: str, target_id: str):
        self.connection = connection
        self.session_id = session_id
        self.target_id = target_id

    async def send(self, method: str, params: dict | None = None, timeout: float | None = None) -> dict:
        return await self.connection.send(method, params, session_id=self.session_id, timeout=timeout)

    def on(self, method: str, handler: EventHandler) -> Callable[[], None]:
        return self.connection.on(method, handler, session_id=self.session_id)

    async def close(self):
        await self.connection.send("Target.closeTarget", {"targetId": self.target_id})
