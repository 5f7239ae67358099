"""Websocket transport driven by a single background asyncio loop."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import threading
from typing import Any, Callable, Protocol, runtime_checkable

import websockets
from websockets.exceptions import InvalidStatus, InvalidURI
from websockets.frames import CloseCode
from websockets.uri import parse_uri

LOG = logging.getLogger(__name__)

NORMAL_CLOSURE = int(CloseCode.NORMAL_CLOSURE)
GOING_AWAY = int(CloseCode.GOING_AWAY)
PROTOCOL_ERROR = int(CloseCode.PROTOCOL_ERROR)


class TransportError(RuntimeError):
    """Raised when the transport cannot create, send on, or close a connection."""


@runtime_checkable
class ConnectionHandle(Protocol):
    """Per-connection view the transport exposes to its callbacks."""

    uri: str
    error: str | None
    close_code: int | None
    close_reason: str

    def response_header(self, name: str) -> str | None:
        """Return a handshake response header, if the handshake got that far."""


HandleCallback = Callable[[Any], None]
MessageCallback = Callable[[Any, str], None]


@runtime_checkable
class Transport(Protocol):
    """Protocol implemented by socket transports used by the connection manager.

    All callbacks registered through :meth:`set_handlers` must be invoked on
    one processing thread, in wire order for any single connection.
    """

    def start(self) -> None:
        """Start the processing thread."""

    def stop(self) -> None:
        """Stop the processing thread once in-flight connections settle."""

    def create(self, uri: str) -> ConnectionHandle:
        """Build a connection object for ``uri`` without connecting it."""

    def set_handlers(
        self,
        handle: Any,
        *,
        on_open: HandleCallback,
        on_fail: HandleCallback,
        on_close: HandleCallback,
        on_message: MessageCallback,
    ) -> None:
        """Attach the four lifecycle callbacks to a handle."""

    def connect(self, handle: Any) -> None:
        """Begin connecting asynchronously."""

    def send(self, handle: Any, text: str) -> None:
        """Queue a text frame on an open connection."""

    def close(self, handle: Any, code: int, reason: str) -> None:
        """Queue a close frame behind any pending sends."""


def describe_close_code(code: int | None) -> str:
    """Human readable name for a websocket close code."""

    if code is None:
        return "no status"
    try:
        return CloseCode(code).name.replace("_", " ").lower()
    except ValueError:
        return "unknown"


@dataclass(frozen=True, slots=True)
class _CloseRequest:
    code: int
    reason: str


class WebsocketHandle:
    """Connection object handed out by :class:`WebsocketsTransport`."""

    def __init__(self, uri: str) -> None:
        self.uri = uri
        self.error: str | None = None
        self.close_code: int | None = None
        self.close_reason = ""
        self.on_open: HandleCallback | None = None
        self.on_fail: HandleCallback | None = None
        self.on_close: HandleCallback | None = None
        self.on_message: MessageCallback | None = None
        self._headers: dict[str, str] = {}
        self._outbox: asyncio.Queue[str | _CloseRequest] | None = None
        self._closing = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._outbox is not None and not self._closing and not self._closed

    def response_header(self, name: str) -> str | None:
        for key, value in self._headers.items():
            if key.lower() == name.lower():
                return value
        return None

    def __repr__(self) -> str:
        return f"WebsocketHandle(uri={self.uri!r}, open={self.is_open})"


class WebsocketsTransport:
    """Transport built on the ``websockets`` asyncio client.

    A private event loop runs forever on a daemon thread; every connection is
    a task on that loop, so all callbacks run sequentially on that thread.
    Each open connection gets an outbound queue drained by a writer task,
    which keeps frames in the order they were requested.
    """

    def __init__(self, *, open_timeout: float | None = None, drain_timeout: float = 1.0) -> None:
        self._open_timeout = open_timeout
        self._drain_timeout = drain_timeout
        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread: threading.Thread | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._stopped = False

    def start(self) -> None:
        if self._loop is not None:
            raise RuntimeError("transport already started")
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="viewray-websocket-loop",
            daemon=True,
        )
        self._loop_thread.start()

    def stop(self) -> None:
        loop = self._loop
        if loop is None or self._stopped:
            return
        if self._on_loop_thread():
            raise RuntimeError("transport cannot be stopped from its own processing thread")
        self._stopped = True
        future = asyncio.run_coroutine_threadsafe(self._drain(), loop)
        try:
            future.result(timeout=self._drain_timeout + 1)
        except TimeoutError:
            LOG.warning("Timed out draining websocket connections")
        loop.call_soon_threadsafe(loop.stop)
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=1)
            if self._loop_thread.is_alive():
                LOG.warning("Websocket loop thread did not stop; leaving its loop open")
                return
        loop.close()

    def create(self, uri: str) -> WebsocketHandle:
        try:
            parse_uri(uri)
        except InvalidURI as exc:
            raise TransportError(str(exc)) from exc
        return WebsocketHandle(uri)

    def set_handlers(
        self,
        handle: WebsocketHandle,
        *,
        on_open: HandleCallback,
        on_fail: HandleCallback,
        on_close: HandleCallback,
        on_message: MessageCallback,
    ) -> None:
        handle.on_open = on_open
        handle.on_fail = on_fail
        handle.on_close = on_close
        handle.on_message = on_message

    def connect(self, handle: WebsocketHandle) -> None:
        loop = self._require_loop()
        loop.call_soon_threadsafe(self._spawn, handle)

    def send(self, handle: WebsocketHandle, text: str) -> None:
        self._enqueue(handle, text)

    def close(self, handle: WebsocketHandle, code: int, reason: str) -> None:
        self._enqueue(handle, _CloseRequest(code, reason))
        handle._closing = True

    def _enqueue(self, handle: WebsocketHandle, item: str | _CloseRequest) -> None:
        loop = self._require_loop()
        if not handle.is_open or handle._outbox is None:
            raise TransportError(f"connection to {handle.uri} is not open")
        if self._on_loop_thread():
            handle._outbox.put_nowait(item)
        else:
            loop.call_soon_threadsafe(handle._outbox.put_nowait, item)

    def _spawn(self, handle: WebsocketHandle) -> None:
        assert self._loop is not None
        task = self._loop.create_task(self._run(handle))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, handle: WebsocketHandle) -> None:
        try:
            ws = await websockets.connect(handle.uri, open_timeout=self._open_timeout)
        except Exception as exc:
            if isinstance(exc, InvalidStatus):
                handle._headers = dict(exc.response.headers.raw_items())
            handle.error = str(exc) or exc.__class__.__name__
            handle._closed = True
            LOG.debug("Websocket connect to %s failed: %s", handle.uri, handle.error)
            self._dispatch(handle.on_fail, handle)
            return

        if ws.response is not None:
            handle._headers = dict(ws.response.headers.raw_items())
        handle._outbox = asyncio.Queue()
        writer = asyncio.create_task(self._write(handle, ws))
        self._dispatch(handle.on_open, handle)
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                self._dispatch(handle.on_message, handle, message)
        except websockets.ConnectionClosed as exc:
            LOG.debug("Websocket %s closed abnormally: %s", handle.uri, exc)
        finally:
            handle._closed = True
            writer.cancel()
            handle.close_code = ws.close_code
            handle.close_reason = ws.close_reason or ""
            self._dispatch(handle.on_close, handle)

    async def _write(self, handle: WebsocketHandle, ws: Any) -> None:
        assert handle._outbox is not None
        try:
            while True:
                item = await handle._outbox.get()
                if isinstance(item, _CloseRequest):
                    await ws.close(item.code, item.reason)
                    return
                await ws.send(item)
        except websockets.ConnectionClosed:
            LOG.debug("Dropping queued frames for closed websocket %s", handle.uri)

    async def _drain(self) -> None:
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=self._drain_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _dispatch(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            LOG.exception("Websocket callback %r failed", callback)

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise TransportError("transport has not been started")
        if self._stopped:
            raise TransportError("transport has been stopped")
        return self._loop

    def _on_loop_thread(self) -> bool:
        return self._loop_thread is not None and threading.current_thread() is self._loop_thread


__all__ = [
    "ConnectionHandle",
    "GOING_AWAY",
    "NORMAL_CLOSURE",
    "PROTOCOL_ERROR",
    "Transport",
    "TransportError",
    "WebsocketHandle",
    "WebsocketsTransport",
    "describe_close_code",
]
