"""Connection registry and lifecycle tracking for websocket sessions."""

from __future__ import annotations

from concurrent.futures import Future
from enum import Enum
import itertools
import json
import logging
import threading
from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from .results import AsyncResult, ClientError, Completion, ErrorKind, completed
from .transport import (
    GOING_AWAY,
    NORMAL_CLOSURE,
    ConnectionHandle,
    Transport,
    TransportError,
    WebsocketsTransport,
    describe_close_code,
)

LOG = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Lifecycle states of a tracked connection."""

    CONNECTING = "connecting"
    OPENED = "opened"
    CLOSED = "closed"
    FAILED = "failed"


@runtime_checkable
class MessageHandler(Protocol):
    """Per-connection behavior invoked for every inbound message."""

    def on_message(self, manager: "ConnectionManager", record: "ConnectionRecord", payload: str) -> None:
        """Handle one inbound text message (called on the processing thread)."""


HandlerFactory = Callable[[], MessageHandler]


class ConnectionRecord:
    """State the manager keeps for one connection.

    Every callback below runs on the transport's processing thread.
    """

    def __init__(
        self,
        connection_id: int,
        handle: ConnectionHandle,
        uri: str,
        handler: MessageHandler,
        manager: "ConnectionManager",
    ) -> None:
        self._id = connection_id
        self._handle = handle
        self._uri = uri
        self._handler = handler
        self._manager = manager
        self._opened: Completion[int] = Completion()
        self.status = ConnectionStatus.CONNECTING
        self.last_error: str | None = None
        self.server: str | None = None

    @property
    def id(self) -> int:
        return self._id

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def handle(self) -> ConnectionHandle:
        return self._handle

    @property
    def handler(self) -> MessageHandler:
        return self._handler

    @property
    def opened(self) -> Future[AsyncResult[int]]:
        """Future completed with this record's ID on open, or an error on failure."""

        return self._opened.future

    def on_open(self, handle: ConnectionHandle) -> None:
        if self.status is not ConnectionStatus.CONNECTING:
            LOG.warning("Ignoring open event for connection %s in state %s", self._id, self.status.value)
            return
        self.status = ConnectionStatus.OPENED
        self.server = handle.response_header("Server")
        LOG.info("Connection %s to %s opened (server: %s)", self._id, self._uri, self.server or "N/A")
        self._opened.succeed(self._id)

    def on_fail(self, handle: ConnectionHandle) -> None:
        if self.status is not ConnectionStatus.CONNECTING:
            LOG.warning("Ignoring fail event for connection %s in state %s", self._id, self.status.value)
            return
        self.server = handle.response_header("Server")
        self.mark_failed(ErrorKind.REMOTE_CONNECT_FAILED, handle.error or "connection failed")

    def mark_failed(self, kind: ErrorKind, message: str) -> None:
        """Move a connecting record to FAILED and resolve its connect future with ``kind``."""

        self.status = ConnectionStatus.FAILED
        self.last_error = message
        LOG.info("Connection %s to %s failed: %s", self._id, self._uri, message)
        self._opened.fail(ClientError(kind, message))

    def on_close(self, handle: ConnectionHandle) -> None:
        if self.status is not ConnectionStatus.OPENED:
            LOG.warning("Ignoring close event for connection %s in state %s", self._id, self.status.value)
            return
        self.status = ConnectionStatus.CLOSED
        self.last_error = (
            f"close code: {handle.close_code} ({describe_close_code(handle.close_code)}), "
            f"close reason: {handle.close_reason}"
        )
        LOG.info("Connection %s to %s closed: %s", self._id, self.server or self._uri, self.last_error)

    def on_message(self, handle: ConnectionHandle, payload: str) -> None:
        self._handler.on_message(self._manager, self, payload)

    def __repr__(self) -> str:
        return f"ConnectionRecord(id={self._id}, uri={self._uri!r}, status={self.status.value})"


class ConnectionManager:
    """Owns a transport, its processing thread and every connection made through it.

    Records are kept for the manager's whole lifetime, failed and closed ones
    included, so callers can inspect them after the fact.
    """

    def __init__(self, transport: Transport | None = None) -> None:
        self._transport = transport or WebsocketsTransport()
        self._records: dict[int, ConnectionRecord] = {}
        self._ids = itertools.count()
        self._lock = threading.Lock()
        self._started = False
        self._stopped = False

    @property
    def transport(self) -> Transport:
        return self._transport

    def init(self) -> None:
        """Start the processing thread; must be called once before anything else."""

        if self._started:
            raise RuntimeError("ConnectionManager.init() called twice")
        self._transport.start()
        self._started = True

    def connect(self, uri: str, handler_factory: HandlerFactory) -> Future[AsyncResult[int]]:
        """Open a connection to ``uri``; the future resolves once it opens or fails."""

        try:
            handle = self._transport.create(uri)
        except TransportError as exc:
            LOG.warning("Cannot create connection to %s: %s", uri, exc)
            return completed(AsyncResult.failure(ClientError(ErrorKind.CANNOT_CONNECT, str(exc))))

        with self._lock:
            connection_id = next(self._ids)
            record = ConnectionRecord(connection_id, handle, uri, handler_factory(), self)
            self._records[connection_id] = record

        self._transport.set_handlers(
            handle,
            on_open=record.on_open,
            on_fail=record.on_fail,
            on_close=record.on_close,
            on_message=record.on_message,
        )
        LOG.debug("Connecting %s to %s", connection_id, uri)
        try:
            self._transport.connect(handle)
        except TransportError as exc:
            LOG.warning("Cannot start connection to %s: %s", uri, exc)
            record.mark_failed(ErrorKind.CANNOT_CONNECT, str(exc))
        return record.opened

    def send(self, connection_id: int, message: str | Mapping[str, Any]) -> None:
        """Send a text message (or a JSON document) on a tracked connection."""

        record = self.get_record(connection_id)
        text = message if isinstance(message, str) else json.dumps(message)
        try:
            self._transport.send(record.handle, text)
        except TransportError as exc:
            raise ClientError(ErrorKind.CANNOT_SEND_MESSAGE, f"Error sending message: {exc}") from exc
        LOG.debug("Sent on connection %s: %s", connection_id, text)

    def close(self, connection_id: int, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Request an asynchronous close; the status changes once the close completes."""

        record = self.get_record(connection_id)
        try:
            self._transport.close(record.handle, code, reason)
        except TransportError as exc:
            raise ClientError(ErrorKind.CANNOT_CLOSE_CONNECTION, f"Error initiating close: {exc}") from exc
        LOG.debug("Close requested for connection %s (code %s)", connection_id, code)

    def get_record(self, connection_id: int) -> ConnectionRecord:
        with self._lock:
            record = self._records.get(connection_id)
        if record is None:
            raise ClientError(ErrorKind.CONNECTION_NOT_FOUND, f"No connection found with id: {connection_id}")
        return record

    def records(self) -> tuple[ConnectionRecord, ...]:
        """Snapshot of every connection ever made through this manager."""

        with self._lock:
            return tuple(self._records.values())

    def shutdown(self) -> None:
        """Close open connections as "going away" and stop the processing thread."""

        if not self._started or self._stopped:
            return
        self._stopped = True
        for record in self.records():
            if record.status is not ConnectionStatus.OPENED:
                continue
            try:
                self._transport.close(record.handle, GOING_AWAY, "")
            except TransportError as exc:
                LOG.debug("Skipping close of connection %s: %s", record.id, exc)
        self._transport.stop()

    def __enter__(self) -> ConnectionManager:
        self.init()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()


__all__ = [
    "ConnectionManager",
    "ConnectionRecord",
    "ConnectionStatus",
    "HandlerFactory",
    "MessageHandler",
]
