"""Tests for the websockets-backed transport against a local server."""

from __future__ import annotations

import json
import socket
import threading
import time
from typing import Callable, Iterator

import pytest
from websockets.sync.server import ServerConnection, serve

from helpers import patient_list_response, patient_response
from viewray.client import ViewRayClient
from viewray.connections import ConnectionManager, ConnectionStatus
from viewray.results import ErrorKind
from viewray.transport import TransportError, WebsocketHandle, WebsocketsTransport


def _patient_server(websocket: ServerConnection) -> None:
    for message in websocket:
        (topic,) = json.loads(message)["setSubscriptions"]
        if topic == "public:patients":
            websocket.send(json.dumps(patient_list_response("a", "b")))
        else:
            websocket.send(json.dumps(patient_response(topic)))


@pytest.fixture
def server_uri() -> Iterator[str]:
    with serve(_patient_server, "127.0.0.1", 0) as server:
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        host, port = server.socket.getsockname()[:2]
        yield f"ws://{host}:{port}"
        server.shutdown()
        thread.join(timeout=5)


def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _unused_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_create_rejects_malformed_uri() -> None:
    transport = WebsocketsTransport()

    with pytest.raises(TransportError):
        transport.create("http://example.com")


def test_send_requires_an_open_connection() -> None:
    transport = WebsocketsTransport()
    transport.start()
    try:
        handle = transport.create("ws://127.0.0.1:1")
        with pytest.raises(TransportError):
            transport.send(handle, "hello")
    finally:
        transport.stop()


def test_operations_require_start() -> None:
    transport = WebsocketsTransport()
    handle = transport.create("ws://127.0.0.1:1")

    with pytest.raises(TransportError):
        transport.connect(handle)


def test_fetches_patient_list_from_server(server_uri: str) -> None:
    with ViewRayClient(server_uri, connect_timeout=5) as client:
        result = client.get_patient_list(timeout=5)
        record = client.manager.get_record(0)

        patients = result.unwrap()
        assert sorted(patients) == ["a", "b"]
        assert patients["a"].diagnoses[0].description == "diagnosis for a"
        assert record.server and "websockets" in record.server.lower()
        assert _wait_for(lambda: record.status is ConnectionStatus.CLOSED)
        assert record.last_error is not None and record.last_error.startswith("close code: 1000")


def test_refused_connection_fails_the_record() -> None:
    manager = ConnectionManager(WebsocketsTransport(open_timeout=5))
    manager.init()
    try:
        result = manager.connect(f"ws://127.0.0.1:{_unused_port()}", _NullHandler).result(timeout=10)

        assert result.error is not None
        assert result.error.kind is ErrorKind.REMOTE_CONNECT_FAILED
        assert manager.get_record(0).status is ConnectionStatus.FAILED
    finally:
        manager.shutdown()


def test_stop_closes_the_event_loop() -> None:
    transport = WebsocketsTransport()
    transport.start()
    loop = transport._loop

    transport.stop()

    assert loop is not None and loop.is_closed()
    with pytest.raises(TransportError):
        transport.connect(WebsocketHandle("ws://127.0.0.1:1"))


def test_connect_after_shutdown_reports_cannot_connect() -> None:
    manager = ConnectionManager(WebsocketsTransport())
    manager.init()
    manager.shutdown()

    result = manager.connect("ws://127.0.0.1:1", _NullHandler).result(timeout=1)

    assert result.error is not None
    assert result.error.kind is ErrorKind.CANNOT_CONNECT
    assert manager.get_record(0).status is ConnectionStatus.FAILED


def test_shutdown_closes_open_connections(server_uri: str) -> None:
    manager = ConnectionManager(WebsocketsTransport())
    manager.init()
    connection_id = manager.connect(server_uri, _NullHandler).result(timeout=5).unwrap()
    record = manager.get_record(connection_id)
    handle = record.handle
    assert isinstance(handle, WebsocketHandle)

    manager.shutdown()

    assert record.status is ConnectionStatus.CLOSED
    assert handle.close_code == 1001


class _NullHandler:
    def on_message(self, manager: ConnectionManager, record: object, payload: str) -> None:
        return None
