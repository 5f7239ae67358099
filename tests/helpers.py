"""In-memory transport and payload builders shared by the tests."""

from __future__ import annotations

import json
from typing import Any, Callable

from viewray.transport import TransportError


class FakeHandle:
    def __init__(self, uri: str) -> None:
        self.uri = uri
        self.error: str | None = None
        self.close_code: int | None = None
        self.close_reason = ""
        self.headers: dict[str, str] = {}
        self.is_open = False
        self.closing = False
        self.on_open: Callable[[Any], None] | None = None
        self.on_fail: Callable[[Any], None] | None = None
        self.on_close: Callable[[Any], None] | None = None
        self.on_message: Callable[[Any, str], None] | None = None

    def response_header(self, name: str) -> str | None:
        return self.headers.get(name)


class FakeTransport:
    """Records traffic and lets tests fire transport events synchronously."""

    def __init__(self, *, auto_open: bool = True, server: str = "FakeServer/1.0") -> None:
        self.auto_open = auto_open
        self.server = server
        self.handles: list[FakeHandle] = []
        self.sent: list[tuple[FakeHandle, str]] = []
        self.closes: list[tuple[FakeHandle, int, str]] = []
        self.fail_sends = False
        self.fail_closes = False
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def create(self, uri: str) -> FakeHandle:
        if not uri.startswith(("ws://", "wss://")):
            raise TransportError(f"{uri} isn't a valid URI")
        handle = FakeHandle(uri)
        self.handles.append(handle)
        return handle

    def set_handlers(self, handle: FakeHandle, *, on_open, on_fail, on_close, on_message) -> None:  # type: ignore[no-untyped-def]
        handle.on_open = on_open
        handle.on_fail = on_fail
        handle.on_close = on_close
        handle.on_message = on_message

    def connect(self, handle: FakeHandle) -> None:
        if self.stopped:
            raise TransportError("transport has been stopped")
        if self.auto_open:
            self.open(handle)

    def send(self, handle: FakeHandle, text: str) -> None:
        if self.fail_sends or not handle.is_open or handle.closing:
            raise TransportError("invalid state")
        self.sent.append((handle, text))

    def close(self, handle: FakeHandle, code: int, reason: str) -> None:
        if self.fail_closes or not handle.is_open or handle.closing:
            raise TransportError("invalid state")
        handle.closing = True
        self.closes.append((handle, code, reason))

    # Event helpers used by the tests.

    def open(self, handle: FakeHandle) -> None:
        handle.headers["Server"] = self.server
        handle.is_open = True
        assert handle.on_open is not None
        handle.on_open(handle)

    def fail(self, handle: FakeHandle, error: str = "connection refused") -> None:
        handle.error = error
        assert handle.on_fail is not None
        handle.on_fail(handle)

    def deliver(self, handle: FakeHandle, payload: str | dict[str, Any]) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        assert handle.on_message is not None
        handle.on_message(handle, text)

    def finish_close(self, handle: FakeHandle, code: int | None = 1000, reason: str = "") -> None:
        handle.is_open = False
        handle.close_code = code
        handle.close_reason = reason
        assert handle.on_close is not None
        handle.on_close(handle)

    def sent_documents(self) -> list[dict[str, Any]]:
        return [json.loads(text) for _, text in self.sent]


def patient_list_response(*uris: str) -> dict[str, Any]:
    return {
        "updateSubscriptions": {
            "public:patients": {
                "type": "PatientList",
                "value": [
                    {"uri": uri, "id": f"id-{uri}", "first_name": uri.upper(), "sex": "F"}
                    for uri in uris
                ],
            }
        }
    }


def patient_response(*uris: str, label: str = "C61") -> dict[str, Any]:
    return {
        "updateSubscriptions": {
            uri: {
                "type": "Patient",
                "diagnoses": [
                    {
                        "type": "Diagnosis",
                        "label": label,
                        "description": f"diagnosis for {uri}",
                        "prescriptions": [],
                    }
                ],
            }
            for uri in uris
        }
    }
