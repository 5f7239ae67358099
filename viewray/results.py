"""Result and completion primitives shared by the connection and session layers."""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
import threading
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Distinguishes the failures a caller can observe."""

    CANNOT_CONNECT = "cannot_connect"
    CONNECTION_NOT_FOUND = "connection_not_found"
    CANNOT_CLOSE_CONNECTION = "cannot_close_connection"
    CANNOT_SEND_MESSAGE = "cannot_send_message"
    REMOTE_CONNECT_FAILED = "remote_connect_failed"
    PROTOCOL_ERROR = "protocol_error"
    TIMEOUT = "timeout"

    @property
    def exit_code(self) -> int:
        """Process exit status reported by the command line for this kind."""

        return _EXIT_CODES[self]


_EXIT_CODES: dict[ErrorKind, int] = {
    ErrorKind.CANNOT_CONNECT: 1,
    ErrorKind.CONNECTION_NOT_FOUND: 2,
    ErrorKind.CANNOT_CLOSE_CONNECTION: 3,
    ErrorKind.CANNOT_SEND_MESSAGE: 4,
    ErrorKind.REMOTE_CONNECT_FAILED: 5,
    ErrorKind.PROTOCOL_ERROR: 6,
    ErrorKind.TIMEOUT: 7,
}


class ClientError(RuntimeError):
    """Raised (or delivered through a completion) when a client operation fails."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True, slots=True)
class AsyncResult(Generic[T]):
    """Outcome of an asynchronous operation: either a value or an error."""

    value: T | None = None
    error: ClientError | None = None

    def __post_init__(self) -> None:
        if self.error is not None and self.value is not None:
            raise ValueError("AsyncResult holds either a value or an error, not both")

    @classmethod
    def success(cls, value: T) -> AsyncResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: ClientError) -> AsyncResult[T]:
        return cls(error=error)

    @property
    def has_error(self) -> bool:
        return self.error is not None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, raising the stored error instead if there is one."""

        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class Completion(Generic[T]):
    """One-shot channel handing a single AsyncResult to one awaiting party.

    The producer calls :meth:`fulfil` exactly once; the consumer blocks on
    :attr:`future`. Fulfilling twice is a programming error and raises
    ``RuntimeError`` rather than silently replacing the first outcome.
    """

    def __init__(self) -> None:
        self._future: Future[AsyncResult[T]] = Future()
        self._lock = threading.Lock()

    @property
    def future(self) -> Future[AsyncResult[T]]:
        return self._future

    @property
    def done(self) -> bool:
        return self._future.done()

    def fulfil(self, result: AsyncResult[T]) -> None:
        with self._lock:
            if self._future.done():
                raise RuntimeError("completion has already been fulfilled")
            self._future.set_result(result)

    def succeed(self, value: T) -> None:
        self.fulfil(AsyncResult.success(value))

    def fail(self, error: ClientError) -> None:
        self.fulfil(AsyncResult.failure(error))


def completed(result: AsyncResult[T]) -> Future[AsyncResult[T]]:
    """Return a future that already holds ``result``."""

    future: Future[AsyncResult[T]] = Future()
    future.set_result(result)
    return future


__all__ = [
    "AsyncResult",
    "ClientError",
    "Completion",
    "ErrorKind",
    "completed",
]
