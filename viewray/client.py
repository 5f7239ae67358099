"""Caller-facing client retrieving data from a ViewRay server."""

from __future__ import annotations

from concurrent.futures import Future
import logging

from .connections import ConnectionManager
from .patients import PATIENT_LIST_TOPIC
from .results import AsyncResult, ClientError, ErrorKind, completed
from .session import ListRetrievalSession, PatientMap, subscribe_request
from .transport import Transport, WebsocketsTransport

LOG = logging.getLogger(__name__)


class ViewRayClient:
    """Retrieves the patient list from one server address.

    Every fetch opens its own connection, which the session closes once the
    list is assembled. Call :meth:`init` before fetching.
    """

    def __init__(
        self,
        address: str,
        *,
        manager: ConnectionManager | None = None,
        transport: Transport | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        self._address = address
        self._connect_timeout = connect_timeout
        if manager is None:
            manager = ConnectionManager(transport or WebsocketsTransport(open_timeout=connect_timeout))
        self._manager = manager

    @property
    def address(self) -> str:
        return self._address

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    def init(self) -> None:
        self._manager.init()

    def shutdown(self) -> None:
        self._manager.shutdown()

    def __enter__(self) -> ViewRayClient:
        self.init()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def fetch_patient_list(self) -> Future[AsyncResult[PatientMap]]:
        """Start retrieving the patient list; blocks only until the connection opens."""

        session = ListRetrievalSession()
        connected = self._manager.connect(self._address, lambda: session)
        try:
            result = connected.result(timeout=self._connect_timeout)
        except TimeoutError:
            connected.add_done_callback(self._close_late_connection)
            error = ClientError(
                ErrorKind.TIMEOUT,
                f"no answer from {self._address} within {self._connect_timeout}s",
            )
            return completed(AsyncResult.failure(error))
        if result.error is not None:
            return completed(AsyncResult.failure(result.error))

        connection_id = result.unwrap()
        try:
            self._manager.send(connection_id, subscribe_request(PATIENT_LIST_TOPIC))
        except ClientError as exc:
            LOG.warning("Could not request the patient list: %s", exc)
            return completed(AsyncResult.failure(exc))
        return session.completion.future

    def _close_late_connection(self, connected: Future[AsyncResult[int]]) -> None:
        """Close a connection that opened after its fetch already timed out."""

        result = connected.result()
        if result.error is not None:
            return
        connection_id = result.unwrap()
        LOG.info("Closing connection %s that opened after the connect timeout", connection_id)
        try:
            self._manager.close(connection_id)
        except ClientError as exc:
            LOG.warning("Could not close connection %s: %s", connection_id, exc)

    def get_patient_list(self, timeout: float | None = None) -> AsyncResult[PatientMap]:
        """Blocking wrapper around :meth:`fetch_patient_list`."""

        future = self.fetch_patient_list()
        try:
            return future.result(timeout=timeout)
        except TimeoutError:
            return AsyncResult.failure(
                ClientError(ErrorKind.TIMEOUT, f"patient list not received within {timeout}s")
            )


__all__ = ["ViewRayClient"]
