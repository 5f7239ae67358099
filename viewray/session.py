"""Patient list retrieval over the subscription protocol.

The server only returns full detail for one subscribed item per request, so
fetching the list takes two phases: subscribe to the list topic, then
subscribe to every listed patient one request at a time and fold the answers
back into the list. All methods run on the connection manager's processing
thread, which is what makes the counters here safe without a lock.
"""

from __future__ import annotations

from enum import Enum
import json
import logging
from typing import TYPE_CHECKING, Any, Mapping

from pydantic import ValidationError

from .patients import PATIENT_LIST_TOPIC, Patient, PatientList, PatientUpdate
from .results import ClientError, Completion, ErrorKind
from .transport import NORMAL_CLOSURE, PROTOCOL_ERROR

if TYPE_CHECKING:
    from .connections import ConnectionManager, ConnectionRecord

LOG = logging.getLogger(__name__)

PatientMap = dict[str, Patient]


def subscribe_request(topic: str) -> dict[str, Any]:
    """Build the request subscribing to a single topic."""

    return {"setSubscriptions": {topic: "request"}}


class SessionState(str, Enum):
    AWAITING_LIST = "awaiting_list"
    FANNING_OUT = "fanning_out"
    COMPLETE = "complete"


class ListRetrievalSession:
    """Message handler that assembles the full patient list on one connection."""

    def __init__(self) -> None:
        self._state = SessionState.AWAITING_LIST
        self._pending: PatientMap = {}
        self._refined: set[str] = set()
        self._outstanding = 0
        self._completion: Completion[PatientMap] = Completion()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def outstanding(self) -> int:
        """Number of per-patient responses still expected."""

        return self._outstanding

    @property
    def pending_items(self) -> Mapping[str, Patient]:
        return dict(self._pending)

    @property
    def completion(self) -> Completion[PatientMap]:
        return self._completion

    def on_message(self, manager: ConnectionManager, record: ConnectionRecord, payload: str) -> None:
        if self._state is SessionState.COMPLETE:
            LOG.debug("Dropping message on completed connection %s", record.id)
            return
        try:
            updates = self._updates(payload)
            if self._state is SessionState.AWAITING_LIST:
                self._handle_list(manager, record, updates)
            else:
                self._handle_items(manager, record, updates)
        except ClientError as exc:
            self._abort(manager, record, exc)
        except Exception as exc:
            if self._completion.done:
                raise
            LOG.exception("Unexpected error handling a response on connection %s", record.id)
            self._abort(manager, record, _protocol_error(f"cannot handle response: {exc}"))

    def _handle_list(
        self,
        manager: ConnectionManager,
        record: ConnectionRecord,
        updates: Mapping[str, Any],
    ) -> None:
        if PATIENT_LIST_TOPIC not in updates:
            raise _protocol_error(f"expected '{PATIENT_LIST_TOPIC}' in the first response")
        try:
            patient_list = PatientList.model_validate(updates[PATIENT_LIST_TOPIC])
        except ValidationError as exc:
            raise _protocol_error(f"malformed patient list: {exc}") from exc

        for patient in patient_list.value:
            self._pending[patient.uri] = patient
        self._outstanding = len(self._pending)
        LOG.info("Patient list on connection %s holds %d patient(s)", record.id, self._outstanding)
        if not self._outstanding:
            self._complete(manager, record)
            return

        self._state = SessionState.FANNING_OUT
        # Batched subscriptions only return the first entry, so one request per patient.
        for uri in self._pending:
            manager.send(record.id, subscribe_request(uri))

    def _handle_items(
        self,
        manager: ConnectionManager,
        record: ConnectionRecord,
        updates: Mapping[str, Any],
    ) -> None:
        for uri, data in updates.items():
            patient = self._pending.get(uri)
            if patient is None:
                LOG.debug("Ignoring update for unknown topic %s", uri)
                continue
            try:
                update = PatientUpdate.model_validate(data)
            except ValidationError as exc:
                raise _protocol_error(f"malformed patient update for {uri}: {exc}") from exc
            self._pending[uri] = patient.with_diagnoses(update.diagnoses)
            if uri in self._refined:
                continue
            self._refined.add(uri)
            self._outstanding -= 1

        LOG.debug("Connection %s still expects %d patient(s)", record.id, self._outstanding)
        if self._outstanding == 0:
            self._complete(manager, record)

    def _complete(self, manager: ConnectionManager, record: ConnectionRecord) -> None:
        self._state = SessionState.COMPLETE
        self._completion.succeed(dict(self._pending))
        self._close(manager, record, NORMAL_CLOSURE)

    def _abort(self, manager: ConnectionManager, record: ConnectionRecord, error: ClientError) -> None:
        LOG.warning("Patient list retrieval on connection %s failed: %s", record.id, error)
        self._state = SessionState.COMPLETE
        self._completion.fail(error)
        code = PROTOCOL_ERROR if error.kind is ErrorKind.PROTOCOL_ERROR else NORMAL_CLOSURE
        self._close(manager, record, code)

    @staticmethod
    def _close(manager: ConnectionManager, record: ConnectionRecord, code: int) -> None:
        try:
            manager.close(record.id, code)
        except ClientError as exc:
            LOG.warning("Could not close connection %s: %s", record.id, exc)

    @staticmethod
    def _updates(payload: str) -> Mapping[str, Any]:
        try:
            document = json.loads(payload)
        except (ValueError, RecursionError) as exc:
            raise _protocol_error(f"response is not valid JSON: {exc}") from exc
        if not isinstance(document, dict) or not isinstance(document.get("updateSubscriptions"), dict):
            raise _protocol_error("response has no 'updateSubscriptions' object")
        return document["updateSubscriptions"]


def _protocol_error(message: str) -> ClientError:
    return ClientError(ErrorKind.PROTOCOL_ERROR, message)


__all__ = [
    "ListRetrievalSession",
    "PatientMap",
    "SessionState",
    "subscribe_request",
]
