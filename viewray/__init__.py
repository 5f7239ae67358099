"""Client for the ViewRay websocket subscription API."""

from __future__ import annotations

from .client import ViewRayClient
from .connections import ConnectionManager, ConnectionRecord, ConnectionStatus, MessageHandler
from .patients import Diagnosis, Patient, Plan, Prescription
from .results import AsyncResult, ClientError, Completion, ErrorKind
from .session import ListRetrievalSession

__all__ = [
    "AsyncResult",
    "ClientError",
    "Completion",
    "ConnectionManager",
    "ConnectionRecord",
    "ConnectionStatus",
    "Diagnosis",
    "ErrorKind",
    "ListRetrievalSession",
    "MessageHandler",
    "Patient",
    "Plan",
    "Prescription",
    "ViewRayClient",
]
