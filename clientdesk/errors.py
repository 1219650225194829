"""Error taxonomy shared by the client repository and the admin reset workflow."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Stable failure classes surfaced to the presentation layer."""

    CONNECTIVITY = "connectivity_error"
    BACKEND_MISBEHAVING = "backend_misbehaving"
    ENDPOINT_NOT_FOUND = "endpoint_not_found"
    SERVER_ERROR = "server_error"
    UNCLASSIFIED = "unclassified_transport_error"


class ClientDeskError(RuntimeError):
    """Base class for every error raised by the clientdesk package."""


class TransportError(ClientDeskError):
    """Raised when a request to the remote store fails.

    ``status`` is ``0`` when the server could not be reached at all.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        body: object = None,
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
        self.url = url


class ClassifiedError(ClientDeskError):
    """A transport failure mapped onto an :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConnectivityError(ClassifiedError):
    kind = ErrorKind.CONNECTIVITY


class BackendMisbehaving(ClassifiedError):
    kind = ErrorKind.BACKEND_MISBEHAVING


class EndpointNotFound(ClassifiedError):
    kind = ErrorKind.ENDPOINT_NOT_FOUND


class ServerError(ClassifiedError):
    kind = ErrorKind.SERVER_ERROR


class UnclassifiedTransportError(ClassifiedError):
    kind = ErrorKind.UNCLASSIFIED


class LocalStoreUnavailable(ClientDeskError):
    """Raised when a local-mode operation runs without a persisted store."""


class ResetInProgressError(ClientDeskError):
    """Raised when the admin reset is invoked while a run is still in flight."""


class StageFailure(ClientDeskError):
    """Terminal failure of one admin reset stage."""

    def __init__(self, stage: str, cause: str) -> None:
        super().__init__(f"{stage} failed: {cause}")
        self.stage = stage
        self.cause = cause


__all__ = [
    "BackendMisbehaving",
    "ClassifiedError",
    "ClientDeskError",
    "ConnectivityError",
    "EndpointNotFound",
    "ErrorKind",
    "LocalStoreUnavailable",
    "ResetInProgressError",
    "ServerError",
    "StageFailure",
    "TransportError",
    "UnclassifiedTransportError",
]
