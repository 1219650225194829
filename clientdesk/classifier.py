"""Map transport failures onto the stable :class:`ErrorKind` taxonomy."""
from __future__ import annotations

from typing import Dict, Type

from .errors import (
    BackendMisbehaving,
    ClassifiedError,
    ConnectivityError,
    EndpointNotFound,
    ErrorKind,
    ServerError,
    TransportError,
    UnclassifiedTransportError,
)

_CROSS_ORIGIN_MARKERS = ("CORS", "Access-Control-Allow-Origin")
_MARKUP_MARKERS = ("<!doctype", "<html")

_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.CONNECTIVITY: (
        "Unable to connect to the server. Please check that the backend is running "
        "and accepts requests from this client."
    ),
    ErrorKind.BACKEND_MISBEHAVING: (
        "Backend server is not responding correctly. Please check if the server is running."
    ),
    ErrorKind.ENDPOINT_NOT_FOUND: (
        "Client API endpoint not found. Please check the backend configuration."
    ),
    ErrorKind.SERVER_ERROR: "Server error occurred. Please try again later.",
}

_EXCEPTIONS: Dict[ErrorKind, Type[ClassifiedError]] = {
    ErrorKind.CONNECTIVITY: ConnectivityError,
    ErrorKind.BACKEND_MISBEHAVING: BackendMisbehaving,
    ErrorKind.ENDPOINT_NOT_FOUND: EndpointNotFound,
    ErrorKind.SERVER_ERROR: ServerError,
    ErrorKind.UNCLASSIFIED: UnclassifiedTransportError,
}

_DEFAULT_MESSAGE = "Request failed"


def _is_markup(body: object) -> bool:
    if not isinstance(body, str):
        return False
    lowered = body.lower()
    return any(marker in lowered for marker in _MARKUP_MARKERS)


def classify(error: TransportError) -> ErrorKind:
    """Return the :class:`ErrorKind` for ``error``. First matching rule wins."""

    message = error.message or ""
    if error.status == 0 or any(marker in message for marker in _CROSS_ORIGIN_MARKERS):
        return ErrorKind.CONNECTIVITY
    if _is_markup(error.body):
        return ErrorKind.BACKEND_MISBEHAVING
    if error.status == 404:
        return ErrorKind.ENDPOINT_NOT_FOUND
    if error.status >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNCLASSIFIED


def classify_error(error: TransportError) -> ClassifiedError:
    """Build the display-ready exception for ``error``."""

    kind = classify(error)
    message = _MESSAGES.get(kind) or (error.message or "").strip() or _DEFAULT_MESSAGE
    return _EXCEPTIONS[kind](message)


__all__ = ["classify", "classify_error"]
