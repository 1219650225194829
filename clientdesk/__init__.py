"""Client records and administrative reset for a service business."""

from __future__ import annotations

from typing import Any

from .classifier import classify, classify_error
from .local_store import LocalStore, resolve_store_path
from .repository import BackingStore, ClientRepository


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the JSON application."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "BackingStore",
    "ClientRepository",
    "LocalStore",
    "classify",
    "classify_error",
    "create_app",
    "resolve_store_path",
]
