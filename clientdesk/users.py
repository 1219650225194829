"""User account endpoints used by the admin reset workflow."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

from .classifier import classify_error
from .errors import TransportError
from .models import AdminProvisionRequest
from .transport import Transport

logger = logging.getLogger("clientdesk.users")


class UserDirectory:
    """List and delete accounts on the API service, register on the auth service."""

    def __init__(self, api: Transport, auth: Transport) -> None:
        self._api = api
        self._auth = auth

    async def list_users(self) -> List[Dict[str, Any]]:
        try:
            payload = await self._api.get("/users")
        except TransportError as exc:
            raise classify_error(exc) from exc
        if not isinstance(payload, list):
            raise ValueError("Expected a list of user records")
        if not all(isinstance(item, Mapping) for item in payload):
            raise ValueError("Expected every user record to be an object")
        return [dict(item) for item in payload]

    async def delete_user(self, user_id: str) -> Any:
        try:
            return await self._api.delete(f"/users/{user_id}")
        except TransportError as exc:
            raise classify_error(exc) from exc

    async def register_admin(self, request: AdminProvisionRequest) -> Any:
        logger.info("Registering administrator %s", request.email)
        try:
            return await self._auth.post("/register", request.to_payload())
        except TransportError as exc:
            raise classify_error(exc) from exc


__all__ = ["UserDirectory"]
