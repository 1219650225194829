"""Dual-mode data access for client records."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .classifier import classify_error
from .errors import LocalStoreUnavailable, TransportError
from .local_store import OFFLINE_CLIENTS_KEY, UNCHANGED, LocalStore
from .models import (
    BanStatus,
    Client,
    ClientAppointmentHistory,
    Confirmation,
    record_id,
    to_wire,
)
from .transport import Transport

logger = logging.getLogger("clientdesk.repository")

DEFAULT_LOCAL_LATENCY = 0.3


class BackingStore(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"


_REMOTE_ONLY = frozenset({BackingStore.REMOTE})
_DUAL = frozenset({BackingStore.REMOTE, BackingStore.LOCAL})

SUPPORTED_BACKENDS: Mapping[str, frozenset] = MappingProxyType(
    {
        "list": _DUAL,
        "list_with_statistics": _REMOTE_ONLY,
        "get_by_id": _REMOTE_ONLY,
        "create": _REMOTE_ONLY,
        "update": _REMOTE_ONLY,
        "delete": _DUAL,
        "ban": _DUAL,
        "unban": _DUAL,
        "get_appointment_history": _REMOTE_ONLY,
    }
)

# Destructive and toggle operations were cut over to the local store first;
# reads, create and update still go to the authoritative store.
DEFAULT_ROUTING: Mapping[str, BackingStore] = MappingProxyType(
    {
        "list": BackingStore.REMOTE,
        "list_with_statistics": BackingStore.REMOTE,
        "get_by_id": BackingStore.REMOTE,
        "create": BackingStore.REMOTE,
        "update": BackingStore.REMOTE,
        "delete": BackingStore.LOCAL,
        "ban": BackingStore.LOCAL,
        "unban": BackingStore.LOCAL,
        "get_appointment_history": BackingStore.REMOTE,
    }
)


def build_routing(
    overrides: Optional[Mapping[str, Union[str, BackingStore]]] = None,
) -> Mapping[str, BackingStore]:
    """Return a validated routing table, starting from :data:`DEFAULT_ROUTING`."""

    routing: Dict[str, BackingStore] = dict(DEFAULT_ROUTING)
    for operation, raw_mode in (overrides or {}).items():
        if operation not in SUPPORTED_BACKENDS:
            raise ValueError(f"Unknown repository operation '{operation}'")
        try:
            mode = BackingStore(raw_mode)
        except ValueError as exc:
            raise ValueError(f"Unknown backing store '{raw_mode}' for '{operation}'") from exc
        if mode not in SUPPORTED_BACKENDS[operation]:
            raise ValueError(f"Operation '{operation}' cannot be served from the {mode.value} store")
        routing[operation] = mode
    return MappingProxyType(routing)


def _confirmation(payload: object, default: str) -> Confirmation:
    if isinstance(payload, Mapping) and isinstance(payload.get("message"), str):
        return Confirmation(message=payload["message"])
    return Confirmation(message=default)


def _parse_clients(payload: object) -> List[Client]:
    if not isinstance(payload, list):
        raise ValueError("Expected a list of client records")
    return [_parse_client(item) for item in payload]


def _parse_client(payload: object) -> Client:
    if not isinstance(payload, Mapping):
        raise ValueError("Expected a client record")
    return Client.from_dict(payload)


def _parse_appointment_history(payload: object) -> ClientAppointmentHistory:
    if not isinstance(payload, Mapping):
        raise ValueError("Expected an appointment history record")
    return ClientAppointmentHistory.from_dict(payload)


class ClientRepository:
    """Serve client operations from the remote or the local store.

    Which store answers is decided per operation by the routing table. Remote
    failures are raised as :class:`~clientdesk.errors.ClassifiedError`; nothing
    is retried and reads never fall back to local data.
    """

    def __init__(
        self,
        transport: Transport,
        local_store: Optional[LocalStore] = None,
        *,
        routing: Optional[Mapping[str, Union[str, BackingStore]]] = None,
        local_latency: float = DEFAULT_LOCAL_LATENCY,
    ) -> None:
        self._transport = transport
        self._store = local_store
        self._routing = build_routing(routing)
        self._local_latency = max(0.0, float(local_latency))
        self._local_lock = asyncio.Lock()

    @property
    def routing(self) -> Mapping[str, BackingStore]:
        return self._routing

    def mode_for(self, operation: str) -> BackingStore:
        return self._routing[operation]

    # Remote helpers -----------------------------------------------------

    async def _remote(
        self,
        method: str,
        path: str,
        payload: Any = None,
        *,
        decode: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        try:
            body = await self._transport.request(method, path, json=payload)
            if decode is None:
                return body
            try:
                return decode(body)
            except (TypeError, ValueError) as exc:
                raise TransportError(str(exc), status=200, body=body, url=path) from exc
        except TransportError as exc:
            classified = classify_error(exc)
            logger.error(
                "Client service error on %s %s (status %s): %s",
                method,
                path,
                exc.status,
                classified.kind.value,
            )
            raise classified from exc

    # Local helpers ------------------------------------------------------

    def _require_store(self, operation: str) -> LocalStore:
        if self._store is None:
            raise LocalStoreUnavailable(
                f"Operation '{operation}' is routed to the local store, which is not available"
            )
        return self._store

    async def _local_delay(self) -> None:
        await asyncio.sleep(self._local_latency)

    async def _read_local(self, operation: str) -> List[Dict[str, Any]]:
        store = self._require_store(operation)
        await self._local_delay()
        records = store.get_json(OFFLINE_CLIENTS_KEY, default=[])
        return list(records or [])

    async def _mutate_local(self, operation: str, mutate) -> Any:
        store = self._require_store(operation)
        await self._local_delay()
        async with self._local_lock:
            return store.update_json(OFFLINE_CLIENTS_KEY, mutate, default=[])

    # Operations ---------------------------------------------------------

    async def list(self) -> List[Client]:
        if self.mode_for("list") is BackingStore.LOCAL:
            records = await self._read_local("list")
            logger.info("Loaded %d clients from the local store", len(records))
            return _parse_clients(records)

        logger.info("Loading clients from the remote store")
        return await self._remote("GET", "/clients", decode=_parse_clients)

    async def list_with_statistics(self) -> List[Client]:
        return await self._remote("GET", "/clients/with-stats", decode=_parse_clients)

    async def get_by_id(self, client_id: str) -> Client:
        return await self._remote("GET", f"/clients/{client_id}", decode=_parse_client)

    async def create(self, client: Mapping[str, Any]) -> Confirmation:
        payload = await self._remote("POST", "/clients", to_wire(dict(client)))
        return _confirmation(payload, "Client created")

    async def update(self, client_id: str, client: Mapping[str, Any]) -> Confirmation:
        payload = await self._remote("PUT", f"/clients/{client_id}", to_wire(dict(client)))
        return _confirmation(payload, "Client updated")

    async def delete(self, client_id: str) -> Confirmation:
        if self.mode_for("delete") is BackingStore.REMOTE:
            payload = await self._remote("DELETE", f"/clients/{client_id}")
            return _confirmation(payload, "Client deleted")

        def _remove(records: List[Dict[str, Any]]) -> Any:
            remaining = [record for record in records if record_id(record) != client_id]
            if len(remaining) == len(records):
                return UNCHANGED
            return remaining

        await self._mutate_local("delete", _remove)
        return Confirmation(message="Client deleted successfully (local store)")

    async def ban(self, client_id: str, cancel_appointments: bool = True) -> BanStatus:
        if self.mode_for("ban") is BackingStore.REMOTE:
            payload = await self._remote(
                "POST",
                f"/admin/clients/{client_id}/ban",
                {"cancelAppointments": cancel_appointments},
            )
            return _ban_status(payload, default_banned=True)

        found: Dict[str, bool] = {}

        def _toggle(records: List[Dict[str, Any]]) -> Any:
            for record in records:
                if record_id(record) == client_id:
                    record["isBanned"] = not bool(record.get("isBanned", False))
                    found["is_banned"] = record["isBanned"]
                    return records
            return UNCHANGED

        await self._mutate_local("ban", _toggle)
        if "is_banned" not in found:
            return BanStatus(message="Client ban status updated (local store)", is_banned=True)
        state = "banned" if found["is_banned"] else "unbanned"
        logger.info("Client %s %s in the local store", client_id, state)
        return BanStatus(message=f"Client {state} successfully (local store)", is_banned=found["is_banned"])

    async def unban(self, client_id: str) -> BanStatus:
        if self.mode_for("unban") is BackingStore.REMOTE:
            payload = await self._remote("POST", f"/admin/clients/{client_id}/unban", {})
            return _ban_status(payload, default_banned=False)

        found: Dict[str, bool] = {}

        def _clear(records: List[Dict[str, Any]]) -> Any:
            for record in records:
                if record_id(record) == client_id:
                    record["isBanned"] = False
                    found["matched"] = True
                    return records
            return UNCHANGED

        await self._mutate_local("unban", _clear)
        if not found:
            return BanStatus(message="Client unbanned (local store)", is_banned=False)
        return BanStatus(message="Client unbanned successfully (local store)", is_banned=False)

    async def get_appointment_history(self, client_id: str) -> ClientAppointmentHistory:
        return await self._remote(
            "GET", f"/clients/{client_id}/appointments", decode=_parse_appointment_history
        )

    async def cache_clients(self, clients: Iterable[Union[Client, Mapping[str, Any]]]) -> int:
        """Replace the local client list, e.g. with a snapshot of the remote one."""

        records = [
            client.to_dict() if isinstance(client, Client) else to_wire(dict(client))
            for client in clients
        ]
        for record in records:
            if record_id(record) is None:
                raise ValueError("Cannot cache a client record without an identifier")
        await self._mutate_local("cache_clients", lambda _current: records)
        logger.info("Cached %d clients in the local store", len(records))
        return len(records)


def _ban_status(payload: object, *, default_banned: bool) -> BanStatus:
    if isinstance(payload, Mapping):
        message = payload.get("message")
        return BanStatus(
            message=message if isinstance(message, str) else "Client ban status updated",
            is_banned=bool(payload.get("isBanned", default_banned)),
        )
    return BanStatus(message="Client ban status updated", is_banned=default_banned)


__all__ = [
    "BackingStore",
    "ClientRepository",
    "DEFAULT_LOCAL_LATENCY",
    "DEFAULT_ROUTING",
    "SUPPORTED_BACKENDS",
    "build_routing",
]
