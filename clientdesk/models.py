"""Domain models for client records and the admin reset workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional


def parse_datetime(value: object) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def record_id(record: Mapping[str, Any]) -> Optional[str]:
    """Return the identifier of a wire record, accepting ``_id`` or ``id``."""

    value = record.get("_id")
    if value is None:
        value = record.get("id")
    return str(value) if value is not None else None


def to_wire(value: object) -> object:
    """Convert dates nested in ``value`` into JSON-friendly strings."""

    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): to_wire(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_wire(item) for item in value]
    return value


@dataclass
class Client:
    """A client record as stored by the authoritative or the local store.

    ``total_appointments`` and ``last_appointment`` are statistics computed by
    the authoritative store and are never derived locally.
    """

    id: str
    name: str
    email: str
    phone: str
    date_joined: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    notes: Optional[str] = None
    is_banned: bool = False
    roles: List[str] = field(default_factory=list)
    preferences: Optional[Dict[str, Any]] = None
    total_appointments: Optional[int] = None
    last_appointment: Optional[datetime] = None

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Client":
        """Create a :class:`Client` from a wire record.

        A record without an identifier is a creation request rather than an
        entity and is rejected.
        """

        identifier = record_id(data)
        if identifier is None:
            raise ValueError("Client record is missing its identifier")

        preferences = data.get("preferences")
        total = data.get("totalAppointments")
        return Client(
            id=identifier,
            name=str(data.get("name", "")),
            email=str(data.get("email", "")),
            phone=str(data.get("phone", "")),
            date_joined=parse_datetime(data.get("dateJoined")),
            last_updated=parse_datetime(data.get("lastUpdated")),
            notes=data.get("notes"),
            is_banned=bool(data.get("isBanned", False)),
            roles=[str(role) for role in data.get("roles") or []],
            preferences=dict(preferences) if isinstance(preferences, Mapping) else None,
            total_appointments=int(total) if total is not None else None,
            last_appointment=parse_datetime(data.get("lastAppointment")),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "_id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "dateJoined": serialize_datetime(self.date_joined),
            "lastUpdated": serialize_datetime(self.last_updated),
            "isBanned": self.is_banned,
            "roles": list(self.roles),
        }
        if self.notes is not None:
            payload["notes"] = self.notes
        if self.preferences is not None:
            payload["preferences"] = dict(self.preferences)
        if self.total_appointments is not None:
            payload["totalAppointments"] = self.total_appointments
        if self.last_appointment is not None:
            payload["lastAppointment"] = serialize_datetime(self.last_appointment)
        return payload


@dataclass
class ClientAppointmentHistory:
    client: Client
    appointments: List[Any]
    total_spent: float
    favorite_service: str

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "ClientAppointmentHistory":
        client = data.get("client")
        if not isinstance(client, Mapping):
            raise ValueError("Appointment history is missing its client record")
        return ClientAppointmentHistory(
            client=Client.from_dict(client),
            appointments=list(data.get("appointments") or []),
            total_spent=float(data.get("totalSpent") or 0),
            favorite_service=str(data.get("favoriteService") or ""),
        )


@dataclass(frozen=True)
class Confirmation:
    """Confirmation message returned by a store."""

    message: str


@dataclass(frozen=True)
class BanStatus:
    message: str
    is_banned: bool


@dataclass
class AdminProvisionRequest:
    """Registration payload for the administrator created by the reset.

    The password is write-only: it is hidden from ``repr`` and wiped by
    :meth:`discard` once the registration call has returned.
    """

    email: str
    name: str
    password: str = field(repr=False)
    phone: str
    role: str = field(default="admin", init=False)

    def to_payload(self) -> Dict[str, str]:
        return {
            "email": self.email,
            "name": self.name,
            "password": self.password,
            "phone": self.phone,
            "role": self.role,
        }

    def discard(self) -> None:
        self.password = ""


__all__ = [
    "AdminProvisionRequest",
    "BanStatus",
    "Client",
    "ClientAppointmentHistory",
    "Confirmation",
    "parse_datetime",
    "record_id",
    "serialize_datetime",
    "to_wire",
]
