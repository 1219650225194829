"""SQLite-backed persisted key-value store used as the local backing store."""
from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

OFFLINE_CLIENTS_KEY = "offline_clients"
AUTH_TOKEN_KEY = "auth_token"


class _Unchanged:
    def __repr__(self) -> str:
        return "UNCHANGED"


# Returned by an update callback to leave the slot exactly as it was.
UNCHANGED: Any = _Unchanged()


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_store_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the local store."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "clientdesk.sqlite3").resolve(strict=False)


def _current_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalStore:
    """Persisted string slots addressed by key.

    :meth:`update` performs read-modify-write inside a single ``BEGIN
    IMMEDIATE`` transaction so concurrent writers cannot lose updates.
    """

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Create the slot table if it does not already exist."""

        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS slots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM slots WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return row["value"] if row is not None else None

    def set(self, key: str, value: str) -> None:
        self.update(key, lambda _current: value)

    def remove(self, key: str) -> None:
        self.update(key, lambda _current: None)

    def update(self, key: str, mutate: Callable[[Optional[str]], Optional[str]]) -> Optional[str]:
        """Atomically replace the value stored under ``key``.

        ``mutate`` receives the current value (or ``None``) and returns the new
        value; returning ``None`` deletes the slot and returning
        :data:`UNCHANGED` skips the write.
        """

        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute("SELECT value FROM slots WHERE key = ?", (key,)).fetchone()
                    updated = mutate(row["value"] if row is not None else None)
                    if updated is UNCHANGED:
                        pass
                    elif updated is None:
                        conn.execute("DELETE FROM slots WHERE key = ?", (key,))
                    else:
                        conn.execute(
                            """
                            INSERT INTO slots (key, value, updated_at) VALUES (?, ?, ?)
                            ON CONFLICT(key) DO UPDATE SET
                                value = excluded.value,
                                updated_at = excluded.updated_at
                            """,
                            (key, updated, _current_timestamp()),
                        )
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()
        return updated

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))

    def update_json(self, key: str, mutate: Callable[[Any], Any], default: Any = None) -> Any:
        """JSON flavour of :meth:`update`; ``mutate`` may modify its argument in place."""

        result: dict[str, Any] = {}

        def _apply(raw: Optional[str]) -> Any:
            current = json.loads(raw) if raw is not None else default
            updated = mutate(current)
            result["value"] = updated
            if updated is UNCHANGED:
                return UNCHANGED
            return json.dumps(updated) if updated is not None else None

        self.update(key, _apply)
        return result.get("value")


__all__ = [
    "AUTH_TOKEN_KEY",
    "LocalStore",
    "OFFLINE_CLIENTS_KEY",
    "UNCHANGED",
    "resolve_store_path",
]
