"""Configuration management for the client desk."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .local_store import resolve_store_path
from .repository import DEFAULT_LOCAL_LATENCY, BackingStore, build_routing

DEFAULT_API_URL = "http://localhost:3000/api/v1"
DEFAULT_AUTH_API_URL = "http://localhost:3000/api/auth"


@dataclass(frozen=True)
class Settings:
    """Endpoints, local store location and per-operation routing."""

    api_url: str = DEFAULT_API_URL
    auth_api_url: str = DEFAULT_AUTH_API_URL
    timeout: float = 30.0
    store_path: Path = field(default_factory=lambda: resolve_store_path(None))
    local_latency: float = DEFAULT_LOCAL_LATENCY
    routing: Mapping[str, BackingStore] = field(default_factory=build_routing)

    @staticmethod
    def from_dict(data: Dict[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        routing_raw = data.get("routing") or {}
        if not isinstance(routing_raw, dict):
            raise ValueError("The 'routing' setting must map operation names to 'remote' or 'local'")

        store_raw = data.get("store_path")
        if store_raw:
            candidate = Path(str(store_raw)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            store_path = candidate.resolve(strict=False)
        else:
            store_path = resolve_store_path(None)

        return Settings(
            api_url=str(data.get("api_url") or DEFAULT_API_URL),
            auth_api_url=str(data.get("auth_api_url") or DEFAULT_AUTH_API_URL),
            timeout=float(data.get("timeout", 30.0)),
            store_path=store_path,
            local_latency=float(data.get("local_latency", DEFAULT_LOCAL_LATENCY)),
            routing=build_routing({str(key): str(value) for key, value in routing_raw.items()}),
        )


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the configuration file."""
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "clientdesk.yaml").resolve(strict=False)
    return candidate


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """Load settings from YAML, then apply environment overrides.

    A missing configuration file yields the defaults.
    """

    path = config_path or resolve_config_path(os.getenv("CLIENTDESK_CONFIG"))
    raw: Dict[str, object] = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        raw = dict(loaded)

    for key, env_name in (
        ("api_url", "CLIENTDESK_API_URL"),
        ("auth_api_url", "CLIENTDESK_AUTH_API_URL"),
        ("store_path", "CLIENTDESK_STORE_PATH"),
    ):
        value = os.getenv(env_name)
        if value and key == "store_path":
            raw[key] = str(resolve_store_path(value))
        elif value:
            raw[key] = value

    return Settings.from_dict(raw, base_path=path.parent)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
