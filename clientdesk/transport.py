"""HTTP transport for talking to the authoritative store."""

from __future__ import annotations

import logging
from typing import Any, Callable, Generator, Optional, Sequence

import httpx

from .errors import TransportError
from .local_store import AUTH_TOKEN_KEY, LocalStore

logger = logging.getLogger("clientdesk.transport")

TokenProvider = Callable[[], Optional[str]]

API_PATH_MARKERS: tuple[str, ...] = ("/api/v1", "/api/auth")


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("API base URL must not be empty")
    return cleaned.rstrip("/")


def _build_endpoint(base_url: str, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"{base_url}{path}"


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return default


def _parse_body(response: httpx.Response) -> object:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def stored_token_provider(store: Optional[LocalStore]) -> TokenProvider:
    """Read the bearer token from the credential slot of ``store``.

    Without a local store (non-interactive contexts) no token is ever returned.
    """

    def _provider() -> Optional[str]:
        if store is None:
            return None
        token = store.get(AUTH_TOKEN_KEY)
        return token.strip() if token and token.strip() else None

    return _provider


class BearerTokenAuth(httpx.Auth):
    """Attach ``Authorization: Bearer`` to requests aimed at the API surface."""

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        path_markers: Sequence[str] = API_PATH_MARKERS,
    ) -> None:
        self._token_provider = token_provider
        self._path_markers = tuple(path_markers)

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self._token_provider()
        url = str(request.url)
        if token and any(marker in url for marker in self._path_markers):
            request.headers["Authorization"] = f"Bearer {token}"
        yield request


class Transport:
    """Thin JSON client bound to one base URL.

    Every method returns the parsed response body or raises
    :class:`~clientdesk.errors.TransportError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = _normalize_base_url(base_url)
        auth = BearerTokenAuth(token_provider) if token_provider is not None else None
        self._client = httpx.AsyncClient(auth=auth, timeout=timeout, transport=transport)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        url = _build_endpoint(self._base_url, path)
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.RequestError as exc:
            logger.warning("%s %s failed before a response was received: %s", method, url, exc)
            raise TransportError(
                f"Http failure response for {url}: 0 Unknown Error ({exc})",
                status=0,
                url=url,
            ) from exc

        body = _parse_body(response)
        if response.status_code >= 400:
            default = f"Http failure response for {url}: {response.status_code} {response.reason_phrase}"
            raise TransportError(
                _extract_error_message(body, default),
                status=response.status_code,
                body=body,
                url=url,
            )
        if isinstance(body, str):
            logger.warning("%s %s answered %s with a body that is not JSON", method, url, response.status_code)
            raise TransportError(
                f"Http failure during parsing for {url}",
                status=response.status_code,
                body=body,
                url=url,
            )
        return body

    async def get(self, path: str) -> Any:
        return await self.request("GET", path)

    async def post(self, path: str, payload: Any = None) -> Any:
        return await self.request("POST", path, json=payload)

    async def put(self, path: str, payload: Any = None) -> Any:
        return await self.request("PUT", path, json=payload)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "API_PATH_MARKERS",
    "BearerTokenAuth",
    "TokenProvider",
    "Transport",
    "stored_token_provider",
]
