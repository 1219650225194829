"""Wire settings, stores and transports into ready-to-use services."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

import httpx
from fastapi import FastAPI

from .config import Settings, load_settings
from .local_store import LocalStore
from .orchestrator import AdminResetOrchestrator, ConfirmationProvider, NeverConfirm, ResetStage, ResetState
from .repository import ClientRepository
from .transport import Transport, stored_token_provider
from .users import UserDirectory

logger = logging.getLogger("clientdesk.application")


@dataclass
class Services:
    settings: Settings
    store: Optional[LocalStore]
    api: Transport
    auth: Transport
    repository: ClientRepository
    directory: UserDirectory
    orchestrator: AdminResetOrchestrator

    async def aclose(self) -> None:
        await self.api.aclose()
        await self.auth.aclose()


def build_services(
    settings: Optional[Settings] = None,
    *,
    interactive: bool = True,
    confirmation: Optional[ConfirmationProvider] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
    on_transition: Optional[Callable[[ResetStage, ResetState], None]] = None,
) -> Services:
    """Create the repository, user directory and reset orchestrator.

    ``interactive=False`` models a runtime without a persisted local store:
    local-mode operations are unavailable and no bearer token is attached.
    """

    settings = settings or load_settings()

    store: Optional[LocalStore] = None
    if interactive:
        store = LocalStore(settings.store_path)
        store.initialize()
        logger.info("Local store ready at %s", settings.store_path)

    token_provider = stored_token_provider(store)
    api = Transport(
        settings.api_url,
        token_provider=token_provider,
        timeout=settings.timeout,
        transport=http_transport,
    )
    auth = Transport(
        settings.auth_api_url,
        token_provider=token_provider,
        timeout=settings.timeout,
        transport=http_transport,
    )

    repository = ClientRepository(
        api,
        store,
        routing=settings.routing,
        local_latency=settings.local_latency,
    )
    directory = UserDirectory(api, auth)
    orchestrator = AdminResetOrchestrator(
        directory,
        confirmation or NeverConfirm(),
        ledger_store=store,
        on_transition=on_transition,
    )
    return Services(
        settings=settings,
        store=store,
        api=api,
        auth=auth,
        repository=repository,
        directory=directory,
        orchestrator=orchestrator,
    )


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """Create the ASGI application served by ``main.py serve``."""

    from .api import create_app

    services = build_services(settings)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await services.aclose()

    app = create_app(
        repository=services.repository,
        orchestrator=services.orchestrator,
        lifespan=lifespan,
    )
    app.state.services = services
    return app


__all__ = ["Services", "build_services", "create_application"]
