"""FastAPI application exposing the client repository and the admin reset."""
from __future__ import annotations

import logging
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .errors import ClassifiedError, ErrorKind, LocalStoreUnavailable, ResetInProgressError
from .orchestrator import AdminResetOrchestrator, ProvisioningForm, StaticConfirmation
from .repository import ClientRepository

logger = logging.getLogger("clientdesk.api")

_STATUS_BY_KIND = {
    ErrorKind.CONNECTIVITY: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.BACKEND_MISBEHAVING: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.ENDPOINT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.SERVER_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.UNCLASSIFIED: status.HTTP_502_BAD_GATEWAY,
}


class BanRequest(BaseModel):
    cancelAppointments: bool = True


class AdminResetRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    name: str = Field(default="Admin", max_length=255)
    password: str = Field(..., min_length=1)
    phone: str = Field(default="0830000000", max_length=64)
    confirm: bool = False


def create_app(
    *,
    repository: ClientRepository,
    orchestrator: AdminResetOrchestrator,
    lifespan: Optional[Callable[[FastAPI], AsyncContextManager[None]]] = None,
) -> FastAPI:
    """Return the JSON application used by the presentation layer."""

    app = FastAPI(
        lifespan=lifespan,
        title="Client Desk",
        version="0.1.0",
        description="Client records and administrative reset for a service business.",
    )
    app.state.repository = repository
    app.state.orchestrator = orchestrator

    @app.exception_handler(ClassifiedError)
    async def _classified_error(_request: Request, exc: ClassifiedError) -> JSONResponse:
        return JSONResponse(
            status_code=_STATUS_BY_KIND[exc.kind],
            content={"detail": {"code": exc.kind.value, "message": exc.message}},
        )

    @app.exception_handler(LocalStoreUnavailable)
    async def _store_unavailable(_request: Request, exc: LocalStoreUnavailable) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": {"code": "local_store_unavailable", "message": str(exc)}},
        )

    @app.get("/clients")
    async def list_clients() -> List[Dict[str, Any]]:
        return [client.to_dict() for client in await repository.list()]

    @app.get("/clients/with-stats")
    async def list_clients_with_stats() -> List[Dict[str, Any]]:
        return [client.to_dict() for client in await repository.list_with_statistics()]

    @app.get("/clients/{client_id}")
    async def get_client(client_id: str) -> Dict[str, Any]:
        return (await repository.get_by_id(client_id)).to_dict()

    @app.get("/clients/{client_id}/appointments")
    async def client_appointments(client_id: str) -> Dict[str, Any]:
        history = await repository.get_appointment_history(client_id)
        return {
            "client": history.client.to_dict(),
            "appointments": history.appointments,
            "totalSpent": history.total_spent,
            "favoriteService": history.favorite_service,
        }

    @app.post("/clients", status_code=status.HTTP_201_CREATED)
    async def create_client(payload: Dict[str, Any] = Body(...)) -> Dict[str, str]:
        confirmation = await repository.create(payload)
        return {"message": confirmation.message}

    @app.put("/clients/{client_id}")
    async def update_client(client_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, str]:
        confirmation = await repository.update(client_id, payload)
        return {"message": confirmation.message}

    @app.delete("/clients/{client_id}")
    async def delete_client(client_id: str) -> Dict[str, str]:
        confirmation = await repository.delete(client_id)
        return {"message": confirmation.message}

    @app.post("/clients/{client_id}/ban")
    async def ban_client(client_id: str, payload: Optional[BanRequest] = None) -> Dict[str, Any]:
        cancel = payload.cancelAppointments if payload is not None else True
        result = await repository.ban(client_id, cancel_appointments=cancel)
        return {"message": result.message, "isBanned": result.is_banned}

    @app.post("/clients/{client_id}/unban")
    async def unban_client(client_id: str) -> Dict[str, Any]:
        result = await repository.unban(client_id)
        return {"message": result.message, "isBanned": result.is_banned}

    @app.get("/admin/reset")
    async def reset_state() -> Dict[str, Any]:
        payload = orchestrator.state.to_dict()
        payload["loading"] = orchestrator.loading
        return payload

    @app.post("/admin/reset")
    async def run_reset(payload: AdminResetRequest) -> Dict[str, Any]:
        if orchestrator.loading:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An admin reset is already in progress")

        form = ProvisioningForm(
            email=payload.email,
            name=payload.name,
            password=payload.password,
            phone=payload.phone,
        )
        try:
            state = await orchestrator.execute(StaticConfirmation(payload.confirm), form=form)
        except ResetInProgressError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        finally:
            form.password = ""

        if state.failure is not None:
            logger.warning("Admin reset request ended in stage %s", state.failed_stage)
        return state.to_dict()

    return app


__all__ = ["create_app"]
