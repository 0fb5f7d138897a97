from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.api.dependencies.services import get_clients
from salonref_api.db.session import get_session
from salonref_api.services.clients import ServiceClients


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "disabled", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    session: AsyncSession = Depends(get_session),
    clients: ServiceClients = Depends(get_clients),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except SQLAlchemyError as exc:
        logger.warning("Database readiness check failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")
        status = "error"

    settings = clients.settings
    if settings.square_access_token and settings.square_webhook_signature_key:
        components["square"] = ComponentStatus(status="ready")
    else:
        components["square"] = ComponentStatus(
            status="error",
            detail="Square access token or webhook signature key missing",
        )
        status = "error"

    if clients.pass_builder.is_configured:
        components["wallet"] = ComponentStatus(status="ready")
    else:
        components["wallet"] = ComponentStatus(status="disabled", detail="Wallet pass signing not configured")
        status = "degraded" if status == "ready" else status

    return ReadinessPayload(status=status, components=components)
