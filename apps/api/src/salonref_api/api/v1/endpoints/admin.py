"""Admin analytics API for the referral program."""

from __future__ import annotations

import traceback
from typing import Any, Callable, Coroutine, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.api.dependencies.security import require_admin_key
from salonref_api.api.dependencies.services import get_clients
from salonref_api.db.session import get_session
from salonref_api.models.process_run import ProcessStatus, ProcessType
from salonref_api.models.referral import RewardStatus, RewardType
from salonref_api.services.analytics import ReferralAnalyticsService
from salonref_api.services.clients import ServiceClients


class AdminRoute(APIRoute):
    """Turns unexpected handler errors into a JSON 500 body."""

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()

        async def guarded(request: Request) -> Response:
            try:
                return await handler(request)
            except (HTTPException, RequestValidationError):
                raise
            except Exception as exc:
                logger.exception("Admin request failed", path=request.url.path)
                body: dict[str, Any] = {"error": "Internal server error"}
                if get_clients(request).settings.environment != "production":
                    body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
                return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)

        return guarded


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_key)],
    route_class=AdminRoute,
)

SortParam = Literal["newest", "oldest"]


@router.get("/registrations")
async def list_registrations(
    page: int = Query(1),
    limit: int = Query(25),
    status_filter: Literal["all", "referred", "referrers", "pending_payment"] = Query("all", alias="status"),
    sort: SortParam = Query("newest"),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    result = await ReferralAnalyticsService(db).list_registrations(page=page, limit=limit, status=status_filter, sort=sort)
    return result.as_dict()


@router.get("/registrations/{square_customer_id}")
async def get_registration(square_customer_id: str, db: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    detail = await ReferralAnalyticsService(db).get_registration(square_customer_id)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
    return {"data": detail}


@router.get("/process-runs")
async def list_process_runs(
    page: int = Query(1),
    limit: int = Query(25),
    status_filter: ProcessStatus | None = Query(None, alias="status"),
    process_type: ProcessType | None = Query(None, alias="processType"),
    sort: SortParam = Query("newest"),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    result = await ReferralAnalyticsService(db).list_process_runs(
        page=page,
        limit=limit,
        status=status_filter,
        process_type=process_type,
        sort=sort,
    )
    return result.as_dict()


@router.get("/clicks")
async def list_clicks(
    page: int = Query(1),
    limit: int = Query(25),
    ref_code: str | None = Query(None, alias="refCode"),
    sort: SortParam = Query("newest"),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    result = await ReferralAnalyticsService(db).list_clicks(page=page, limit=limit, ref_code=ref_code, sort=sort)
    return result.as_dict()


@router.get("/rewards")
async def list_rewards(
    page: int = Query(1),
    limit: int = Query(25),
    reward_type: RewardType | None = Query(None, alias="rewardType"),
    status_filter: RewardStatus | None = Query(None, alias="status"),
    sort: SortParam = Query("newest"),
    db: AsyncSession = Depends(get_session),
) -> dict[str, Any]:
    result = await ReferralAnalyticsService(db).list_rewards(
        page=page,
        limit=limit,
        reward_type=reward_type,
        status=status_filter,
        sort=sort,
    )
    return result.as_dict()


@router.get("/summary")
async def summary(db: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    return {"data": await ReferralAnalyticsService(db).summary()}


@router.get("/reconciliation")
async def reconciliation(db: AsyncSession = Depends(get_session)) -> dict[str, Any]:
    alerts = await ReferralAnalyticsService(db).reconciliation_alerts()
    return {"total": len(alerts), "data": [alert.as_dict() for alert in alerts]}


@router.get("/webhooks/status")
async def webhook_status(clients: ServiceClients = Depends(get_clients)) -> dict[str, Any]:
    return clients.webhook_store.snapshot().as_dict()
