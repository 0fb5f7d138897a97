"""Public referral endpoints used by the booking landing page."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.api.dependencies.services import get_clients
from salonref_api.db.session import get_session
from salonref_api.services.clients import ServiceClients
from salonref_api.services.referrals import (
    ReferralClickPayload,
    find_referrer_by_code,
    normalize_referral_code,
    record_click,
)

router = APIRouter(prefix="/referrals", tags=["referrals"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else None


def _missing_code() -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing referral code"})


def _invalid_payload(exc: ValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid referral click", "details": details},
    )


@router.post("/clicks")
async def track_click(
    request: Request,
    db: AsyncSession = Depends(get_session),
    clients: ServiceClients = Depends(get_clients),
):
    try:
        body = json.loads(await request.body() or b"{}")
    except (UnicodeDecodeError, json.JSONDecodeError):
        return _missing_code()

    ref_code = body.get("refCode") if isinstance(body, dict) else None
    if not isinstance(ref_code, str) or normalize_referral_code(ref_code) is None:
        return _missing_code()

    try:
        payload = ReferralClickPayload.model_validate(body)
    except ValidationError as exc:
        return _invalid_payload(exc)

    click = await record_click(
        db,
        payload,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        ip_salt=clients.settings.click_ip_hash_salt,
    )
    logger.info("Recorded referral click", ref_code=click.ref_code, click_id=str(click.id))
    return {"success": True, "clickId": str(click.id), "refCode": click.ref_code}


@router.get("/codes/{code}")
async def resolve_code(code: str, db: AsyncSession = Depends(get_session)) -> dict[str, str | None]:
    referrer = await find_referrer_by_code(db, code)
    if referrer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Referral code not found")
    return {"code": referrer.personal_code, "referrerFirstName": referrer.given_name}
