"""Apple Wallet pass web service, mounted at the pass ``webServiceURL``."""

from __future__ import annotations

import hmac
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.api.dependencies.services import get_clients
from salonref_api.db.session import get_session
from salonref_api.models.customer import Customer
from salonref_api.models.referral import GiftCardReward
from salonref_api.services.clients import ServiceClients
from salonref_api.services.square import SquareAPIError, gift_card_balance_cents
from salonref_api.services.wallet import (
    PKPASS_CONTENT_TYPE,
    GiftCardPassFields,
    WalletRegistrationService,
    format_update_tag,
    parse_update_tag,
    verify_pass_authorization,
)

router = APIRouter(prefix="/api/wallet", tags=["wallet"])

_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


def _require_pass_auth(clients: ServiceClients, pass_type_id: str, serial_number: str, authorization: str | None) -> None:
    settings = clients.settings
    expected_type = settings.apple_pass_type_id
    type_matches = bool(expected_type) and hmac.compare_digest(pass_type_id.encode("utf-8"), expected_type.encode("utf-8"))
    if not type_matches or not verify_pass_authorization(
        authorization,
        secret=settings.apple_pass_auth_secret,
        serial_number=serial_number,
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def _find_pass_holder(db: AsyncSession, gan: str) -> Customer | None:
    stmt = select(Customer).where(Customer.gift_card_gan == gan).limit(1)
    customer = (await db.execute(stmt)).scalar_one_or_none()
    if customer is not None:
        return customer
    stmt = (
        select(Customer)
        .join(GiftCardReward, GiftCardReward.customer_id == Customer.id)
        .where(GiftCardReward.gift_card_gan == gan)
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _current_balance(
    db: AsyncSession,
    clients: ServiceClients,
    gan: str,
) -> tuple[int, datetime]:
    cached_balance, cached_at = await WalletRegistrationService(db).cached_balance(clients.settings.apple_pass_type_id, gan)
    try:
        gift_card = await clients.square.retrieve_gift_card_from_gan(gan)
    except SquareAPIError as exc:
        logger.warning("Falling back to cached gift card balance", gan_suffix=gan[-4:], error=str(exc))
        gift_card = None
    balance = gift_card_balance_cents(gift_card)
    if balance is not None:
        return balance, datetime.now(timezone.utc)
    return cached_balance or 0, cached_at or datetime.now(timezone.utc)


async def _render_pass(db: AsyncSession, clients: ServiceClients, gan: str) -> Response:
    customer = await _find_pass_holder(db, gan)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pass not found")
    if not clients.pass_builder.is_configured:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Wallet passes are not configured")

    balance, modified_at = await _current_balance(db, clients, gan)
    archive = clients.pass_builder.build(
        GiftCardPassFields(
            serial_number=gan,
            balance_cents=balance,
            currency=clients.settings.reward_currency,
            customer_name=customer.display_name,
            valid_at=clients.settings.apple_pass_organization_name,
        )
    )
    headers = {
        **_NO_CACHE_HEADERS,
        "Last-Modified": format_datetime(modified_at, usegmt=True),
        "Content-Disposition": f'attachment; filename="gift-card-{gan[-4:]}.pkpass"',
    }
    return Response(content=archive, media_type=PKPASS_CONTENT_TYPE, headers=headers)


@router.post("/v1/devices/{device_id}/registrations/{pass_type_id}/{serial_number}")
async def register_device(
    device_id: str,
    pass_type_id: str,
    serial_number: str,
    request: Request,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_session),
    clients: ServiceClients = Depends(get_clients),
) -> Response:
    _require_pass_auth(clients, pass_type_id, serial_number, authorization)
    try:
        body: Any = await request.json()
    except ValueError:
        body = None
    push_token = body.get("pushToken") if isinstance(body, dict) else None
    if not isinstance(push_token, str) or not push_token.strip():
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Missing pushToken"})

    cached_balance, _ = await WalletRegistrationService(db).cached_balance(pass_type_id, serial_number)
    created = await WalletRegistrationService(db).register(
        device_id,
        pass_type_id,
        serial_number,
        push_token.strip(),
        balance_cents=cached_balance,
    )
    logger.info("Wallet device registered", serial_suffix=serial_number[-4:], created=created)
    return Response(status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


@router.get("/v1/devices/{device_id}/registrations/{pass_type_id}")
async def list_updated_passes(
    device_id: str,
    pass_type_id: str,
    passesUpdatedSince: str | None = None,
    db: AsyncSession = Depends(get_session),
) -> Response:
    updated = await WalletRegistrationService(db).updated_serials(
        device_id,
        pass_type_id,
        parse_update_tag(passesUpdatedSince),
    )
    if not updated.serial_numbers or updated.last_updated is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return JSONResponse(
        content={
            "serialNumbers": updated.serial_numbers,
            "lastUpdated": format_update_tag(updated.last_updated),
        }
    )


@router.delete("/v1/devices/{device_id}/registrations/{pass_type_id}/{serial_number}")
async def unregister_device(
    device_id: str,
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_session),
    clients: ServiceClients = Depends(get_clients),
) -> Response:
    _require_pass_auth(clients, pass_type_id, serial_number, authorization)
    removed = await WalletRegistrationService(db).unregister(device_id, pass_type_id, serial_number)
    logger.info("Wallet device unregistered", serial_suffix=serial_number[-4:], removed=removed)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/v1/passes/{pass_type_id}/{serial_number}")
async def latest_pass(
    pass_type_id: str,
    serial_number: str,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_session),
    clients: ServiceClients = Depends(get_clients),
) -> Response:
    _require_pass_auth(clients, pass_type_id, serial_number, authorization)
    return await _render_pass(db, clients, serial_number)


@router.post("/v1/log")
async def device_log(request: Request) -> Response:
    try:
        body: Any = await request.json()
    except ValueError:
        body = None
    logs = body.get("logs") if isinstance(body, dict) else None
    for message in logs if isinstance(logs, list) else []:
        logger.info("Wallet device log", message=str(message))
    return Response(status_code=status.HTTP_200_OK)


@router.get("/pass/{gan}")
async def download_pass(
    gan: str,
    db: AsyncSession = Depends(get_session),
    clients: ServiceClients = Depends(get_clients),
) -> Response:
    """First download of a pass from the link in the reward email."""

    return await _render_pass(db, clients, gan)
