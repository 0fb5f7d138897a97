"""Square webhook receiver."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.api.dependencies.services import get_clients
from salonref_api.db.session import get_session
from salonref_api.schemas.square_events import decode_event
from salonref_api.services.clients import ServiceClients
from salonref_api.services.webhooks import WebhookDispatcher, extract_signature, verify_square_signature

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/square", status_code=status.HTTP_200_OK)
async def square_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
    clients: ServiceClients = Depends(get_clients),
) -> dict[str, object]:
    """Verify, decode and dispatch one Square notification.

    Every verified delivery is acknowledged with 200, including ones whose
    handler failed; those are visible in the process run ledger instead.
    """

    settings = clients.settings
    raw_body = await request.body()
    signature = extract_signature(request.headers)
    if not verify_square_signature(
        raw_body,
        signature,
        signature_key=settings.square_webhook_signature_key,
        notification_url=settings.square_webhook_notification_url,
    ):
        clients.webhook_store.record_rejected_signature()
        logger.warning("Rejected Square webhook signature", has_signature=bool(signature))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Square webhook body is not JSON", size=len(raw_body))
        clients.webhook_store.record("invalid", "ignored", None, error="invalid JSON")
        return {"received": True, "status": "ignored"}

    event = decode_event(payload)
    outcome = await WebhookDispatcher(db, clients).dispatch(event, raw_body=raw_body)
    return {"received": True, "status": outcome.status, "eventType": outcome.event_type}
