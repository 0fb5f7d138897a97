"""Routes decoded Square events to handlers and records the outcome."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.models.process_run import (
    ProcessRun,
    ProcessStatus,
    ProcessType,
    record_process_run,
    update_process_run,
)
from salonref_api.schemas.square_events import (
    BookingEvent,
    CustomerEvent,
    GiftCardEvent,
    OrderEvent,
    PaymentEvent,
    SquareEvent,
    UnrecognizedEvent,
)
from salonref_api.services.clients import ServiceClients
from salonref_api.services.referrals import ReferralAttributionService
from salonref_api.services.square import SquareAPIError
from salonref_api.services.square.mirrors import upsert_order
from salonref_api.services.wallet import WalletPushService


@dataclass(slots=True)
class DispatchOutcome:
    """``status`` is one of processed, ignored, duplicate or failed."""

    event_type: str
    event_id: str | None
    status: str
    detail: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


def correlation_id_for(event: SquareEvent, raw_body: bytes) -> str:
    if event.event_id:
        return event.event_id
    return f"sha256:{hashlib.sha256(raw_body).hexdigest()}"


class WebhookDispatcher:
    """Always returns an outcome; handler errors never escape ``dispatch``."""

    def __init__(self, session: AsyncSession, clients: ServiceClients) -> None:
        self._session = session
        self._clients = clients
        self._store = clients.webhook_store
        self._attribution = ReferralAttributionService(session, clients)

    async def dispatch(self, event: SquareEvent, *, raw_body: bytes) -> DispatchOutcome:
        if isinstance(event, UnrecognizedEvent):
            logger.info("Ignoring Square webhook", event_type=event.type, event_id=event.event_id, reason=event.reason)
            self._store.record(event.type, "ignored", event.event_id)
            return DispatchOutcome(event_type=event.type, event_id=event.event_id, status="ignored")

        run: ProcessRun | None = None
        try:
            recorded = await record_process_run(
                self._session,
                process_type=ProcessType.WEBHOOK,
                correlation_id=correlation_id_for(event, raw_body),
                event_type=event.type,
                resource_id=event.data.id,
                payload=event.model_dump(mode="json"),
            )
            run = recorded.run
            if not recorded.created and run.is_final:
                logger.info("Duplicate Square webhook acknowledged", event_type=event.type, event_id=event.event_id)
                self._store.record(event.type, "duplicate", event.event_id)
                return DispatchOutcome(event_type=event.type, event_id=event.event_id, status="duplicate")

            await update_process_run(self._session, run, status=ProcessStatus.PROCESSING, stage=event.type)
            detail = await self._route(event)
            await update_process_run(self._session, run, status=ProcessStatus.COMPLETED, stage="done", context=detail)
        # Acknowledge regardless; failures surface through the run ledger and the webhook store.
        except Exception as exc:
            logger.exception("Square webhook handler failed", event_type=event.type, event_id=event.event_id)
            await self._mark_failed(run, exc)
            self._store.record(event.type, "failed", event.event_id, error=str(exc))
            return DispatchOutcome(event_type=event.type, event_id=event.event_id, status="failed", error=str(exc))

        logger.info("Processed Square webhook", event_type=event.type, event_id=event.event_id, **detail)
        self._store.record(event.type, "processed", event.event_id)
        return DispatchOutcome(event_type=event.type, event_id=event.event_id, status="processed", detail=detail)

    async def _mark_failed(self, run: ProcessRun | None, exc: Exception) -> None:
        try:
            await self._session.rollback()
            if run is not None:
                await update_process_run(
                    self._session,
                    run,
                    status=ProcessStatus.FAILED,
                    error=f"{type(exc).__name__}: {exc}",
                )
        except SQLAlchemyError:
            logger.exception("Could not record webhook failure")

    async def _route(self, event: SquareEvent) -> dict[str, Any]:
        if isinstance(event, CustomerEvent):
            customer = await self._attribution.handle_customer(event.customer)
            return {
                "square_customer_id": customer.square_customer_id,
                "used_referral_code": customer.used_referral_code,
            }
        if isinstance(event, PaymentEvent):
            result = await self._attribution.handle_payment(event.payment)
            return {
                "attribution": result.status,
                "square_customer_id": result.square_customer_id,
                "referrer_customer_id": result.referrer_customer_id,
                "rewards": [reward.reward_type.value for reward in result.rewards],
            }
        if isinstance(event, BookingEvent):
            await self._attribution.handle_booking(event.booking)
            return {"square_booking_id": event.booking.id}
        if isinstance(event, OrderEvent):
            return await self._handle_order(event)
        if isinstance(event, GiftCardEvent):
            return await self._handle_gift_card(event)
        raise TypeError(f"no handler for {type(event).__name__}")

    async def _handle_order(self, event: OrderEvent) -> dict[str, Any]:
        summary = event.order
        if summary is None:
            return {"order": None}
        order: dict[str, Any] | None = None
        try:
            order = await self._clients.square.retrieve_order(summary.order_id)
        except SquareAPIError as exc:
            logger.warning("Could not fetch Square order", order_id=summary.order_id, error=str(exc))
        await upsert_order(
            self._session,
            summary,
            organization_id=self._clients.settings.square_organization_id,
            order=order,
        )
        return {"square_order_id": summary.order_id}

    async def _handle_gift_card(self, event: GiftCardEvent) -> dict[str, Any]:
        gan = event.gan
        if not gan:
            return {"gift_card_gan": None, "devices_notified": 0}
        push = WalletPushService(
            self._session,
            self._clients.push_backend,
            pass_type_identifier=self._clients.settings.apple_pass_type_id,
        )
        notified = await push.push_balance_update(gan, event.balance_cents)
        return {"gift_card_gan": gan, "devices_notified": notified}
