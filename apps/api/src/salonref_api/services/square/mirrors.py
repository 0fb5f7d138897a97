"""Upserts of Square entities into local mirror tables."""

from __future__ import annotations

from typing import Any, Type, TypeVar

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.db.base import Base
from salonref_api.models.customer import Customer
from salonref_api.models.mirrors import SquareBooking, SquareOrder, SquarePayment
from salonref_api.schemas.square_events import BookingObject, CustomerObject, OrderSummary, PaymentObject

ModelT = TypeVar("ModelT", bound=Base)


def _money(value: Any) -> tuple[int | None, str | None]:
    if value is None:
        return None, None
    if isinstance(value, dict):
        return value.get("amount"), value.get("currency")
    return getattr(value, "amount", None), getattr(value, "currency", None)


async def _upsert(
    session: AsyncSession,
    model: Type[ModelT],
    keys: dict[str, Any],
    values: dict[str, Any],
    *,
    _retry: bool = True,
) -> ModelT:
    """Insert or update one row; ``None`` values never overwrite stored data."""

    stmt = select(model).filter_by(**keys)
    row = (await session.execute(stmt)).scalar_one_or_none()
    if row is None:
        row = model(**keys, **{name: value for name, value in values.items() if value is not None})
        session.add(row)
    else:
        for name, value in values.items():
            if value is not None:
                setattr(row, name, value)

    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        if not _retry:
            raise
        logger.warning("Detected race while upserting mirror row", table=model.__tablename__, keys=keys)
        return await _upsert(session, model, keys, values, _retry=False)
    return row


async def upsert_customer(session: AsyncSession, customer: CustomerObject) -> Customer:
    return await _upsert(
        session,
        Customer,
        {"square_customer_id": customer.id},
        {
            "given_name": customer.given_name,
            "family_name": customer.family_name,
            "email_address": customer.email_address,
            "phone_number": customer.phone_number,
        },
    )


async def upsert_payment(session: AsyncSession, payment: PaymentObject, *, organization_id: str) -> SquarePayment:
    amount, currency = _money(payment.total_money or payment.amount_money)
    return await _upsert(
        session,
        SquarePayment,
        {"organization_id": organization_id, "square_payment_id": payment.id},
        {
            "customer_id": payment.customer_id,
            "location_id": payment.location_id,
            "order_id": payment.order_id,
            "status": payment.status,
            "amount_cents": amount,
            "currency": currency,
            "raw_json": payment.model_dump(mode="json"),
        },
    )


async def upsert_booking(session: AsyncSession, booking: BookingObject, *, organization_id: str) -> SquareBooking:
    return await _upsert(
        session,
        SquareBooking,
        {"organization_id": organization_id, "square_booking_id": booking.id},
        {
            "customer_id": booking.customer_id,
            "location_id": booking.location_id,
            "status": booking.status,
            "start_at": booking.start_at,
            "version": booking.version,
            "raw_json": booking.model_dump(mode="json"),
        },
    )


async def upsert_order(
    session: AsyncSession,
    summary: OrderSummary,
    *,
    organization_id: str,
    order: dict[str, Any] | None = None,
) -> SquareOrder:
    """Mirror an order from the webhook summary, enriched with the full order when fetched."""

    amount, currency = _money((order or {}).get("total_money"))
    return await _upsert(
        session,
        SquareOrder,
        {"organization_id": organization_id, "square_order_id": summary.order_id},
        {
            "customer_id": (order or {}).get("customer_id"),
            "location_id": summary.location_id or (order or {}).get("location_id"),
            "state": summary.state or (order or {}).get("state"),
            "total_money_cents": amount,
            "currency": currency,
            "raw_json": order or summary.model_dump(mode="json"),
        },
    )
