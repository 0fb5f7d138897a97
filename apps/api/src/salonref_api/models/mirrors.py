"""Local mirrors of Square orders, payments and bookings."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from salonref_api.db.base import Base


class SquareOrder(Base):
    __tablename__ = "square_orders"
    __table_args__ = (
        UniqueConstraint("organization_id", "square_order_id", name="uq_square_orders_org_order"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(String(64), nullable=False)
    square_order_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=True, index=True)
    location_id = Column(String(64), nullable=True)
    state = Column(String(32), nullable=True)
    total_money_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    raw_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class SquarePayment(Base):
    __tablename__ = "square_payments"
    __table_args__ = (
        UniqueConstraint("organization_id", "square_payment_id", name="uq_square_payments_org_payment"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(String(64), nullable=False)
    square_payment_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=True, index=True)
    location_id = Column(String(64), nullable=True)
    order_id = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)
    amount_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=True)
    raw_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class SquareBooking(Base):
    __tablename__ = "square_bookings"
    __table_args__ = (
        UniqueConstraint("organization_id", "square_booking_id", name="uq_square_bookings_org_booking"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(String(64), nullable=False)
    square_booking_id = Column(String(64), nullable=False, index=True)
    customer_id = Column(String(64), nullable=True, index=True)
    location_id = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)
    start_at = Column(String(64), nullable=True)
    version = Column(Integer, nullable=True)
    raw_json = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
