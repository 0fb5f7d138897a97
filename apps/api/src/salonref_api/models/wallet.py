"""Apple Wallet device registrations."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from salonref_api.db.base import Base


class DevicePassRegistration(Base):
    """A device's subscription to updates for one pass serial (gift card GAN)."""

    __tablename__ = "device_pass_registrations"
    __table_args__ = (
        UniqueConstraint(
            "device_library_identifier",
            "pass_type_identifier",
            "serial_number",
            name="uq_device_pass_registration",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    device_library_identifier = Column(String(128), nullable=False, index=True)
    pass_type_identifier = Column(String(128), nullable=False)
    serial_number = Column(String(64), nullable=False, index=True)
    push_token = Column(String(255), nullable=False)
    balance_cents = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
