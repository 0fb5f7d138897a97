"""Square customer mirror carrying referral state."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, false, func
from sqlalchemy.dialects.postgresql import UUID

from salonref_api.db.base import Base


class Customer(Base):
    """Customer record keyed by the Square customer id.

    ``personal_code`` is the customer's own referral code and stays null
    until their first completed payment. ``used_referral_code`` is the code
    this customer entered when they were referred.
    """

    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    square_customer_id = Column(String(64), nullable=False, unique=True, index=True)
    given_name = Column(String(128), nullable=True)
    family_name = Column(String(128), nullable=True)
    email_address = Column(String(255), nullable=True, index=True)
    phone_number = Column(String(32), nullable=True)

    personal_code = Column(String(32), nullable=True, unique=True, index=True)
    referral_url = Column(String(512), nullable=True)
    used_referral_code = Column(String(32), nullable=True, index=True)
    referral_code_source = Column(String(64), nullable=True)

    got_signup_bonus = Column(Boolean, nullable=False, default=False, server_default=false())
    activated_as_referrer = Column(Boolean, nullable=False, default=False, server_default=false())
    first_payment_completed = Column(Boolean, nullable=False, default=False, server_default=false())
    referral_email_sent = Column(Boolean, nullable=False, default=False, server_default=false())

    gift_card_id = Column(String(64), nullable=True)
    gift_card_gan = Column(String(32), nullable=True, index=True)

    first_payment_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def display_name(self) -> str:
        parts = [part for part in (self.given_name, self.family_name) if part]
        return " ".join(parts) if parts else "Valued customer"
