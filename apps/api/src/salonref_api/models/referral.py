"""Referral click tracking and gift card reward ledger."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from salonref_api.db.base import Base


class RewardType(str, Enum):
    """Kinds of gift card rewards minted by the referral program."""

    FRIEND_SIGNUP_BONUS = "FRIEND_SIGNUP_BONUS"
    REFERRER_REWARD = "REFERRER_REWARD"


class RewardStatus(str, Enum):
    """Issuance state; ``pending`` rows are claims awaiting Square confirmation."""

    PENDING = "pending"
    ISSUED = "issued"


class ReferralClick(Base):
    """Insert-only record of a referral link visit."""

    __tablename__ = "referral_clicks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    ref_code = Column(String(32), nullable=False, index=True)
    ref_sid = Column(String(128), nullable=True)
    ip_hash = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    landing_url = Column(Text, nullable=True)
    utm_source = Column(String(128), nullable=True)
    utm_medium = Column(String(128), nullable=True)
    utm_campaign = Column(String(128), nullable=True)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class GiftCardReward(Base):
    """One row per reward issuance, unique per ``dedupe_key``."""

    __tablename__ = "gift_card_rewards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    referred_customer_id = Column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )
    reward_type = Column(
        SqlEnum(RewardType, name="reward_type_enum", values_callable=lambda enum: [member.value for member in enum]),
        nullable=False,
    )
    status = Column(
        SqlEnum(
            RewardStatus,
            name="reward_status_enum",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=RewardStatus.PENDING,
    )
    dedupe_key = Column(String(160), nullable=False, unique=True)
    idempotency_key = Column(String(45), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    square_gift_card_id = Column(String(64), nullable=True)
    gift_card_gan = Column(String(32), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=True)
