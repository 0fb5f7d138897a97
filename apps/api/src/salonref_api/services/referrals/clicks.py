"""Referral link click capture."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.models.referral import ReferralClick

from .codes import normalize_referral_code


class ReferralClickPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ref_code: str | None = Field(default=None, alias="refCode")
    ref_sid: str | None = Field(default=None, alias="refSid", max_length=128)
    user_agent: str | None = Field(default=None, alias="userAgent")
    landing_url: str | None = Field(default=None, alias="landingUrl")
    utm_source: str | None = Field(default=None, alias="utmSource", max_length=128)
    utm_medium: str | None = Field(default=None, alias="utmMedium", max_length=128)
    utm_campaign: str | None = Field(default=None, alias="utmCampaign", max_length=128)
    first_seen_at: datetime | None = Field(default=None, alias="firstSeenAt")


def hash_ip(ip_address: str | None, salt: str) -> str | None:
    if not ip_address:
        return None
    return hashlib.sha256(f"{salt}:{ip_address}".encode("utf-8")).hexdigest()


async def record_click(
    session: AsyncSession,
    payload: ReferralClickPayload,
    *,
    ip_address: str | None,
    user_agent: str | None,
    ip_salt: str,
) -> ReferralClick:
    """Insert one click row; the caller has already checked ``ref_code``."""

    code = normalize_referral_code(payload.ref_code)
    if code is None:
        raise ValueError("ref_code is required")

    click = ReferralClick(
        ref_code=code,
        ref_sid=payload.ref_sid,
        ip_hash=hash_ip(ip_address, ip_salt),
        user_agent=payload.user_agent or user_agent,
        landing_url=payload.landing_url,
        utm_source=payload.utm_source,
        utm_medium=payload.utm_medium,
        utm_campaign=payload.utm_campaign,
        first_seen_at=payload.first_seen_at or datetime.now(timezone.utc),
    )
    session.add(click)
    await session.commit()
    return click
