"""Referral code normalization, lookup and generation."""

from __future__ import annotations

import secrets
import string
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.models.customer import Customer

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_GENERATION_ATTEMPTS = 10


class ReferralCodeGenerationError(RuntimeError):
    """Raised when no free personal code could be found."""


def normalize_referral_code(code: Any) -> str | None:
    """Trim and uppercase a user-supplied code; empty input yields None."""

    if not isinstance(code, str):
        return None
    normalized = code.strip().upper()
    return normalized or None


def build_referral_url(base_url: str, personal_code: str) -> str:
    return f"{base_url.rstrip('/')}/ref/{personal_code}"


async def find_referrer_by_code(session: AsyncSession, code: Any) -> Customer | None:
    """Resolve a code to the customer owning it, ignoring case and padding."""

    normalized = normalize_referral_code(code)
    if normalized is None:
        return None
    stmt = select(Customer).where(func.upper(func.trim(Customer.personal_code)) == normalized).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def generate_unique_personal_code(session: AsyncSession, *, length: int = 8) -> str:
    for _ in range(MAX_GENERATION_ATTEMPTS):
        candidate = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
        stmt = select(Customer.id).where(Customer.personal_code == candidate)
        if (await session.execute(stmt)).first() is None:
            return candidate
    raise ReferralCodeGenerationError(f"no free personal code after {MAX_GENERATION_ATTEMPTS} attempts")


def _looks_like_referral_key(key: str) -> bool:
    lowered = key.lower()
    return "referral" in lowered or lowered == "ref" or lowered.endswith("_ref") or lowered.endswith("-ref")


def _attribute_value(attribute: dict[str, Any]) -> str | None:
    value = attribute.get("value")
    if isinstance(value, dict):
        value = value.get("value") or value.get("string_value")
    return normalize_referral_code(value)


def code_from_custom_attributes(attributes: Iterable[dict[str, Any]], preferred_key: str) -> str | None:
    """Pick the referral code out of Square customer custom attributes.

    The configured attribute key wins; otherwise the first key that names a
    referral is used.
    """

    fallback: str | None = None
    for attribute in attributes:
        key = str(attribute.get("key") or "")
        value = _attribute_value(attribute)
        if value is None:
            continue
        if key == preferred_key:
            return value
        if fallback is None and _looks_like_referral_key(key):
            fallback = value
    return fallback


def _field_candidates(fields: Iterable[dict[str, Any]]) -> list[str]:
    candidates: list[str] = []
    for field in fields:
        if not isinstance(field, dict):
            continue
        label = " ".join(
            str(field.get(name) or "")
            for name in ("name", "label", "title", "key", "booking_custom_field_id", "custom_field_id")
        )
        raw = field.get("string_value") or field.get("text_value") or field.get("value")
        value = normalize_referral_code(raw)
        if value is None:
            continue
        if "ref" in label.lower():
            candidates.insert(0, value)
        elif len(value) <= 20 and " " not in value:
            candidates.append(value)
    return candidates


def codes_from_booking(booking: Any) -> list[str]:
    """Referral code candidates from booking-level and segment-level custom fields.

    Fields whose name mentions a referral come first; short single-token
    values from other fields follow and must still resolve to a referrer.
    """

    candidates = _field_candidates(getattr(booking, "custom_fields", None) or [])
    for segment in getattr(booking, "appointment_segments", None) or []:
        if isinstance(segment, dict):
            candidates.extend(_field_candidates(segment.get("custom_fields") or []))

    return list(dict.fromkeys(candidates))
