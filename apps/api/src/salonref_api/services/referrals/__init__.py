"""Referral attribution, reward issuance and click tracking."""

from .attribution import PaymentAttribution, ReferralAttributionError, ReferralAttributionService
from .clicks import ReferralClickPayload, hash_ip, record_click
from .codes import (
    ReferralCodeGenerationError,
    build_referral_url,
    find_referrer_by_code,
    generate_unique_personal_code,
    normalize_referral_code,
)
from .rewards import IssuedReward, RewardIssuanceError, RewardIssuanceService

__all__ = [
    "IssuedReward",
    "PaymentAttribution",
    "ReferralAttributionError",
    "ReferralAttributionService",
    "ReferralClickPayload",
    "ReferralCodeGenerationError",
    "RewardIssuanceError",
    "RewardIssuanceService",
    "build_referral_url",
    "find_referrer_by_code",
    "generate_unique_personal_code",
    "hash_ip",
    "normalize_referral_code",
    "record_click",
]
