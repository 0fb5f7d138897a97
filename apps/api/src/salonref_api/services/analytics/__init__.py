"""Admin analytics read models."""

from .referrals import Page, ReconciliationAlert, ReferralAnalyticsService, clamp_pagination

__all__ = ["Page", "ReconciliationAlert", "ReferralAnalyticsService", "clamp_pagination"]
