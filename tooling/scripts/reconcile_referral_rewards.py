"""Print referral reconciliation alerts for operator review.

Example:
    python tooling/scripts/reconcile_referral_rewards.py --kind pending_reward --fail-on-alerts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from loguru import logger

ALERT_KINDS = (
    "signup_bonus_without_referral_code",
    "referrer_without_personal_code",
    "pending_reward",
    "referred_payment_without_rewards",
)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List referral program inconsistencies")
    parser.add_argument(
        "--kind",
        choices=ALERT_KINDS,
        action="append",
        default=None,
        help="Only report the given alert kind. Repeat to select several.",
    )
    parser.add_argument(
        "--fail-on-alerts",
        action="store_true",
        help="Exit with status 2 when any alert is reported (for cron monitoring).",
    )
    return parser.parse_args()


async def _run(kinds: list[str] | None) -> list[dict[str, Any]]:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from salonref_api.db.session import async_session  # type: ignore import-position
    from salonref_api.services.analytics import ReferralAnalyticsService  # type: ignore import-position

    async with async_session() as session:
        alerts = await ReferralAnalyticsService(session).reconciliation_alerts()
    return [alert.as_dict() for alert in alerts if not kinds or alert.kind in kinds]


def main() -> int:
    args = parse_args()
    alerts = asyncio.run(_run(args.kind))
    for alert in alerts:
        print(json.dumps(alert, sort_keys=True))

    if alerts:
        logger.warning("Referral reconciliation found alerts", total=len(alerts))
        return 2 if args.fail_on_alerts else 0
    logger.success("Referral reconciliation clean")
    return 0


if __name__ == "__main__":
    sys.exit(main())
