"""Read models behind the admin referral dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Sequence

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from salonref_api.models.customer import Customer
from salonref_api.models.process_run import ProcessRun, ProcessStatus, ProcessType
from salonref_api.models.referral import GiftCardReward, ReferralClick, RewardStatus, RewardType

RegistrationFilter = Literal["all", "referred", "referrers", "pending_payment"]
SortOrder = Literal["newest", "oldest"]

MAX_PAGE_SIZE = 100


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(slots=True)
class Page:
    page: int
    limit: int
    total: int
    data: list[dict[str, Any]]

    def as_dict(self) -> dict[str, Any]:
        return {"pagination": {"page": self.page, "limit": self.limit, "total": self.total}, "data": self.data}


@dataclass(slots=True)
class ReconciliationAlert:
    kind: str
    square_customer_id: str | None
    message: str
    detail: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "square_customer_id": self.square_customer_id,
            "message": self.message,
            "detail": self.detail,
        }


def clamp_pagination(page: int, limit: int) -> tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def serialize_customer(customer: Customer) -> dict[str, Any]:
    return {
        "square_customer_id": customer.square_customer_id,
        "given_name": customer.given_name,
        "family_name": customer.family_name,
        "email_address": customer.email_address,
        "phone_number": customer.phone_number,
        "personal_code": customer.personal_code,
        "referral_url": customer.referral_url,
        "used_referral_code": customer.used_referral_code,
        "referral_code_source": customer.referral_code_source,
        "got_signup_bonus": customer.got_signup_bonus,
        "activated_as_referrer": customer.activated_as_referrer,
        "first_payment_completed": customer.first_payment_completed,
        "referral_email_sent": customer.referral_email_sent,
        "gift_card_id": customer.gift_card_id,
        "gift_card_gan": customer.gift_card_gan,
        "first_payment_at": _iso(customer.first_payment_at),
        "created_at": _iso(customer.created_at),
    }


def serialize_reward(reward: GiftCardReward) -> dict[str, Any]:
    return {
        "id": str(reward.id),
        "customer_id": str(reward.customer_id),
        "referred_customer_id": str(reward.referred_customer_id) if reward.referred_customer_id else None,
        "reward_type": reward.reward_type.value,
        "status": reward.status.value,
        "amount_cents": reward.amount_cents,
        "currency": reward.currency,
        "square_gift_card_id": reward.square_gift_card_id,
        "gift_card_gan": reward.gift_card_gan,
        "metadata": reward.metadata_json or {},
        "created_at": _iso(reward.created_at),
        "issued_at": _iso(reward.issued_at),
    }


def serialize_click(click: ReferralClick) -> dict[str, Any]:
    return {
        "id": str(click.id),
        "ref_code": click.ref_code,
        "ref_sid": click.ref_sid,
        "user_agent": click.user_agent,
        "landing_url": click.landing_url,
        "utm_source": click.utm_source,
        "utm_medium": click.utm_medium,
        "utm_campaign": click.utm_campaign,
        "first_seen_at": _iso(click.first_seen_at),
    }


def serialize_process_run(run: ProcessRun) -> dict[str, Any]:
    return {
        "id": str(run.id),
        "process_type": run.process_type.value,
        "correlation_id": run.correlation_id,
        "event_type": run.event_type,
        "resource_id": run.resource_id,
        "status": run.status.value,
        "stage": run.stage,
        "attempts": run.attempts,
        "last_error": run.last_error,
        "context": run.context or {},
        "created_at": _iso(run.created_at),
        "updated_at": _iso(run.updated_at),
    }


class ReferralAnalyticsService:
    """Paginated queries over customers, rewards, clicks and process runs."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _paginate(self, stmt: Select, *, order_column: Any, sort: SortOrder, page: int, limit: int) -> tuple[int, Sequence[Any]]:
        page, limit = clamp_pagination(page, limit)
        total = (await self._db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
        ordering = order_column.asc() if sort == "oldest" else order_column.desc()
        rows = (await self._db.execute(stmt.order_by(ordering).offset((page - 1) * limit).limit(limit))).scalars().all()
        return total, rows

    async def list_registrations(
        self,
        *,
        page: int = 1,
        limit: int = 25,
        status: RegistrationFilter = "all",
        sort: SortOrder = "newest",
    ) -> Page:
        stmt = select(Customer)
        if status == "referred":
            stmt = stmt.where(Customer.used_referral_code.is_not(None))
        elif status == "referrers":
            stmt = stmt.where(Customer.activated_as_referrer.is_(True))
        elif status == "pending_payment":
            stmt = stmt.where(Customer.first_payment_completed.is_(False))
        total, rows = await self._paginate(stmt, order_column=Customer.created_at, sort=sort, page=page, limit=limit)
        page, limit = clamp_pagination(page, limit)
        return Page(page=page, limit=limit, total=total, data=[serialize_customer(row) for row in rows])

    async def get_registration(self, square_customer_id: str) -> dict[str, Any] | None:
        stmt = select(Customer).where(Customer.square_customer_id == square_customer_id)
        customer = (await self._db.execute(stmt)).scalar_one_or_none()
        if customer is None:
            return None

        rewards = (
            await self._db.execute(
                select(GiftCardReward)
                .where(or_(GiftCardReward.customer_id == customer.id, GiftCardReward.referred_customer_id == customer.id))
                .order_by(GiftCardReward.created_at.desc())
            )
        ).scalars().all()
        clicks: Sequence[ReferralClick] = []
        if customer.personal_code:
            clicks = (
                await self._db.execute(
                    select(ReferralClick)
                    .where(ReferralClick.ref_code == customer.personal_code)
                    .order_by(ReferralClick.first_seen_at.desc())
                    .limit(MAX_PAGE_SIZE)
                )
            ).scalars().all()
        referred_count = (
            await self._db.execute(
                select(func.count(Customer.id)).where(
                    Customer.used_referral_code.is_not(None),
                    Customer.used_referral_code == customer.personal_code,
                )
            )
        ).scalar_one()

        return {
            **serialize_customer(customer),
            "referred_customers": referred_count,
            "rewards": [serialize_reward(reward) for reward in rewards],
            "clicks": [serialize_click(click) for click in clicks],
        }

    async def list_process_runs(
        self,
        *,
        page: int = 1,
        limit: int = 25,
        status: ProcessStatus | None = None,
        process_type: ProcessType | None = None,
        sort: SortOrder = "newest",
    ) -> Page:
        stmt = select(ProcessRun)
        if status is not None:
            stmt = stmt.where(ProcessRun.status == status)
        if process_type is not None:
            stmt = stmt.where(ProcessRun.process_type == process_type)
        total, rows = await self._paginate(stmt, order_column=ProcessRun.created_at, sort=sort, page=page, limit=limit)
        page, limit = clamp_pagination(page, limit)
        return Page(page=page, limit=limit, total=total, data=[serialize_process_run(row) for row in rows])

    async def list_clicks(
        self,
        *,
        page: int = 1,
        limit: int = 25,
        ref_code: str | None = None,
        sort: SortOrder = "newest",
    ) -> Page:
        stmt = select(ReferralClick)
        if ref_code:
            stmt = stmt.where(ReferralClick.ref_code == ref_code.strip().upper())
        total, rows = await self._paginate(
            stmt, order_column=ReferralClick.first_seen_at, sort=sort, page=page, limit=limit
        )
        page, limit = clamp_pagination(page, limit)
        return Page(page=page, limit=limit, total=total, data=[serialize_click(row) for row in rows])

    async def list_rewards(
        self,
        *,
        page: int = 1,
        limit: int = 25,
        reward_type: RewardType | None = None,
        status: RewardStatus | None = None,
        sort: SortOrder = "newest",
    ) -> Page:
        stmt = select(GiftCardReward)
        if reward_type is not None:
            stmt = stmt.where(GiftCardReward.reward_type == reward_type)
        if status is not None:
            stmt = stmt.where(GiftCardReward.status == status)
        total, rows = await self._paginate(
            stmt, order_column=GiftCardReward.created_at, sort=sort, page=page, limit=limit
        )
        page, limit = clamp_pagination(page, limit)
        return Page(page=page, limit=limit, total=total, data=[serialize_reward(row) for row in rows])

    async def summary(self) -> dict[str, Any]:
        async def count(*criteria: Any) -> int:
            stmt = select(func.count(Customer.id))
            if criteria:
                stmt = stmt.where(*criteria)
            return (await self._db.execute(stmt)).scalar_one()

        reward_rows = (
            await self._db.execute(
                select(GiftCardReward.reward_type, func.count(GiftCardReward.id), func.sum(GiftCardReward.amount_cents))
                .where(GiftCardReward.status == RewardStatus.ISSUED)
                .group_by(GiftCardReward.reward_type)
            )
        ).all()
        rewards_by_type = {reward_type.value: int(total) for reward_type, total, _ in reward_rows}
        issued_amount = sum(int(amount or 0) for _, _, amount in reward_rows)
        clicks = (await self._db.execute(select(func.count(ReferralClick.id)))).scalar_one()

        return {
            "customers": await count(),
            "referrers": await count(Customer.activated_as_referrer.is_(True)),
            "referred_customers": await count(Customer.used_referral_code.is_not(None)),
            "first_payments": await count(Customer.first_payment_completed.is_(True)),
            "signup_bonuses": await count(Customer.got_signup_bonus.is_(True)),
            "rewards_by_type": rewards_by_type,
            "issued_amount_cents": issued_amount,
            "clicks": clicks,
        }

    async def reconciliation_alerts(self) -> list[ReconciliationAlert]:
        """Inconsistencies for an operator to review; nothing here is repaired automatically."""

        alerts: list[ReconciliationAlert] = []

        bonus_without_code = await self._db.execute(
            select(Customer).where(
                Customer.got_signup_bonus.is_(True),
                or_(Customer.used_referral_code.is_(None), func.trim(Customer.used_referral_code) == ""),
            )
        )
        for customer in bonus_without_code.scalars():
            alerts.append(
                ReconciliationAlert(
                    kind="signup_bonus_without_referral_code",
                    square_customer_id=customer.square_customer_id,
                    message="Customer received a signup bonus but has no referral code on record",
                    detail={"gift_card_id": customer.gift_card_id},
                )
            )

        referrers_without_code = await self._db.execute(
            select(Customer).where(Customer.activated_as_referrer.is_(True), Customer.personal_code.is_(None))
        )
        for customer in referrers_without_code.scalars():
            alerts.append(
                ReconciliationAlert(
                    kind="referrer_without_personal_code",
                    square_customer_id=customer.square_customer_id,
                    message="Customer is activated as referrer without a personal code",
                )
            )

        pending = await self._db.execute(
            select(GiftCardReward, Customer.square_customer_id)
            .join(Customer, Customer.id == GiftCardReward.customer_id)
            .where(GiftCardReward.status == RewardStatus.PENDING)
        )
        for reward, square_customer_id in pending.all():
            alerts.append(
                ReconciliationAlert(
                    kind="pending_reward",
                    square_customer_id=square_customer_id,
                    message="Reward claim never confirmed; check Square for an orphaned gift card",
                    detail={
                        "reward_type": reward.reward_type.value,
                        "idempotency_key": reward.idempotency_key,
                        "created_at": _iso(reward.created_at),
                    },
                )
            )

        referrer = aliased(Customer)
        unrewarded = await self._db.execute(
            select(Customer, referrer.square_customer_id)
            .join(
                referrer,
                and_(
                    func.upper(func.trim(referrer.personal_code)) == func.upper(func.trim(Customer.used_referral_code)),
                    referrer.id != Customer.id,
                ),
            )
            .where(Customer.first_payment_completed.is_(True), Customer.got_signup_bonus.is_(False))
        )
        for customer, referrer_id in unrewarded.all():
            alerts.append(
                ReconciliationAlert(
                    kind="referred_payment_without_rewards",
                    square_customer_id=customer.square_customer_id,
                    message="Referred customer paid but the signup bonus was never issued",
                    detail={"referrer_customer_id": referrer_id, "referral_code": customer.used_referral_code},
                )
            )

        return alerts
