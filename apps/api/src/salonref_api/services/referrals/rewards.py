"""Gift card reward issuance with at-most-once guarantees."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.core.settings import Settings
from salonref_api.models.customer import Customer
from salonref_api.models.process_run import ProcessStatus, ProcessType, record_process_run, update_process_run
from salonref_api.models.referral import GiftCardReward, RewardStatus, RewardType
from salonref_api.services.square import SquareAPIError, SquareClient, gift_card_balance_cents

SQUARE_IDEMPOTENCY_KEY_LIMIT = 45


class RewardIssuanceError(RuntimeError):
    """Raised when Square did not confirm a reward; no issued record exists."""

    def __init__(self, message: str, *, reward_type: RewardType, customer_id: str) -> None:
        super().__init__(message)
        self.reward_type = reward_type
        self.customer_id = customer_id


@dataclass(slots=True)
class IssuedReward:
    """Outcome of an issuance attempt; ``created`` is False for an existing record."""

    reward: GiftCardReward
    created: bool
    balance_cents: int | None = None


def build_dedupe_key(reward_type: RewardType, customer: Customer, referred: Customer | None = None) -> str:
    if reward_type == RewardType.REFERRER_REWARD:
        if referred is None:
            raise ValueError("referrer rewards need the referred customer")
        return f"{reward_type.value}:{customer.square_customer_id}:{referred.square_customer_id}"
    return f"{reward_type.value}:{customer.square_customer_id}"


def build_idempotency_key(prefix: str, seed: str) -> str:
    """Deterministic Square idempotency key that fits Square's 45 character limit."""

    head = prefix[:10]
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
    return f"{head}:{digest}"[:SQUARE_IDEMPOTENCY_KEY_LIMIT]


def build_correlation_id(reward_type: RewardType, dedupe_key: str) -> str:
    digest = hashlib.sha256(f"{reward_type.value}::{dedupe_key}".encode("utf-8")).hexdigest()[:24]
    return f"gift_card:{digest}"


class RewardIssuanceService:
    """Mints referral rewards as Square gift cards.

    Each reward is claimed locally as a ``pending`` row whose unique
    ``dedupe_key`` stops concurrent deliveries from minting twice. The row
    becomes ``issued`` only after Square confirms; on failure the claim is
    removed so a redelivery can try again.
    """

    def __init__(self, session: AsyncSession, square: SquareClient, settings: Settings) -> None:
        self._session = session
        self._square = square
        self._settings = settings

    def amount_for(self, reward_type: RewardType) -> int:
        if reward_type == RewardType.FRIEND_SIGNUP_BONUS:
            return self._settings.signup_bonus_amount_cents
        return self._settings.referrer_reward_amount_cents

    async def find_reward(self, dedupe_key: str) -> GiftCardReward | None:
        stmt = select(GiftCardReward).where(GiftCardReward.dedupe_key == dedupe_key)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def issue(
        self,
        customer: Customer,
        reward_type: RewardType,
        *,
        referred: Customer | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> IssuedReward:
        dedupe_key = build_dedupe_key(reward_type, customer, referred)
        existing = await self.find_reward(dedupe_key)
        if existing is not None:
            if existing.status == RewardStatus.PENDING:
                logger.warning("Reward claim already pending", dedupe_key=dedupe_key)
            return IssuedReward(reward=existing, created=False)

        square_customer_id = customer.square_customer_id
        referred_id = referred.id if referred is not None else None
        amount = self.amount_for(reward_type)
        currency = self._settings.reward_currency

        claim = GiftCardReward(
            customer_id=customer.id,
            referred_customer_id=referred_id,
            reward_type=reward_type,
            status=RewardStatus.PENDING,
            dedupe_key=dedupe_key,
            idempotency_key=build_idempotency_key(reward_type.value.lower(), dedupe_key),
            amount_cents=amount,
            currency=currency,
            metadata_json=metadata or {},
        )
        self._session.add(claim)
        try:
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            await self._session.refresh(customer)
            if referred is not None:
                await self._session.refresh(referred)
            winner = await self.find_reward(dedupe_key)
            if winner is None:
                raise
            logger.info("Reward already claimed by concurrent delivery", dedupe_key=dedupe_key)
            return IssuedReward(reward=winner, created=False)

        recorded = await record_process_run(
            self._session,
            process_type=ProcessType.GIFT_CARD,
            correlation_id=build_correlation_id(reward_type, dedupe_key),
            event_type=reward_type.value,
            resource_id=square_customer_id,
            payload={"dedupe_key": dedupe_key, "amount_cents": amount, "currency": currency},
        )
        run = recorded.run
        await update_process_run(self._session, run, status=ProcessStatus.PROCESSING, stage="square")

        try:
            gift_card_id, gan, balance = await self._fund_gift_card(customer, claim)
        except SquareAPIError as exc:
            await self._session.delete(claim)
            await update_process_run(
                self._session,
                run,
                status=ProcessStatus.FAILED,
                stage="square",
                error=str(exc),
                context={"square_error_codes": exc.codes},
            )
            logger.error(
                "Gift card reward failed",
                reward_type=reward_type.value,
                square_customer_id=square_customer_id,
                error=str(exc),
            )
            raise RewardIssuanceError(
                f"Square rejected {reward_type.value} for {square_customer_id}",
                reward_type=reward_type,
                customer_id=square_customer_id,
            ) from exc

        claim.status = RewardStatus.ISSUED
        claim.square_gift_card_id = gift_card_id
        claim.gift_card_gan = gan
        claim.issued_at = datetime.now(timezone.utc)
        if not customer.gift_card_id:
            customer.gift_card_id = gift_card_id
        if not customer.gift_card_gan and gan:
            customer.gift_card_gan = gan
        await update_process_run(
            self._session,
            run,
            status=ProcessStatus.COMPLETED,
            stage="issued",
            context={"gift_card_id": gift_card_id, "gift_card_gan": gan},
        )
        logger.info(
            "Issued gift card reward",
            reward_type=reward_type.value,
            square_customer_id=square_customer_id,
            gift_card_id=gift_card_id,
            amount_cents=amount,
        )
        return IssuedReward(reward=claim, created=True, balance_cents=balance)

    async def _fund_gift_card(self, customer: Customer, claim: GiftCardReward) -> tuple[str, str | None, int | None]:
        seed = claim.dedupe_key
        if customer.gift_card_id:
            activity = await self._square.load_gift_card(
                customer.gift_card_id,
                amount_cents=claim.amount_cents,
                currency=claim.currency,
                idempotency_key=build_idempotency_key("load", seed),
            )
            balance = gift_card_balance_cents({"balance_money": activity.get("gift_card_balance_money")})
            return customer.gift_card_id, customer.gift_card_gan or activity.get("gift_card_gan"), balance

        card = await self._square.create_gift_card(idempotency_key=build_idempotency_key("create", seed))
        activity = await self._square.activate_gift_card(
            card["id"],
            amount_cents=claim.amount_cents,
            currency=claim.currency,
            idempotency_key=build_idempotency_key("activate", seed),
            reference_id=claim.reward_type.value,
        )
        try:
            await self._square.link_customer_to_gift_card(card["id"], customer.square_customer_id)
        except SquareAPIError as exc:
            logger.warning(
                "Gift card funded but not linked to customer",
                gift_card_id=card["id"],
                square_customer_id=customer.square_customer_id,
                error=str(exc),
            )
        balance = gift_card_balance_cents({"balance_money": activity.get("gift_card_balance_money")})
        return card["id"], card.get("gan"), balance if balance is not None else claim.amount_cents
