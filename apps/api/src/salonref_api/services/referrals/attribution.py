"""Referral attribution state machine driven by Square webhooks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.models.customer import Customer
from salonref_api.models.referral import GiftCardReward, RewardStatus, RewardType
from salonref_api.schemas.square_events import BookingObject, CustomerObject, PaymentObject
from salonref_api.services.clients import ServiceClients
from salonref_api.services.square import SquareAPIError
from salonref_api.services.square.mirrors import upsert_booking, upsert_customer, upsert_payment
from salonref_api.services.wallet import WalletPushService

from .codes import (
    ReferralCodeGenerationError,
    build_referral_url,
    code_from_custom_attributes,
    codes_from_booking,
    find_referrer_by_code,
    generate_unique_personal_code,
    normalize_referral_code,
)
from .rewards import IssuedReward, RewardIssuanceError, RewardIssuanceService

_CODE_ASSIGNMENT_ATTEMPTS = 3


class ReferralAttributionError(RuntimeError):
    """Raised after partial reward failures so the run is marked failed."""

    def __init__(self, message: str, *, errors: list[str]) -> None:
        super().__init__(message)
        self.errors = errors


@dataclass(slots=True)
class PaymentAttribution:
    """What a payment event did: ``skipped``, ``already_processed``, ``activated`` or ``attributed``."""

    status: str
    square_customer_id: str | None = None
    personal_code: str | None = None
    referrer_customer_id: str | None = None
    rewards: list[GiftCardReward] = field(default_factory=list)


class ReferralAttributionService:
    """Applies customer, booking and payment events to referral state.

    Duplicate and out-of-order deliveries are absorbed by unique keys and
    the conditional ``first_payment_completed`` flip; nothing here relies on
    in-process locking.
    """

    def __init__(self, session: AsyncSession, clients: ServiceClients) -> None:
        self._session = session
        self._clients = clients
        self._settings = clients.settings

    async def handle_customer(self, customer_object: CustomerObject) -> Customer:
        customer = await upsert_customer(self._session, customer_object)
        if not customer.used_referral_code and not customer.first_payment_completed:
            await self._capture_code_from_attributes(customer, require_known_referrer=False)
        return customer

    async def ensure_customer(self, square_customer_id: str) -> Customer | None:
        """Load the local customer, creating it from Square when the webhook arrived first."""

        stmt = select(Customer).where(Customer.square_customer_id == square_customer_id)
        customer = (await self._session.execute(stmt)).scalar_one_or_none()
        if customer is not None:
            return customer

        remote = await self._clients.square.retrieve_customer(square_customer_id)
        if remote is None:
            logger.warning("Square customer not found", square_customer_id=square_customer_id)
            return None
        return await self.handle_customer(CustomerObject.model_validate(remote))

    async def handle_booking(self, booking: BookingObject) -> None:
        await upsert_booking(self._session, booking, organization_id=self._settings.square_organization_id)
        if not booking.customer_id:
            return
        customer = await self.ensure_customer(booking.customer_id)
        if customer is None or customer.used_referral_code or customer.first_payment_completed:
            return

        for candidate in codes_from_booking(booking):
            referrer = await find_referrer_by_code(self._session, candidate)
            if referrer is not None and referrer.id != customer.id:
                await self._store_used_code(customer, candidate, source="booking_custom_field")
                return
        await self._capture_code_from_attributes(customer, require_known_referrer=True)

    async def handle_payment(self, payment: PaymentObject) -> PaymentAttribution:
        await upsert_payment(self._session, payment, organization_id=self._settings.square_organization_id)
        if not payment.is_completed or not payment.customer_id:
            return PaymentAttribution(status="skipped", square_customer_id=payment.customer_id)

        customer = await self.ensure_customer(payment.customer_id)
        if customer is None:
            return PaymentAttribution(status="skipped", square_customer_id=payment.customer_id)

        if not await self._claim_first_payment(customer):
            logger.info("First payment already processed", square_customer_id=customer.square_customer_id)
            return PaymentAttribution(
                status="already_processed",
                square_customer_id=customer.square_customer_id,
                personal_code=customer.personal_code,
            )

        customer_id, square_customer_id = customer.id, customer.square_customer_id
        try:
            return await self._attribute_first_payment(customer)
        except Exception:
            await self._release_first_payment(customer_id, square_customer_id)
            raise

    async def _attribute_first_payment(self, customer: Customer) -> PaymentAttribution:
        await self._activate_referrer(customer)
        referrer = await self._resolve_referrer(customer)
        if referrer is None:
            return PaymentAttribution(
                status="activated",
                square_customer_id=customer.square_customer_id,
                personal_code=customer.personal_code,
            )

        issued, errors = await self._issue_rewards(customer, referrer)
        await self._announce_rewards(customer, referrer, issued)
        if errors:
            raise ReferralAttributionError("; ".join(errors), errors=errors)

        return PaymentAttribution(
            status="attributed",
            square_customer_id=customer.square_customer_id,
            personal_code=customer.personal_code,
            referrer_customer_id=referrer.square_customer_id,
            rewards=[item.reward for item in issued],
        )

    async def _capture_code_from_attributes(self, customer: Customer, *, require_known_referrer: bool) -> None:
        try:
            attributes = await self._clients.square.list_customer_custom_attributes(customer.square_customer_id)
        except SquareAPIError as exc:
            logger.warning(
                "Could not read customer custom attributes",
                square_customer_id=customer.square_customer_id,
                error=str(exc),
            )
            return

        code = code_from_custom_attributes(attributes, self._settings.square_referral_code_attribute_key)
        if code is None or code == normalize_referral_code(customer.personal_code):
            return
        if require_known_referrer and await find_referrer_by_code(self._session, code) is None:
            return
        await self._store_used_code(customer, code, source="custom_attribute")

    async def _store_used_code(self, customer: Customer, code: str, *, source: str) -> None:
        customer.used_referral_code = normalize_referral_code(code)
        customer.referral_code_source = source
        await self._session.commit()
        logger.info(
            "Stored referral code for customer",
            square_customer_id=customer.square_customer_id,
            referral_code=customer.used_referral_code,
            source=source,
        )

    async def _claim_first_payment(self, customer: Customer) -> bool:
        """Flip ``first_payment_completed`` in one guarded UPDATE; False if already set."""

        result = await self._session.execute(
            update(Customer)
            .where(Customer.id == customer.id, Customer.first_payment_completed.is_(False))
            .values(first_payment_completed=True, first_payment_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        await self._session.refresh(customer)
        return result.rowcount == 1

    async def _release_first_payment(self, customer_id: UUID, square_customer_id: str) -> None:
        """Undo the first-payment claim so a redelivery of the event retries activation and rewards."""

        await self._session.rollback()
        await self._session.execute(
            update(Customer)
            .where(Customer.id == customer_id)
            .values(first_payment_completed=False, first_payment_at=None)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        logger.warning("Released first payment claim after failure", square_customer_id=square_customer_id)

    async def _activate_referrer(self, customer: Customer) -> None:
        base_url = self._settings.referral_base_url
        if not customer.personal_code:
            for _ in range(_CODE_ASSIGNMENT_ATTEMPTS):
                code = await generate_unique_personal_code(self._session, length=self._settings.personal_code_length)
                customer.personal_code = code
                customer.referral_url = build_referral_url(base_url, code)
                customer.activated_as_referrer = True
                try:
                    await self._session.commit()
                    break
                except IntegrityError:
                    await self._session.rollback()
                    await self._session.refresh(customer)
            else:
                raise ReferralCodeGenerationError(f"could not assign a personal code to {customer.square_customer_id}")
            logger.info(
                "Activated customer as referrer",
                square_customer_id=customer.square_customer_id,
                personal_code=customer.personal_code,
            )
        elif not customer.activated_as_referrer or not customer.referral_url:
            customer.activated_as_referrer = True
            customer.referral_url = customer.referral_url or build_referral_url(base_url, customer.personal_code)
            await self._session.commit()

        if not customer.referral_email_sent and await self._clients.notifications.send_referral_code(customer):
            customer.referral_email_sent = True
            await self._session.commit()

    async def _resolve_referrer(self, customer: Customer) -> Customer | None:
        code = normalize_referral_code(customer.used_referral_code)
        if code is None:
            return None
        referrer = await find_referrer_by_code(self._session, code)
        if referrer is None:
            logger.info(
                "Referral code did not match any referrer",
                square_customer_id=customer.square_customer_id,
                referral_code=code,
            )
            return None
        if referrer.id == customer.id:
            logger.warning("Ignoring self referral", square_customer_id=customer.square_customer_id, referral_code=code)
            return None
        return referrer

    async def _issue_rewards(self, customer: Customer, referrer: Customer) -> tuple[list[IssuedReward], list[str]]:
        issuer = RewardIssuanceService(self._session, self._clients.square, self._settings)
        metadata = {
            "referral_code": normalize_referral_code(customer.used_referral_code),
            "referrer_customer_id": referrer.square_customer_id,
            "referred_customer_id": customer.square_customer_id,
            "source": "first_payment",
        }
        issued: list[IssuedReward] = []
        errors: list[str] = []

        if not customer.got_signup_bonus:
            try:
                bonus = await issuer.issue(customer, RewardType.FRIEND_SIGNUP_BONUS, metadata=metadata)
            except RewardIssuanceError as exc:
                errors.append(str(exc))
            else:
                if bonus.reward.status == RewardStatus.ISSUED:
                    customer.got_signup_bonus = True
                    await self._session.commit()
                if bonus.created:
                    issued.append(bonus)

        try:
            referrer_reward = await issuer.issue(referrer, RewardType.REFERRER_REWARD, referred=customer, metadata=metadata)
        except RewardIssuanceError as exc:
            errors.append(str(exc))
        else:
            if referrer_reward.created:
                issued.append(referrer_reward)

        return issued, errors

    async def _announce_rewards(self, customer: Customer, referrer: Customer, issued: list[IssuedReward]) -> None:
        if not issued:
            return

        owners = {customer.id: customer, referrer.id: referrer}
        for item in issued:
            owner = owners[item.reward.customer_id]
            await self._clients.notifications.send_gift_card_reward(owner, item.reward)

        await self._clients.notifications.send_referral_used_alert(
            referrer=referrer,
            referred=customer,
            referral_code=normalize_referral_code(customer.used_referral_code) or "",
            rewards=[item.reward for item in issued],
        )

        push = WalletPushService(
            self._session,
            self._clients.push_backend,
            pass_type_identifier=self._settings.apple_pass_type_id,
        )
        for item in issued:
            if item.reward.gift_card_gan:
                await push.push_balance_update(item.reward.gift_card_gan, item.balance_cents)
