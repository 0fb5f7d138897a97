"""High-level notification service for referral program messages."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from loguru import logger

from salonref_api.core.settings import Settings
from salonref_api.models.customer import Customer
from salonref_api.models.referral import GiftCardReward, RewardType

from .backend import EmailBackend, SendGridEmailBackend, SMSBackend, TwilioSMSBackend
from .templates import (
    RenderedTemplate,
    format_money,
    render_gift_card_reward,
    render_referral_code,
    render_referral_code_sms,
    render_referral_used_alert,
)

RECENT_EVENT_LIMIT = 100


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    channel: str
    recipient: str
    subject: str | None
    event_type: str
    metadata: dict[str, Any]


class NotificationService:
    """Coordinates email/SMS delivery via pluggable backends.

    A missing backend or a disabled channel turns sends into no-ops so the
    referral flow never depends on a messaging provider being reachable.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        email_backend: Optional[EmailBackend] = None,
        sms_backend: Optional[SMSBackend] = None,
    ) -> None:
        self._settings = settings
        self._email_backend = None if settings.disable_email_sending else email_backend
        self._sms_backend = None if settings.disable_sms_sending else sms_backend
        self._events: deque[NotificationEvent] = deque(maxlen=RECENT_EVENT_LIMIT)

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationService":
        email_backend: EmailBackend | None = None
        if settings.sendgrid_api_key and settings.sendgrid_sender_email:
            email_backend = SendGridEmailBackend(
                api_key=settings.sendgrid_api_key,
                sender_email=settings.sendgrid_sender_email,
            )
        sms_backend: SMSBackend | None = None
        if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_from_number:
            sms_backend = TwilioSMSBackend(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
            )
        return cls(settings=settings, email_backend=email_backend, sms_backend=sms_backend)

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Most recent deliveries, oldest first; older entries are dropped."""

        return list(self._events)

    async def send_referral_code(self, customer: Customer) -> bool:
        """Tell a newly activated referrer their code; True when any channel delivered."""

        if not customer.personal_code or not customer.referral_url:
            return False

        organization = self._settings.apple_pass_organization_name
        delivered = False
        metadata = {"square_customer_id": customer.square_customer_id, "personal_code": customer.personal_code}
        if customer.email_address:
            template = render_referral_code(
                given_name=customer.given_name,
                personal_code=customer.personal_code,
                referral_url=customer.referral_url,
                friend_reward=format_money(self._settings.signup_bonus_amount_cents, self._settings.reward_currency),
                organization=organization,
            )
            delivered = await self._deliver_email(
                customer.email_address, template, event_type="referral_code", metadata=metadata
            )
        if customer.phone_number:
            body = render_referral_code_sms(
                personal_code=customer.personal_code,
                referral_url=customer.referral_url,
                organization=organization,
            )
            delivered = (
                await self._deliver_sms(customer.phone_number, body, event_type="referral_code", metadata=metadata)
                or delivered
            )
        return delivered

    async def send_gift_card_reward(self, customer: Customer, reward: GiftCardReward) -> bool:
        if not customer.email_address:
            return False

        wallet_url = None
        if reward.gift_card_gan and self._settings.apple_pass_type_id:
            wallet_url = f"{self._settings.wallet_web_service_url}/pass/{reward.gift_card_gan}"
        template = render_gift_card_reward(
            given_name=customer.given_name,
            amount=format_money(reward.amount_cents, reward.currency),
            gift_card_gan=reward.gift_card_gan,
            wallet_url=wallet_url,
            is_referrer_reward=reward.reward_type == RewardType.REFERRER_REWARD,
            organization=self._settings.apple_pass_organization_name,
        )
        return await self._deliver_email(
            customer.email_address,
            template,
            event_type="gift_card_reward",
            metadata={
                "square_customer_id": customer.square_customer_id,
                "reward_type": reward.reward_type.value,
                "gift_card_gan": reward.gift_card_gan,
            },
        )

    async def send_referral_used_alert(
        self,
        *,
        referrer: Customer,
        referred: Customer,
        referral_code: str,
        rewards: list[GiftCardReward],
    ) -> int:
        """Notify staff that a referral converted. Returns the number of recipients reached."""

        recipients = self._settings.admin_notification_emails
        if not recipients:
            return 0
        template = render_referral_used_alert(
            referral_code=referral_code,
            referrer_name=referrer.display_name,
            referrer_customer_id=referrer.square_customer_id,
            referred_name=referred.display_name,
            referred_customer_id=referred.square_customer_id,
            rewards=[
                f"{reward.reward_type.value}: {format_money(reward.amount_cents, reward.currency)}" for reward in rewards
            ],
        )
        reached = 0
        for recipient in recipients:
            if await self._deliver_email(
                recipient,
                template,
                event_type="referral_used_alert",
                metadata={"referral_code": referral_code},
            ):
                reached += 1
        return reached

    async def _deliver_email(
        self,
        recipient: str,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> bool:
        if self._email_backend is None:
            logger.info("Email delivery skipped", event_type=event_type, reason="email backend disabled")
            return False

        try:
            await self._email_backend.send_email(
                recipient,
                template.subject,
                template.text_body,
                body_html=template.html_body,
            )
        except httpx.HTTPError as exc:
            logger.warning("Email delivery failed", event_type=event_type, error=str(exc))
            return False

        self._events.append(
            NotificationEvent(
                channel="email",
                recipient=recipient,
                subject=template.subject,
                event_type=event_type,
                metadata=metadata,
            )
        )
        return True

    async def _deliver_sms(self, recipient: str, body: str, *, event_type: str, metadata: dict[str, Any]) -> bool:
        if self._sms_backend is None:
            return False

        try:
            await self._sms_backend.send_sms(recipient, body)
        except httpx.HTTPError as exc:
            logger.warning("SMS delivery failed", event_type=event_type, error=str(exc))
            return False

        self._events.append(
            NotificationEvent(channel="sms", recipient=recipient, subject=None, event_type=event_type, metadata=metadata)
        )
        return True
