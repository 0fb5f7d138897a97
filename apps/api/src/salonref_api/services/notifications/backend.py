"""Email and SMS backend implementations for notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol

import httpx

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"


class EmailBackend(Protocol):
    """Minimal protocol for sending notification emails."""

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        ...


class SMSBackend(Protocol):
    """Protocol for SMS dispatchers."""

    async def send_sms(self, recipient: str, body_text: str) -> None:
        ...


class SendGridEmailBackend:
    """Delivers mail through the SendGrid v3 REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        sender_email: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._sender_email = sender_email
        self._client = client
        self._timeout_seconds = timeout_seconds

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        content = [{"type": "text/plain", "value": body_text}]
        if body_html:
            content.append({"type": "text/html", "value": body_html})
        payload = {
            "personalizations": [{"to": [{"email": recipient}], "subject": subject}],
            "from": {"email": self._sender_email},
            "content": content,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        if self._client is not None:
            response = await self._client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(SENDGRID_SEND_URL, json=payload, headers=headers)
        response.raise_for_status()


class TwilioSMSBackend:
    """Sends text messages through the Twilio Messages API."""

    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        from_number: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._client = client
        self._timeout_seconds = timeout_seconds

    async def send_sms(self, recipient: str, body_text: str) -> None:
        url = TWILIO_MESSAGES_URL.format(account_sid=self._account_sid)
        data = {"From": self._from_number, "To": recipient, "Body": body_text}
        auth = (self._account_sid, self._auth_token)

        if self._client is not None:
            response = await self._client.post(url, data=data, auth=auth)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(url, data=data, auth=auth)
        response.raise_for_status()


@dataclass
class SentEmail:
    recipient: str
    subject: str
    body_text: str
    body_html: str | None


@dataclass
class InMemoryEmailBackend:
    """Test backend storing outbound messages in memory."""

    sent_messages: List[SentEmail]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_email(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        *,
        body_html: str | None = None,
    ) -> None:
        self.sent_messages.append(SentEmail(recipient, subject, body_text, body_html))


@dataclass
class InMemorySMSBackend:
    """Stores SMS payloads for inspection in tests."""

    sent_messages: List[tuple[str, str]]

    def __init__(self) -> None:
        self.sent_messages = []

    async def send_sms(self, recipient: str, body_text: str) -> None:
        self.sent_messages.append((recipient, body_text))
