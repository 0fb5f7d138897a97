"""APNs delivery of Wallet pass update notifications."""

from __future__ import annotations

import os
import ssl
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Protocol

import httpx
from cryptography.hazmat.primitives import serialization
from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from salonref_api.models.wallet import DevicePassRegistration

from .certificates import PassSigningMaterial

APNS_PRODUCTION_URL = "https://api.push.apple.com"
APNS_SANDBOX_URL = "https://api.sandbox.push.apple.com"
INVALID_TOKEN_REASONS = frozenset({"Unregistered", "BadDeviceToken", "DeviceTokenNotForTopic"})


@dataclass(slots=True)
class PushResult:
    push_token: str
    delivered: bool
    status_code: int | None = None
    reason: str | None = None

    @property
    def token_invalid(self) -> bool:
        return self.status_code == 410 or (self.reason or "") in INVALID_TOKEN_REASONS


class WalletPushBackend(Protocol):
    async def notify(self, push_token: str, *, topic: str) -> PushResult:
        ...


def build_apns_ssl_context(signing: PassSigningMaterial) -> ssl.SSLContext:
    """TLS client context authenticating with the pass type certificate."""

    context = ssl.create_default_context()
    cert_pem = signing.certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = signing.private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    # ssl only loads client certificates from files
    with tempfile.TemporaryDirectory(prefix="apns-") as workdir:
        cert_path = os.path.join(workdir, "cert.pem")
        key_path = os.path.join(workdir, "key.pem")
        with open(cert_path, "wb") as handle:
            handle.write(cert_pem)
        with open(key_path, "wb") as handle:
            handle.write(key_pem)
        context.load_cert_chain(cert_path, key_path)
    return context


class ApnsPushBackend:
    """Sends empty Wallet pushes over HTTP/2 using the pass certificate."""

    def __init__(
        self,
        *,
        signing: PassSigningMaterial,
        use_sandbox: bool = False,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=APNS_SANDBOX_URL if use_sandbox else APNS_PRODUCTION_URL,
            http2=True,
            verify=build_apns_ssl_context(signing),
            timeout=timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def notify(self, push_token: str, *, topic: str) -> PushResult:
        try:
            response = await self._client.post(
                f"/3/device/{push_token}",
                json={},
                headers={"apns-topic": topic, "apns-push-type": "background", "apns-priority": "5"},
            )
        except httpx.HTTPError as exc:
            logger.warning("APNs request failed", error=str(exc))
            return PushResult(push_token=push_token, delivered=False, reason=str(exc))

        if response.status_code == 200:
            return PushResult(push_token=push_token, delivered=True, status_code=200)
        try:
            reason = response.json().get("reason")
        except ValueError:
            reason = None
        return PushResult(push_token=push_token, delivered=False, status_code=response.status_code, reason=reason)


@dataclass
class InMemoryWalletPushBackend:
    """Records pushes for tests; tokens in ``invalid_tokens`` answer as Unregistered."""

    sent: List[tuple[str, str]]
    invalid_tokens: set[str]

    def __init__(self, invalid_tokens: set[str] | None = None) -> None:
        self.sent = []
        self.invalid_tokens = set(invalid_tokens or ())

    async def notify(self, push_token: str, *, topic: str) -> PushResult:
        self.sent.append((push_token, topic))
        if push_token in self.invalid_tokens:
            return PushResult(push_token=push_token, delivered=False, status_code=410, reason="Unregistered")
        return PushResult(push_token=push_token, delivered=True, status_code=200)


class WalletPushService:
    """Refreshes cached balances and pings every device holding a pass."""

    def __init__(
        self,
        session: AsyncSession,
        backend: WalletPushBackend | None,
        *,
        pass_type_identifier: str,
    ) -> None:
        self._session = session
        self._backend = backend
        self._pass_type_identifier = pass_type_identifier

    async def push_balance_update(self, serial_number: str, balance_cents: int | None) -> int:
        """Return the number of devices notified."""

        stmt = select(DevicePassRegistration).where(
            DevicePassRegistration.serial_number == serial_number,
            DevicePassRegistration.pass_type_identifier == self._pass_type_identifier,
        )
        registrations = list((await self._session.execute(stmt)).scalars().all())
        if not registrations:
            return 0

        now = datetime.now(timezone.utc)
        for registration in registrations:
            if balance_cents is not None:
                registration.balance_cents = balance_cents
            registration.updated_at = now
        await self._session.commit()

        if self._backend is None:
            logger.info("Wallet push skipped", serial_number=serial_number, reason="push backend disabled")
            return 0

        delivered = 0
        stale_ids = []
        for registration in registrations:
            result = await self._backend.notify(registration.push_token, topic=self._pass_type_identifier)
            if result.delivered:
                delivered += 1
            elif result.token_invalid:
                stale_ids.append(registration.id)
            else:
                logger.warning(
                    "Wallet push rejected",
                    serial_number=serial_number,
                    status=result.status_code,
                    reason=result.reason,
                )

        if stale_ids:
            await self._session.execute(delete(DevicePassRegistration).where(DevicePassRegistration.id.in_(stale_ids)))
            await self._session.commit()
            logger.info("Removed stale wallet registrations", serial_number=serial_number, count=len(stale_ids))
        return delivered
