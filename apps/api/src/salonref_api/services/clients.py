"""Process-wide external clients, built once in the app lifespan."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from salonref_api.core.settings import Settings
from salonref_api.observability.webhooks import WebhookObservabilityStore, get_webhook_store
from salonref_api.services.notifications import NotificationService
from salonref_api.services.square import SquareClient
from salonref_api.services.wallet import ApnsPushBackend, PassBuilder, WalletPushBackend


@dataclass
class ServiceClients:
    """Dependencies handed to request handlers instead of module-level singletons."""

    settings: Settings
    square: SquareClient
    notifications: NotificationService
    pass_builder: PassBuilder
    push_backend: WalletPushBackend | None
    webhook_store: WebhookObservabilityStore

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceClients":
        pass_builder = PassBuilder.from_settings(settings)
        push_backend: WalletPushBackend | None = None
        if settings.disable_wallet_push:
            logger.info("Wallet push disabled", reason="disable_wallet_push is true")
        elif pass_builder.signing is not None:
            push_backend = ApnsPushBackend(signing=pass_builder.signing, use_sandbox=settings.apns_use_sandbox)
        return cls(
            settings=settings,
            square=SquareClient.from_settings(settings),
            notifications=NotificationService.from_settings(settings),
            pass_builder=pass_builder,
            push_backend=push_backend,
            webhook_store=get_webhook_store(),
        )

    async def aclose(self) -> None:
        await self.square.aclose()
        if isinstance(self.push_backend, ApnsPushBackend):
            await self.push_backend.aclose()
