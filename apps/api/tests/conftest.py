import sys
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from salonref_api.api.dependencies.services import get_clients  # noqa: E402
from salonref_api.app import create_app  # noqa: E402
from salonref_api.core.settings import Settings  # noqa: E402
from salonref_api.db.base import Base  # noqa: E402
from salonref_api.db.session import get_session  # noqa: E402
import salonref_api.models  # noqa: E402,F401
from salonref_api.observability.webhooks import WebhookObservabilityStore  # noqa: E402
from salonref_api.services.clients import ServiceClients  # noqa: E402
from salonref_api.services.notifications import (  # noqa: E402
    InMemoryEmailBackend,
    InMemorySMSBackend,
    NotificationService,
)
from salonref_api.services.square import SquareAPIError  # noqa: E402
from salonref_api.services.wallet import InMemoryWalletPushBackend, PassBuilder  # noqa: E402
from square_payloads import WEBHOOK_KEY, WEBHOOK_URL  # noqa: E402


class FakeSquareClient:
    """Stands in for ``SquareClient`` with a tiny in-memory gift card ledger."""

    def __init__(self) -> None:
        self.customers: dict[str, dict[str, Any]] = {}
        self.custom_attributes: dict[str, list[dict[str, Any]]] = {}
        self.gift_cards: dict[str, dict[str, Any]] = {}
        self.activities: list[dict[str, Any]] = []
        self.linked: list[tuple[str, str]] = []
        self.fail_gift_cards = False
        self.fail_gan_lookup = False
        self.closed = False

    def _check(self, path: str) -> None:
        if self.fail_gift_cards:
            raise SquareAPIError(
                "Square POST /v2/gift-cards failed with 500",
                status_code=500,
                errors=[{"code": "INTERNAL_SERVER_ERROR"}],
                path=path,
            )

    async def aclose(self) -> None:
        self.closed = True

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any] | None:
        return self.customers.get(customer_id)

    async def list_customer_custom_attributes(self, customer_id: str) -> list[dict[str, Any]]:
        return self.custom_attributes.get(customer_id, [])

    async def create_gift_card(self, *, idempotency_key: str) -> dict[str, Any]:
        self._check("/v2/gift-cards")
        number = len(self.gift_cards) + 1
        card = {
            "id": f"gftc:{number}",
            "gan": f"77770000{number:08d}",
            "balance_money": {"amount": 0, "currency": "USD"},
        }
        self.gift_cards[card["id"]] = card
        return card

    async def _credit(self, gift_card_id: str, amount_cents: int, kind: str, idempotency_key: str) -> dict[str, Any]:
        self._check("/v2/gift-cards/activities")
        card = self.gift_cards[gift_card_id]
        card["balance_money"]["amount"] += amount_cents
        activity = {
            "type": kind,
            "gift_card_id": gift_card_id,
            "gift_card_gan": card["gan"],
            "gift_card_balance_money": dict(card["balance_money"]),
            "idempotency_key": idempotency_key,
        }
        self.activities.append(activity)
        return activity

    async def activate_gift_card(
        self,
        gift_card_id: str,
        *,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
        reference_id: str | None = None,
    ) -> dict[str, Any]:
        return await self._credit(gift_card_id, amount_cents, "ACTIVATE", idempotency_key)

    async def load_gift_card(
        self,
        gift_card_id: str,
        *,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> dict[str, Any]:
        return await self._credit(gift_card_id, amount_cents, "ADJUST_INCREMENT", idempotency_key)

    async def link_customer_to_gift_card(self, gift_card_id: str, customer_id: str) -> dict[str, Any]:
        self.linked.append((gift_card_id, customer_id))
        return self.gift_cards[gift_card_id]

    async def retrieve_gift_card_from_gan(self, gan: str) -> dict[str, Any] | None:
        if self.fail_gan_lookup:
            raise SquareAPIError("Square request failed: timeout", path="/v2/gift-cards/from-gan")
        for card in self.gift_cards.values():
            if card["gan"] == gan:
                return card
        return None

    async def retrieve_order(self, order_id: str) -> dict[str, Any] | None:
        return {"id": order_id, "state": "COMPLETED", "total_money": {"amount": 4500, "currency": "USD"}}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="development",
        database_url="sqlite+aiosqlite:///:memory:",
        api_base_url="https://api.salon.example",
        referral_base_url="https://salon.example",
        square_access_token="sq-test-token",
        square_location_id="LOC1",
        square_webhook_signature_key=WEBHOOK_KEY,
        square_webhook_notification_url=WEBHOOK_URL,
        sendgrid_api_key="sg-test",
        sendgrid_sender_email="hello@salon.example",
        admin_notification_emails=["owner@salon.example"],
        apple_pass_type_id="pass.example.salon.giftcard",
        apple_team_id="TEAM123456",
        apple_pass_auth_secret="pass-secret",
        click_ip_hash_salt="test-salt",
    )


@pytest.fixture
def square() -> FakeSquareClient:
    return FakeSquareClient()


@pytest.fixture
def email_backend() -> InMemoryEmailBackend:
    return InMemoryEmailBackend()


@pytest.fixture
def push_backend() -> InMemoryWalletPushBackend:
    return InMemoryWalletPushBackend()


@pytest.fixture
def clients(settings, square, email_backend, push_backend) -> ServiceClients:
    return ServiceClients(
        settings=settings,
        square=square,
        notifications=NotificationService(
            settings=settings,
            email_backend=email_backend,
            sms_backend=InMemorySMSBackend(),
        ),
        pass_builder=PassBuilder.from_settings(settings),
        push_backend=push_backend,
        webhook_store=WebhookObservabilityStore(),
    )


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory, clients):
    app = create_app()
    app.state.clients = clients

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clients] = lambda: clients

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
