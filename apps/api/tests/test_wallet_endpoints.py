import io
import json
import zipfile
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from salonref_api.models.customer import Customer
from salonref_api.models.wallet import DevicePassRegistration
from salonref_api.services.wallet import (
    PKPASS_CONTENT_TYPE,
    PassBuilder,
    WalletPushService,
    pass_authentication_token,
)

from square_payloads import signed_webhook
from wallet_certificates import apply_signing_settings

PASS_TYPE = "pass.example.salon.giftcard"
GAN = "7777000000000001"
BASE = "/api/wallet/v1"


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _auth(serial: str = GAN) -> dict[str, str]:
    return {"Authorization": f"ApplePass {pass_authentication_token('pass-secret', serial)}"}


@pytest_asyncio.fixture
async def wallet_app(app_with_db, settings, clients, square):
    apply_signing_settings(settings)
    clients.pass_builder = PassBuilder.from_settings(settings)
    app, session_factory = app_with_db
    square.gift_cards["gftc:1"] = {"id": "gftc:1", "gan": GAN, "balance_money": {"amount": 3500, "currency": "USD"}}
    async with session_factory() as session:
        session.add(Customer(square_customer_id="F1", given_name="Fay", gift_card_id="gftc:1", gift_card_gan=GAN))
        await session.commit()
    return app, session_factory


@pytest.mark.asyncio
async def test_registration_lifecycle(wallet_app) -> None:
    app, session_factory = wallet_app
    url = f"{BASE}/devices/device-1/registrations/{PASS_TYPE}/{GAN}"

    async with _client(app) as client:
        unauthorized = await client.post(url, json={"pushToken": "tok-1"})
        no_token = await client.post(url, json={}, headers=_auth())
        created = await client.post(url, json={"pushToken": "tok-1"}, headers=_auth())
        refreshed = await client.post(url, json={"pushToken": "tok-2"}, headers=_auth())
        listing = await client.get(f"{BASE}/devices/device-1/registrations/{PASS_TYPE}")
        later = await client.get(
            f"{BASE}/devices/device-1/registrations/{PASS_TYPE}",
            params={"passesUpdatedSince": "4102444800"},
        )
        other_device = await client.get(f"{BASE}/devices/device-2/registrations/{PASS_TYPE}")
        removed = await client.delete(url, headers=_auth())
        after_delete = await client.get(f"{BASE}/devices/device-1/registrations/{PASS_TYPE}")

    assert unauthorized.status_code == 401
    assert no_token.status_code == 400
    assert created.status_code == 201
    assert refreshed.status_code == 200
    assert listing.status_code == 200
    assert listing.json()["serialNumbers"] == [GAN]
    assert listing.json()["lastUpdated"].isdigit()
    assert later.status_code == 204
    assert other_device.status_code == 204
    assert removed.status_code == 200
    assert after_delete.status_code == 204


@pytest.mark.asyncio
async def test_wrong_pass_type_is_unauthorized(wallet_app) -> None:
    app, _ = wallet_app

    async with _client(app) as client:
        response = await client.get(f"{BASE}/passes/pass.other.type/{GAN}", headers=_auth())

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_latest_pass_uses_square_balance(wallet_app) -> None:
    app, _ = wallet_app

    async with _client(app) as client:
        response = await client.get(f"{BASE}/passes/{PASS_TYPE}/{GAN}", headers=_auth())

    assert response.status_code == 200
    assert response.headers["content-type"] == PKPASS_CONTENT_TYPE
    assert "no-cache" in response.headers["cache-control"]
    assert response.headers["last-modified"].endswith("GMT")
    with zipfile.ZipFile(io.BytesIO(response.content)) as bundle:
        pass_json = json.loads(bundle.read("pass.json"))
    assert pass_json["storeCard"]["primaryFields"][0]["value"] == 35.0
    assert pass_json["storeCard"]["secondaryFields"][0]["value"] == "Fay"


@pytest.mark.asyncio
async def test_latest_pass_falls_back_to_cached_balance(wallet_app, square) -> None:
    app, session_factory = wallet_app
    square.fail_gan_lookup = True
    async with session_factory() as session:
        session.add(
            DevicePassRegistration(
                device_library_identifier="device-1",
                pass_type_identifier=PASS_TYPE,
                serial_number=GAN,
                push_token="tok-1",
                balance_cents=1200,
            )
        )
        await session.commit()

    async with _client(app) as client:
        response = await client.get(f"{BASE}/passes/{PASS_TYPE}/{GAN}", headers=_auth())

    assert response.status_code == 200
    with zipfile.ZipFile(io.BytesIO(response.content)) as bundle:
        pass_json = json.loads(bundle.read("pass.json"))
    assert pass_json["storeCard"]["primaryFields"][0]["value"] == 12.0


@pytest.mark.asyncio
async def test_unknown_pass_is_not_found(wallet_app) -> None:
    app, _ = wallet_app
    unknown = "7777000099999999"

    async with _client(app) as client:
        latest = await client.get(f"{BASE}/passes/{PASS_TYPE}/{unknown}", headers=_auth(unknown))
        download = await client.get(f"/api/wallet/pass/{unknown}")

    assert latest.status_code == 404
    assert download.status_code == 404


@pytest.mark.asyncio
async def test_public_download_and_device_log(wallet_app) -> None:
    app, _ = wallet_app

    async with _client(app) as client:
        download = await client.get(f"/api/wallet/pass/{GAN}")
        log = await client.post(f"{BASE}/log", json={"logs": ["Web service error: timeout"]})
        garbage_log = await client.post(f"{BASE}/log", content=b"not json")

    assert download.status_code == 200
    assert download.headers["content-type"] == PKPASS_CONTENT_TYPE
    assert log.status_code == 200
    assert garbage_log.status_code == 200


@pytest.mark.asyncio
async def test_push_updates_balance_and_drops_stale_tokens(session_factory, push_backend) -> None:
    push_backend.invalid_tokens.add("tok-stale")
    async with session_factory() as session:
        for device, token in (("device-1", "tok-live"), ("device-2", "tok-stale")):
            session.add(
                DevicePassRegistration(
                    device_library_identifier=device,
                    pass_type_identifier=PASS_TYPE,
                    serial_number=GAN,
                    push_token=token,
                    balance_cents=1000,
                )
            )
        await session.commit()

        service = WalletPushService(session, push_backend, pass_type_identifier=PASS_TYPE)
        delivered = await service.push_balance_update(GAN, 4200)
        remaining = (await session.execute(select(DevicePassRegistration))).scalars().all()

    assert delivered == 1
    assert sorted(token for token, _ in push_backend.sent) == ["tok-live", "tok-stale"]
    assert [row.push_token for row in remaining] == ["tok-live"]
    assert remaining[0].balance_cents == 4200


@pytest.mark.asyncio
async def test_gift_card_webhook_pushes_balance_to_devices(wallet_app, push_backend) -> None:
    app, session_factory = wallet_app
    async with session_factory() as session:
        session.add(
            DevicePassRegistration(
                device_library_identifier="device-1",
                pass_type_identifier=PASS_TYPE,
                serial_number=GAN,
                push_token="tok-1",
                balance_cents=3500,
            )
        )
        await session.commit()
    body, headers = signed_webhook(
        {
            "merchant_id": "MERCHANT",
            "type": "gift_card.activity.created",
            "event_id": "evt-gc-1",
            "data": {
                "type": "gift_card_activity",
                "id": "gca-1",
                "object": {
                    "gift_card_activity": {
                        "id": "gca-1",
                        "type": "REDEEM",
                        "gift_card_id": "gftc:1",
                        "gift_card_gan": GAN,
                        "gift_card_balance_money": {"amount": 1500, "currency": "USD"},
                    }
                },
            },
        }
    )

    async with _client(app) as client:
        response = await client.post("/api/v1/webhooks/square", content=body, headers=headers)

    assert response.json()["status"] == "processed"
    assert push_backend.sent == [("tok-1", PASS_TYPE)]
    async with session_factory() as session:
        registration = (await session.execute(select(DevicePassRegistration))).scalar_one()
    assert registration.balance_cents == 1500


@pytest.mark.asyncio
async def test_returned_update_tag_yields_no_changes(wallet_app) -> None:
    app, session_factory = wallet_app
    updated_at = datetime(2026, 10, 1, 12, 0, 0, 750000, tzinfo=timezone.utc)
    async with session_factory() as session:
        session.add(
            DevicePassRegistration(
                device_library_identifier="device-1",
                pass_type_identifier=PASS_TYPE,
                serial_number=GAN,
                push_token="tok-1",
                created_at=updated_at,
                updated_at=updated_at,
            )
        )
        await session.commit()
    url = f"{BASE}/devices/device-1/registrations/{PASS_TYPE}"

    async with _client(app) as client:
        listing = await client.get(url)
        tag = listing.json()["lastUpdated"]
        repeat = await client.get(url, params={"passesUpdatedSince": tag})
        earlier = await client.get(url, params={"passesUpdatedSince": str(int(tag) - 1)})

    assert tag == str(int(updated_at.timestamp()))
    assert repeat.status_code == 204
    assert earlier.json()["serialNumbers"] == [GAN]
