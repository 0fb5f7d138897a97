import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from salonref_api.models.customer import Customer
from salonref_api.models.mirrors import SquareOrder, SquarePayment
from salonref_api.models.process_run import ProcessRun, ProcessStatus
from salonref_api.models.referral import GiftCardReward
from salonref_api.services.webhooks import compute_square_signature

from square_payloads import WEBHOOK_KEY, WEBHOOK_URL, customer_event, payment_event, signed_webhook


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.mark.asyncio
async def test_unknown_event_type_is_acknowledged_without_processing(app_with_db, clients) -> None:
    app, session_factory = app_with_db
    body, headers = signed_webhook({"type": "invoice.paid", "event_id": "evt-x", "data": {"object": {}}})

    async with _client(app) as client:
        response = await client.post("/api/v1/webhooks/square", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    async with session_factory() as session:
        assert (await session.execute(select(ProcessRun))).scalars().all() == []
    assert clients.webhook_store.snapshot().totals["ignored"] == {"invoice.paid": 1}


@pytest.mark.asyncio
async def test_bad_signature_is_rejected_before_processing(app_with_db, clients) -> None:
    app, session_factory = app_with_db
    body, headers = signed_webhook(customer_event("C1", event_id="evt-1"), key="wrong-key")

    async with _client(app) as client:
        rejected = await client.post("/api/v1/webhooks/square", content=body, headers=headers)
        missing = await client.post(
            "/api/v1/webhooks/square",
            content=body,
            headers={"content-type": "application/json"},
        )

    assert rejected.status_code == 401
    assert missing.status_code == 401
    assert clients.webhook_store.snapshot().rejected_signatures == 2
    async with session_factory() as session:
        assert (await session.execute(select(Customer))).scalars().all() == []


@pytest.mark.asyncio
async def test_invalid_json_is_acknowledged(app_with_db) -> None:
    app, _ = app_with_db
    body = b"{not json"
    headers = {"x-square-hmacsha256-signature": compute_square_signature(body, WEBHOOK_KEY, WEBHOOK_URL)}

    async with _client(app) as client:
        response = await client.post("/api/v1/webhooks/square", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {"received": True, "status": "ignored"}


@pytest.mark.asyncio
async def test_customer_then_payment_activates_referrer(app_with_db, email_backend) -> None:
    app, session_factory = app_with_db

    async with _client(app) as client:
        body, headers = signed_webhook(
            customer_event("C1", event_id="evt-c1", given_name="Cora", email_address="cora@example.com")
        )
        created = await client.post("/api/v1/webhooks/square", content=body, headers=headers)
        body, headers = signed_webhook(payment_event("pay-1", "C1", event_id="evt-p1"))
        paid = await client.post("/api/v1/webhooks/square", content=body, headers=headers)

    assert created.json()["status"] == "processed"
    assert paid.status_code == 200
    assert paid.json()["status"] == "processed"
    async with session_factory() as session:
        customer = (await session.execute(select(Customer))).scalar_one()
        runs = (await session.execute(select(ProcessRun))).scalars().all()
    assert customer.activated_as_referrer is True
    assert customer.personal_code is not None
    assert {run.status for run in runs} == {ProcessStatus.COMPLETED}
    assert email_backend.sent_messages[0].recipient == "cora@example.com"


@pytest.mark.asyncio
async def test_redelivered_event_is_a_duplicate(app_with_db, square) -> None:
    app, session_factory = app_with_db

    async with session_factory() as session:
        session.add(Customer(square_customer_id="R1", personal_code="RITA2024", first_payment_completed=True))
        session.add(Customer(square_customer_id="F1", used_referral_code="RITA2024"))
        await session.commit()

    body, headers = signed_webhook(payment_event("pay-F1", "F1", event_id="evt-pay-F1"))
    async with _client(app) as client:
        first = await client.post("/api/v1/webhooks/square", content=body, headers=headers)
        second = await client.post("/api/v1/webhooks/square", content=body, headers=headers)

    assert first.json()["status"] == "processed"
    assert second.json()["status"] == "duplicate"
    async with session_factory() as session:
        rewards = (await session.execute(select(GiftCardReward))).scalars().all()
    assert len(rewards) == 2
    assert len(square.gift_cards) == 2


@pytest.mark.asyncio
async def test_handler_failure_is_acknowledged_and_recorded(app_with_db, square, clients) -> None:
    app, session_factory = app_with_db
    square.fail_gift_cards = True

    async with session_factory() as session:
        session.add(Customer(square_customer_id="R1", personal_code="RITA2024", first_payment_completed=True))
        session.add(Customer(square_customer_id="F1", used_referral_code="RITA2024"))
        await session.commit()

    body, headers = signed_webhook(payment_event("pay-F1", "F1", event_id="evt-fail"))
    async with _client(app) as client:
        response = await client.post("/api/v1/webhooks/square", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    async with session_factory() as session:
        run = (await session.execute(select(ProcessRun).where(ProcessRun.correlation_id == "evt-fail"))).scalar_one()
        rewards = (await session.execute(select(GiftCardReward))).scalars().all()
    assert run.status == ProcessStatus.FAILED
    assert run.last_error.startswith("ReferralAttributionError")
    assert rewards == []
    snapshot = clients.webhook_store.snapshot().as_dict()
    assert snapshot["events"]["last_failure_event_id"] == "evt-fail"


@pytest.mark.asyncio
async def test_order_and_payment_events_are_mirrored(app_with_db) -> None:
    app, session_factory = app_with_db
    order_body, order_headers = signed_webhook(
        {
            "merchant_id": "MERCHANT",
            "type": "order.updated",
            "event_id": "evt-order-1",
            "data": {
                "type": "order_updated",
                "id": "order-1",
                "object": {"order_updated": {"order_id": "order-1", "state": "COMPLETED", "location_id": "LOC1"}},
            },
        }
    )
    payment_body, payment_headers = signed_webhook(payment_event("pay-1", None, event_id="evt-pay-1"))

    async with _client(app) as client:
        order_response = await client.post("/api/v1/webhooks/square", content=order_body, headers=order_headers)
        payment_response = await client.post("/api/v1/webhooks/square", content=payment_body, headers=payment_headers)

    assert order_response.json()["status"] == "processed"
    assert payment_response.json()["status"] == "processed"
    async with session_factory() as session:
        order = (await session.execute(select(SquareOrder))).scalar_one()
        payment = (await session.execute(select(SquarePayment))).scalar_one()
    assert order.square_order_id == "order-1"
    assert order.total_money_cents == 4500
    assert payment.square_payment_id == "pay-1"
    assert payment.amount_cents == 4500


@pytest.mark.asyncio
async def test_failed_payment_redelivery_issues_both_rewards(app_with_db, square) -> None:
    app, session_factory = app_with_db

    async with _client(app) as client:
        for payload in (
            customer_event("R1", event_id="evt-c-R1", given_name="Rita", email_address="rita@example.com"),
            payment_event("pay-R1", "R1", event_id="evt-pay-R1"),
        ):
            body, headers = signed_webhook(payload)
            await client.post("/api/v1/webhooks/square", content=body, headers=headers)

        async with session_factory() as session:
            referrer = (await session.execute(select(Customer).where(Customer.square_customer_id == "R1"))).scalar_one()
        square.custom_attributes["F1"] = [{"key": "referral_code", "value": referrer.personal_code}]
        body, headers = signed_webhook(customer_event("F1", event_id="evt-c-F1", given_name="Fay"))
        await client.post("/api/v1/webhooks/square", content=body, headers=headers)

        payment_body, payment_headers = signed_webhook(payment_event("pay-F1", "F1", event_id="evt-pay-F1"))
        square.fail_gift_cards = True
        first = await client.post("/api/v1/webhooks/square", content=payment_body, headers=payment_headers)
        square.fail_gift_cards = False
        redelivered = await client.post("/api/v1/webhooks/square", content=payment_body, headers=payment_headers)
        third = await client.post("/api/v1/webhooks/square", content=payment_body, headers=payment_headers)

    assert first.json()["status"] == "failed"
    assert redelivered.json()["status"] == "processed"
    assert third.json()["status"] == "duplicate"
    async with session_factory() as session:
        rewards = (await session.execute(select(GiftCardReward))).scalars().all()
        run = (
            await session.execute(select(ProcessRun).where(ProcessRun.correlation_id == "evt-pay-F1"))
        ).scalar_one()
    assert sorted(reward.reward_type.value for reward in rewards) == ["FRIEND_SIGNUP_BONUS", "REFERRER_REWARD"]
    assert run.status == ProcessStatus.COMPLETED
