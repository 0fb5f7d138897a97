from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from salonref_api.models.customer import Customer
from salonref_api.models.process_run import ProcessRun, ProcessStatus, ProcessType
from salonref_api.models.referral import GiftCardReward, ReferralClick, RewardStatus, RewardType


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _seed(session_factory) -> None:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        referrer = Customer(
            square_customer_id="R1",
            given_name="Rita",
            personal_code="RITA2024",
            activated_as_referrer=True,
            first_payment_completed=True,
            created_at=now - timedelta(days=3),
        )
        friend = Customer(
            square_customer_id="F1",
            given_name="Fay",
            used_referral_code="RITA2024",
            got_signup_bonus=True,
            first_payment_completed=True,
            created_at=now - timedelta(days=2),
        )
        waiting = Customer(square_customer_id="W1", used_referral_code="RITA2024", created_at=now - timedelta(days=1))
        session.add_all([referrer, friend, waiting])
        await session.flush()
        session.add_all(
            [
                GiftCardReward(
                    customer_id=friend.id,
                    reward_type=RewardType.FRIEND_SIGNUP_BONUS,
                    status=RewardStatus.ISSUED,
                    dedupe_key="FRIEND_SIGNUP_BONUS:F1",
                    idempotency_key="friend_sig:1",
                    amount_cents=1000,
                    currency="USD",
                    square_gift_card_id="gftc:1",
                    gift_card_gan="7777000000000001",
                    metadata_json={},
                ),
                GiftCardReward(
                    customer_id=referrer.id,
                    referred_customer_id=friend.id,
                    reward_type=RewardType.REFERRER_REWARD,
                    status=RewardStatus.ISSUED,
                    dedupe_key="REFERRER_REWARD:R1:F1",
                    idempotency_key="referrer_r:1",
                    amount_cents=1000,
                    currency="USD",
                    square_gift_card_id="gftc:2",
                    gift_card_gan="7777000000000002",
                    metadata_json={},
                ),
                ReferralClick(ref_code="RITA2024", first_seen_at=now - timedelta(hours=5)),
                ReferralClick(ref_code="RITA2024", first_seen_at=now - timedelta(hours=4)),
                ReferralClick(ref_code="OTHER001", first_seen_at=now - timedelta(hours=3)),
                ProcessRun(
                    process_type=ProcessType.WEBHOOK,
                    correlation_id="evt-ok",
                    event_type="payment.updated",
                    status=ProcessStatus.COMPLETED,
                    context={},
                ),
                ProcessRun(
                    process_type=ProcessType.WEBHOOK,
                    correlation_id="evt-bad",
                    event_type="payment.updated",
                    status=ProcessStatus.FAILED,
                    last_error="boom",
                    context={},
                ),
            ]
        )
        await session.commit()


@pytest.mark.asyncio
async def test_admin_key_is_enforced_when_configured(app_with_db, settings) -> None:
    app, _ = app_with_db
    settings.analytics_admin_key = "admin-secret"

    async with _client(app) as client:
        missing = await client.get("/api/v1/admin/summary")
        wrong = await client.get("/api/v1/admin/summary", headers={"x-admin-key": "nope"})
        header = await client.get("/api/v1/admin/summary", headers={"x-admin-key": "admin-secret"})
        bearer = await client.get("/api/v1/admin/summary", headers={"Authorization": "Bearer admin-secret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert header.status_code == 200
    assert bearer.status_code == 200


@pytest.mark.asyncio
async def test_admin_is_open_without_configured_key(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/api/v1/admin/summary")

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_registrations_paginate_and_filter(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed(session_factory)

    async with _client(app) as client:
        first_page = await client.get("/api/v1/admin/registrations", params={"page": 1, "limit": 2})
        oldest = await client.get("/api/v1/admin/registrations", params={"sort": "oldest", "limit": 1})
        referred = await client.get("/api/v1/admin/registrations", params={"status": "referred"})
        pending = await client.get("/api/v1/admin/registrations", params={"status": "pending_payment"})
        clamped = await client.get("/api/v1/admin/registrations", params={"page": 0, "limit": 500})

    body = first_page.json()
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3}
    assert [row["square_customer_id"] for row in body["data"]] == ["W1", "F1"]
    assert oldest.json()["data"][0]["square_customer_id"] == "R1"
    assert referred.json()["pagination"]["total"] == 2
    assert [row["square_customer_id"] for row in pending.json()["data"]] == ["W1"]
    assert clamped.json()["pagination"] == {"page": 1, "limit": 100, "total": 3}


@pytest.mark.asyncio
async def test_registration_detail_includes_rewards_and_clicks(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed(session_factory)

    async with _client(app) as client:
        detail = await client.get("/api/v1/admin/registrations/R1")
        missing = await client.get("/api/v1/admin/registrations/NOPE")

    data = detail.json()["data"]
    assert data["personal_code"] == "RITA2024"
    assert data["referred_customers"] == 2
    assert [reward["reward_type"] for reward in data["rewards"]] == ["REFERRER_REWARD"]
    assert len(data["clicks"]) == 2
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_process_runs_clicks_and_rewards_filters(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed(session_factory)

    async with _client(app) as client:
        failed = await client.get("/api/v1/admin/process-runs", params={"status": "failed", "processType": "webhook"})
        clicks = await client.get("/api/v1/admin/clicks", params={"refCode": "rita2024"})
        rewards = await client.get("/api/v1/admin/rewards", params={"rewardType": "FRIEND_SIGNUP_BONUS"})
        invalid = await client.get("/api/v1/admin/rewards", params={"status": "lost"})

    assert [run["correlation_id"] for run in failed.json()["data"]] == ["evt-bad"]
    assert clicks.json()["pagination"]["total"] == 2
    assert [reward["gift_card_gan"] for reward in rewards.json()["data"]] == ["7777000000000001"]
    assert invalid.status_code == 422


@pytest.mark.asyncio
async def test_summary_counts(app_with_db) -> None:
    app, session_factory = app_with_db
    await _seed(session_factory)

    async with _client(app) as client:
        response = await client.get("/api/v1/admin/summary")

    summary = response.json()["data"]
    assert summary["customers"] == 3
    assert summary["referrers"] == 1
    assert summary["referred_customers"] == 2
    assert summary["first_payments"] == 2
    assert summary["rewards_by_type"] == {"FRIEND_SIGNUP_BONUS": 1, "REFERRER_REWARD": 1}
    assert summary["issued_amount_cents"] == 2000
    assert summary["clicks"] == 3


@pytest.mark.asyncio
async def test_reconciliation_flags_bonus_without_code(app_with_db) -> None:
    app, session_factory = app_with_db
    async with session_factory() as session:
        session.add_all(
            [
                Customer(square_customer_id="ODD1", got_signup_bonus=True, gift_card_id="gftc:9"),
                Customer(square_customer_id="ODD2", activated_as_referrer=True),
                Customer(square_customer_id="R1", personal_code="RITA2024", first_payment_completed=True),
                Customer(square_customer_id="F1", used_referral_code="RITA2024", first_payment_completed=True),
            ]
        )
        await session.commit()

    async with _client(app) as client:
        response = await client.get("/api/v1/admin/reconciliation")

    alerts = {(alert["kind"], alert["square_customer_id"]) for alert in response.json()["data"]}
    assert alerts == {
        ("signup_bonus_without_referral_code", "ODD1"),
        ("referrer_without_personal_code", "ODD2"),
        ("referred_payment_without_rewards", "F1"),
    }


@pytest.mark.asyncio
async def test_webhook_status_snapshot(app_with_db, clients) -> None:
    app, _ = app_with_db
    clients.webhook_store.record("payment.updated", "processed", "evt-1")
    clients.webhook_store.record("payment.updated", "failed", "evt-2", error="boom")

    async with _client(app) as client:
        response = await client.get("/api/v1/admin/webhooks/status")

    payload = response.json()
    assert payload["totals"]["processed"] == {"payment.updated": 1}
    assert payload["events"]["last_failure_reason"] == "boom"


@pytest.mark.asyncio
async def test_unexpected_admin_error_returns_json_500(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db

    async def explode(self):
        raise RuntimeError("summary exploded")

    monkeypatch.setattr("salonref_api.services.analytics.referrals.ReferralAnalyticsService.summary", explode)

    async with _client(app) as client:
        response = await client.get("/api/v1/admin/summary")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal server error"
    assert "summary exploded" in body["stack"]
