import pytest
from sqlalchemy import select

from salonref_api.models.customer import Customer
from salonref_api.models.process_run import ProcessRun, ProcessStatus, ProcessType
from salonref_api.models.referral import GiftCardReward, RewardStatus, RewardType
from salonref_api.services.referrals import RewardIssuanceError, RewardIssuanceService
from salonref_api.services.referrals.rewards import build_dedupe_key, build_idempotency_key


def test_idempotency_keys_are_deterministic_and_fit_square_limit() -> None:
    seed = "REFERRER_REWARD:" + "C" * 60 + ":" + "D" * 60

    first = build_idempotency_key("referrer_reward", seed)

    assert first == build_idempotency_key("referrer_reward", seed)
    assert len(first) <= 45
    assert first.startswith("referrer_r:")
    assert build_idempotency_key("referrer_reward", seed + "x") != first


def test_referrer_dedupe_key_names_both_customers() -> None:
    referrer = Customer(square_customer_id="R1")
    friend = Customer(square_customer_id="F1")

    assert build_dedupe_key(RewardType.FRIEND_SIGNUP_BONUS, friend) == "FRIEND_SIGNUP_BONUS:F1"
    assert build_dedupe_key(RewardType.REFERRER_REWARD, referrer, friend) == "REFERRER_REWARD:R1:F1"
    with pytest.raises(ValueError):
        build_dedupe_key(RewardType.REFERRER_REWARD, referrer)


@pytest.mark.asyncio
async def test_issue_creates_activates_and_links_card(session_factory, clients, square) -> None:
    async with session_factory() as session:
        customer = Customer(square_customer_id="F1", given_name="Fay")
        session.add(customer)
        await session.commit()

        issuer = RewardIssuanceService(session, square, clients.settings)
        issued = await issuer.issue(customer, RewardType.FRIEND_SIGNUP_BONUS, metadata={"referral_code": "ABC"})
        run = (await session.execute(select(ProcessRun))).scalar_one()

    assert issued.created is True
    assert issued.balance_cents == 1000
    assert issued.reward.status == RewardStatus.ISSUED
    assert issued.reward.issued_at is not None
    assert issued.reward.metadata_json == {"referral_code": "ABC"}
    assert customer.gift_card_id == issued.reward.square_gift_card_id
    assert square.linked == [(issued.reward.square_gift_card_id, "F1")]
    assert run.process_type == ProcessType.GIFT_CARD
    assert run.status == ProcessStatus.COMPLETED
    assert run.attempts == 1


@pytest.mark.asyncio
async def test_square_failure_leaves_no_reward_record(session_factory, clients, square) -> None:
    square.fail_gift_cards = True

    async with session_factory() as session:
        customer = Customer(square_customer_id="F1")
        session.add(customer)
        await session.commit()

        issuer = RewardIssuanceService(session, square, clients.settings)
        with pytest.raises(RewardIssuanceError) as excinfo:
            await issuer.issue(customer, RewardType.FRIEND_SIGNUP_BONUS)

        rewards = (await session.execute(select(GiftCardReward))).scalars().all()
        run = (await session.execute(select(ProcessRun))).scalar_one()

    assert excinfo.value.reward_type == RewardType.FRIEND_SIGNUP_BONUS
    assert excinfo.value.customer_id == "F1"
    assert rewards == []
    assert customer.gift_card_id is None
    assert run.status == ProcessStatus.FAILED
    assert run.context["square_error_codes"] == ["INTERNAL_SERVER_ERROR"]


@pytest.mark.asyncio
async def test_retry_after_failure_issues_once(session_factory, clients, square) -> None:
    async with session_factory() as session:
        customer = Customer(square_customer_id="F1")
        session.add(customer)
        await session.commit()
        issuer = RewardIssuanceService(session, square, clients.settings)

        square.fail_gift_cards = True
        with pytest.raises(RewardIssuanceError):
            await issuer.issue(customer, RewardType.FRIEND_SIGNUP_BONUS)

        square.fail_gift_cards = False
        retried = await issuer.issue(customer, RewardType.FRIEND_SIGNUP_BONUS)
        repeated = await issuer.issue(customer, RewardType.FRIEND_SIGNUP_BONUS)
        rewards = (await session.execute(select(GiftCardReward))).scalars().all()

    assert retried.created is True
    assert repeated.created is False
    assert repeated.reward.id == retried.reward.id
    assert len(rewards) == 1
    assert len(square.gift_cards) == 1


@pytest.mark.asyncio
async def test_pending_claim_blocks_second_issuance(session_factory, clients, square) -> None:
    async with session_factory() as session:
        customer = Customer(square_customer_id="F1")
        session.add(customer)
        await session.commit()
        session.add(
            GiftCardReward(
                customer_id=customer.id,
                reward_type=RewardType.FRIEND_SIGNUP_BONUS,
                status=RewardStatus.PENDING,
                dedupe_key="FRIEND_SIGNUP_BONUS:F1",
                idempotency_key="friend_sig:pending",
                amount_cents=1000,
                currency="USD",
                metadata_json={},
            )
        )
        await session.commit()

        issuer = RewardIssuanceService(session, square, clients.settings)
        result = await issuer.issue(customer, RewardType.FRIEND_SIGNUP_BONUS)

    assert result.created is False
    assert result.reward.status == RewardStatus.PENDING
    assert square.gift_cards == {}
