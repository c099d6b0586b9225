import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from services import ledger
from services.billing_errors import (
    Forbidden,
    InvalidAmount,
    NotFound,
    ProviderUnavailable,
    RechargeClosed,
    RetryableBillingError,
)
from services.recharge import (
    CompletionOutcome,
    cancel_recharge,
    complete_recharge,
    create_recharge,
    fail_recharge,
    get_recharge,
    list_recharge_records,
)


RECHARGE_USER_ID = "recharge-user"


async def _create(session_maker, fake_provider, amount=50, user_id=RECHARGE_USER_ID):
    async with session_maker() as db:
        return await create_recharge(user_id, db, amount=amount, provider=fake_provider)


async def _load(session_maker, recharge_id):
    async with session_maker() as db:
        return await get_recharge(recharge_id, db)


@pytest.mark.asyncio
async def test_create_recharge_opens_checkout_tagged_with_record_id(session_maker, fake_provider):
    created = await _create(session_maker, fake_provider, amount=50)

    assert created["status"] == "pending"
    assert created["checkout_url"] == "https://checkout.test/ch_1"
    checkout = fake_provider.created[0]
    assert checkout["request_id"] == created["recharge_id"]
    assert checkout["units"] == 50
    assert checkout["metadata"]["userId"] == RECHARGE_USER_ID
    assert created["recharge_id"] in checkout["success_url"]

    record = await _load(session_maker, created["recharge_id"])
    assert record.status == "pending"
    assert record.payment_id == "ch_1"
    assert record.amount == Decimal("50")


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["10.50", 0, -1, 10001])
async def test_create_recharge_rejects_invalid_amounts(session_maker, fake_provider, amount):
    async with session_maker() as db:
        with pytest.raises(InvalidAmount):
            await create_recharge(RECHARGE_USER_ID, db, amount=amount, provider=fake_provider)
    assert fake_provider.created == []


@pytest.mark.asyncio
async def test_provider_failure_leaves_record_pending_without_payment_id(session_maker, fake_provider):
    fake_provider.fail_create = True
    async with session_maker() as db:
        with pytest.raises(ProviderUnavailable):
            await create_recharge(RECHARGE_USER_ID, db, amount=25, provider=fake_provider)

    async with session_maker() as db:
        history = await list_recharge_records(RECHARGE_USER_ID, db)
    assert history["pagination"]["total"] == 1
    assert history["data"][0]["status"] == "pending"
    assert history["data"][0]["payment_id"] is None


@pytest.mark.asyncio
async def test_complete_twice_credits_once(session_maker, fake_provider, balance_of):
    created = await _create(session_maker, fake_provider, amount=50)
    recharge_id = created["recharge_id"]

    async with session_maker() as db:
        first = await complete_recharge(recharge_id, db, external_payment_id="ch_1")
    async with session_maker() as db:
        second = await complete_recharge(recharge_id, db, external_payment_id="ch_1")

    assert first.outcome == CompletionOutcome.NEWLY_COMPLETED
    assert first.balance_after == Decimal("50.00")
    assert second.outcome == CompletionOutcome.ALREADY_COMPLETED
    assert (await balance_of(RECHARGE_USER_ID)).balance == Decimal("50.00")

    record = await _load(session_maker, recharge_id)
    assert record.status == "completed"
    assert record.completed_at is not None


@pytest.mark.asyncio
async def test_concurrent_completions_apply_exactly_once(session_maker, fake_provider, balance_of):
    created = await _create(session_maker, fake_provider, amount=40)
    recharge_id = created["recharge_id"]

    async def attempt():
        async with session_maker() as db:
            return await complete_recharge(recharge_id, db)

    results = await asyncio.gather(attempt(), attempt())

    outcomes = sorted(result.outcome.value for result in results)
    assert outcomes == ["already_completed", "newly_completed"]
    assert (await balance_of(RECHARGE_USER_ID)).balance == Decimal("40.00")


@pytest.mark.asyncio
async def test_complete_unknown_recharge_is_not_found(session_maker):
    async with session_maker() as db:
        with pytest.raises(NotFound):
            await complete_recharge("missing-recharge", db)


@pytest.mark.asyncio
async def test_closed_recharge_never_completes(session_maker, fake_provider, balance_of):
    created = await _create(session_maker, fake_provider, amount=30)
    recharge_id = created["recharge_id"]

    async with session_maker() as db:
        assert await fail_recharge(recharge_id, db, reason="checkout expired") is True
    async with session_maker() as db:
        assert await fail_recharge(recharge_id, db, reason="checkout expired") is False
    async with session_maker() as db:
        with pytest.raises(RechargeClosed) as exc_info:
            await complete_recharge(recharge_id, db)

    assert exc_info.value.status == "failed"
    record = await _load(session_maker, recharge_id)
    assert record.status == "failed"
    assert record.failure_reason == "checkout expired"
    assert (await balance_of(RECHARGE_USER_ID)).balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_credit_failure_rolls_back_completion(session_maker, fake_provider, balance_of, monkeypatch):
    created = await _create(session_maker, fake_provider, amount=20)
    recharge_id = created["recharge_id"]

    async def broken_credit(*args, **kwargs):
        raise SQLAlchemyError("simulated write failure")

    monkeypatch.setattr(ledger, "credit", broken_credit)
    async with session_maker() as db:
        with pytest.raises(RetryableBillingError):
            await complete_recharge(recharge_id, db)

    record = await _load(session_maker, recharge_id)
    assert record.status == "pending"
    assert (await balance_of(RECHARGE_USER_ID)).balance == Decimal("0.00")

    monkeypatch.undo()
    async with session_maker() as db:
        retried = await complete_recharge(recharge_id, db)
    assert retried.outcome == CompletionOutcome.NEWLY_COMPLETED
    assert (await balance_of(RECHARGE_USER_ID)).balance == Decimal("20.00")


@pytest.mark.asyncio
async def test_cancel_checks_ownership_and_state(session_maker, fake_provider):
    created = await _create(session_maker, fake_provider, amount=10)
    recharge_id = created["recharge_id"]

    async with session_maker() as db:
        with pytest.raises(Forbidden):
            await cancel_recharge("someone-else", recharge_id, db)
    async with session_maker() as db:
        cancelled = await cancel_recharge(RECHARGE_USER_ID, recharge_id, db)
    assert cancelled == {"recharge_id": recharge_id, "status": "cancelled"}

    async with session_maker() as db:
        with pytest.raises(RechargeClosed):
            await cancel_recharge(RECHARGE_USER_ID, recharge_id, db)


@pytest.mark.asyncio
async def test_recharge_history_is_caller_scoped(session_maker, fake_provider):
    await _create(session_maker, fake_provider, amount=10)
    await _create(session_maker, fake_provider, amount=20)
    await _create(session_maker, fake_provider, amount=30, user_id="other-user")

    async with session_maker() as db:
        history = await list_recharge_records(RECHARGE_USER_ID, db, page=1, limit=1)

    assert history["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
    assert len(history["data"]) == 1
    assert history["data"][0]["user_id"] == RECHARGE_USER_ID
