from decimal import Decimal

import pytest

from services.billing_errors import InsufficientFunds, InvalidRequest
from services.session_token import create_session_token
from services.withdrawals import list_withdrawals, request_withdrawal


WITHDRAW_USER_ID = "withdraw-user"
WITHDRAW_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(WITHDRAW_USER_ID)['token']}"}


@pytest.mark.asyncio
async def test_withdrawal_freezes_requested_amount(session_maker, seed_balance, balance_of):
    await seed_balance(WITHDRAW_USER_ID, 80)

    async with session_maker() as db:
        result = await request_withdrawal(
            WITHDRAW_USER_ID,
            db,
            amount=30,
            withdrawal_method="bank_transfer",
            withdrawal_address="NL00BANK0123456789",
        )

    assert result["status"] == "pending"
    assert result["balance"] == 50.0
    assert result["frozen_balance"] == 30.0
    balances = await balance_of(WITHDRAW_USER_ID)
    assert balances.balance == Decimal("50.00")
    assert balances.frozen_balance == Decimal("30.00")

    async with session_maker() as db:
        history = await list_withdrawals(WITHDRAW_USER_ID, db, status="pending")
    assert history["pagination"]["total"] == 1
    assert history["data"][0]["withdrawal_method"] == "bank_transfer"


@pytest.mark.asyncio
async def test_withdrawal_beyond_balance_leaves_no_record(session_maker, seed_balance, balance_of):
    await seed_balance(WITHDRAW_USER_ID, 10)

    async with session_maker() as db:
        with pytest.raises(InsufficientFunds):
            await request_withdrawal(
                WITHDRAW_USER_ID,
                db,
                amount=11,
                withdrawal_method="bank_transfer",
                withdrawal_address="NL00BANK0123456789",
            )
    async with session_maker() as db:
        history = await list_withdrawals(WITHDRAW_USER_ID, db)

    assert history["pagination"]["total"] == 0
    balances = await balance_of(WITHDRAW_USER_ID)
    assert balances.balance == Decimal("10.00")
    assert balances.frozen_balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_withdrawal_requires_destination(session_maker, seed_balance):
    await seed_balance(WITHDRAW_USER_ID, 10)

    async with session_maker() as db:
        with pytest.raises(InvalidRequest):
            await request_withdrawal(
                WITHDRAW_USER_ID, db, amount=5, withdrawal_method="  ", withdrawal_address="addr"
            )


@pytest.mark.asyncio
async def test_summary_combines_balances_and_recent_records(api_client, seed_balance):
    await seed_balance(WITHDRAW_USER_ID, 100)

    consumed = await api_client.post(
        "/billing/consumption",
        json={"amount": 10, "product_type": "inference"},
        headers=WITHDRAW_AUTH_HEADER,
    )
    assert consumed.status_code == 200
    withdrawn = await api_client.post(
        "/billing/withdrawal",
        json={"amount": 40, "withdrawal_method": "paypal", "withdrawal_address": "payee@example.com"},
        headers=WITHDRAW_AUTH_HEADER,
    )
    assert withdrawn.status_code == 200
    recharge = await api_client.post("/billing/recharge", json={"amount": 5}, headers=WITHDRAW_AUTH_HEADER)
    assert recharge.status_code == 200

    summary = await api_client.get("/billing/summary", headers=WITHDRAW_AUTH_HEADER)

    assert summary.status_code == 200
    payload = summary.json()
    assert payload["balance"] == 50.0
    assert payload["frozen_balance"] == 40.0
    assert len(payload["consumption_records"]) == 1
    assert len(payload["withdrawal_records"]) == 1
    assert payload["recharge_records"][0]["status"] == "pending"

    listed = await api_client.get("/billing/withdrawal", headers=WITHDRAW_AUTH_HEADER)
    assert listed.json()["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_summary_for_new_user_is_empty(api_client):
    fresh = {"Authorization": f"Bearer {create_session_token('fresh-user')['token']}"}

    summary = await api_client.get("/billing/summary", headers=fresh)

    assert summary.status_code == 200
    assert summary.json()["balance"] == 0.0
    assert summary.json()["recharge_records"] == []
