import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from services import ledger
from services.billing_errors import MalformedWebhook
from services.recharge import cancel_recharge, create_recharge, get_recharge
from services.webhooks import CheckoutCompletedEvent, IgnoredEvent, parse_webhook_event


WEBHOOK_USER_ID = "webhook-user"


def _completed_payload(request_id: str, checkout_id: str = "ch_1", event_type: str = "checkout.completed"):
    return {
        "id": "evt_1",
        "eventType": event_type,
        "object": {
            "id": checkout_id,
            "request_id": request_id,
            "status": "completed",
            "product": {"id": "credits_recharge", "billing_type": "onetime"},
            "metadata": {"userId": WEBHOOK_USER_ID, "type": "recharge"},
        },
    }


async def _pending_recharge(session_maker, fake_provider, amount=50) -> str:
    async with session_maker() as db:
        created = await create_recharge(WEBHOOK_USER_ID, db, amount=amount, provider=fake_provider)
    return created["recharge_id"]


async def _post(api_client, payload, headers=None):
    return await api_client.post(
        "/billing/webhook",
        content=json.dumps(payload).encode("utf-8"),
        headers={"content-type": "application/json", **(headers or {})},
    )


def test_parse_ignores_recurring_and_other_events():
    recurring = _completed_payload("r-1")
    recurring["object"]["product"]["billing_type"] = "recurring"
    assert isinstance(parse_webhook_event(recurring), IgnoredEvent)

    other = _completed_payload("r-1", event_type="subscription.paid")
    assert isinstance(parse_webhook_event(other), IgnoredEvent)

    parsed = parse_webhook_event(_completed_payload("r-1"))
    assert parsed == CheckoutCompletedEvent(
        request_id="r-1", external_payment_id="ch_1", status="completed", event_id="evt_1"
    )


def test_parse_rejects_completion_without_request_id():
    payload = _completed_payload("")
    with pytest.raises(MalformedWebhook):
        parse_webhook_event(payload)
    with pytest.raises(MalformedWebhook):
        parse_webhook_event({"eventType": "checkout.completed"})


@pytest.mark.asyncio
async def test_duplicate_delivery_credits_once(api_client, session_maker, fake_provider, balance_of):
    recharge_id = await _pending_recharge(session_maker, fake_provider, amount=50)

    first = await _post(api_client, _completed_payload(recharge_id))
    second = await _post(api_client, _completed_payload(recharge_id))

    assert first.status_code == 200
    assert first.json() == {"received": True, "outcome": "newly_completed"}
    assert second.status_code == 200
    assert second.json() == {"received": True, "outcome": "already_completed"}
    assert (await balance_of(WEBHOOK_USER_ID)).balance == Decimal("50.00")


@pytest.mark.asyncio
async def test_ignored_event_is_acknowledged_without_effect(api_client, session_maker, fake_provider, balance_of):
    recharge_id = await _pending_recharge(session_maker, fake_provider)

    response = await _post(api_client, _completed_payload(recharge_id, event_type="refund.created"))

    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"
    async with session_maker() as db:
        record = await get_recharge(recharge_id, db)
    assert record.status == "pending"
    assert (await balance_of(WEBHOOK_USER_ID)).balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_unknown_request_id_is_not_acknowledged(api_client):
    response = await _post(api_client, _completed_payload("does-not-exist"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_malformed_body_is_rejected(api_client):
    response = await api_client.post(
        "/billing/webhook",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400

    missing = await _post(api_client, _completed_payload(""))
    assert missing.status_code == 400


@pytest.mark.asyncio
async def test_paid_checkout_for_cancelled_recharge_is_acked_as_closed(
    api_client, session_maker, fake_provider, balance_of
):
    recharge_id = await _pending_recharge(session_maker, fake_provider)
    async with session_maker() as db:
        await cancel_recharge(WEBHOOK_USER_ID, recharge_id, db)

    response = await _post(api_client, _completed_payload(recharge_id))

    assert response.status_code == 200
    assert response.json() == {"received": True, "outcome": "closed", "status": "cancelled"}
    assert (await balance_of(WEBHOOK_USER_ID)).balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_persistence_failure_returns_retryable_error(
    api_client, session_maker, fake_provider, balance_of, monkeypatch
):
    recharge_id = await _pending_recharge(session_maker, fake_provider, amount=15)

    async def broken_credit(*args, **kwargs):
        raise SQLAlchemyError("simulated write failure")

    monkeypatch.setattr(ledger, "credit", broken_credit)
    failed = await _post(api_client, _completed_payload(recharge_id))
    assert failed.status_code == 503
    assert failed.headers.get("retry-after")

    monkeypatch.undo()
    redelivered = await _post(api_client, _completed_payload(recharge_id))
    assert redelivered.status_code == 200
    assert redelivered.json()["outcome"] == "newly_completed"
    assert (await balance_of(WEBHOOK_USER_ID)).balance == Decimal("15.00")


@pytest.mark.asyncio
async def test_signature_is_verified_when_secret_is_configured(
    api_client, session_maker, fake_provider, monkeypatch
):
    secret = "whsec_test_secret"
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", secret)
    recharge_id = await _pending_recharge(session_maker, fake_provider)
    body = json.dumps(_completed_payload(recharge_id)).encode("utf-8")

    missing = await api_client.post("/billing/webhook", content=body)
    assert missing.status_code == 401

    forged = await api_client.post("/billing/webhook", content=body, headers={"creem-signature": "00" * 32})
    assert forged.status_code == 401

    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    accepted = await api_client.post("/billing/webhook", content=body, headers={"creem-signature": signature})
    assert accepted.status_code == 200
    assert accepted.json()["outcome"] == "newly_completed"
