"""Payment provider webhook ingestion.

Inbound JSON is parsed into a small tagged variant: a checkout completion
drives the recharge lifecycle, everything else is acknowledged and ignored.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services.billing_errors import (
    MalformedWebhook,
    NotFound,
    RechargeClosed,
    RetryableBillingError,
    WebhookSignatureInvalid,
)
from services.recharge import complete_recharge, get_recharge

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED_EVENT = "checkout.completed"
RECURRING_BILLING_TYPE = "recurring"
SIGNATURE_HEADER = "creem-signature"


class WebhookProduct(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    billing_type: Optional[str] = None


class WebhookObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    request_id: Optional[str] = None
    status: Optional[str] = None
    product: Optional[WebhookProduct] = None
    metadata: Optional[Dict[str, Any]] = None


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    event_type: str = Field(validation_alias=AliasChoices("event_type", "eventType"))
    object: WebhookObject


@dataclass(frozen=True)
class CheckoutCompletedEvent:
    request_id: str
    external_payment_id: str
    status: Optional[str]
    event_id: Optional[str] = None


@dataclass(frozen=True)
class IgnoredEvent:
    event_type: str
    reason: str
    event_id: Optional[str] = None


WebhookEvent = Union[CheckoutCompletedEvent, IgnoredEvent]


def verify_signature(raw_body: bytes, signature: Optional[str]) -> None:
    """Check the HMAC-SHA256 signature when a webhook secret is configured."""
    secret = (settings.PAYMENT_WEBHOOK_SECRET or "").strip()
    if not secret:
        if settings.PAYMENT_WEBHOOK_SIGNATURE_REQUIRED:
            logger.error("Webhook rejected: signature required but no secret configured")
            raise RetryableBillingError("Webhook verification is not configured.")
        return

    if not signature:
        logger.warning("Webhook rejected: missing signature header")
        raise WebhookSignatureInvalid("Missing webhook signature.")

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature.strip()):
        logger.warning("Webhook rejected: invalid signature")
        raise WebhookSignatureInvalid("Invalid webhook signature.")


def decode_webhook_body(raw_body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(raw_body or b"")
    except ValueError as exc:
        raise MalformedWebhook("Webhook body is not valid JSON.") from exc
    if not isinstance(payload, dict):
        raise MalformedWebhook("Webhook body must be a JSON object.")
    return payload


def parse_webhook_event(payload: Dict[str, Any]) -> WebhookEvent:
    try:
        envelope = WebhookEnvelope.model_validate(payload)
    except ValidationError as exc:
        raise MalformedWebhook("Webhook payload does not match the expected event shape.") from exc

    event_type = envelope.event_type.strip()
    billing_type = (envelope.object.product.billing_type if envelope.object.product else None) or ""
    if billing_type.strip().lower() == RECURRING_BILLING_TYPE:
        return IgnoredEvent(event_type=event_type, reason="recurring billing", event_id=envelope.id)
    if event_type != CHECKOUT_COMPLETED_EVENT:
        return IgnoredEvent(event_type=event_type, reason="unhandled event type", event_id=envelope.id)

    status = (envelope.object.status or "").strip().lower() or None
    if status is not None and status != "completed":
        return IgnoredEvent(event_type=event_type, reason=f"checkout status {status}", event_id=envelope.id)

    request_id = (envelope.object.request_id or "").strip()
    if not request_id:
        raise MalformedWebhook("checkout.completed event is missing object.request_id.")

    return CheckoutCompletedEvent(
        request_id=request_id,
        external_payment_id=envelope.object.id,
        status=status,
        event_id=envelope.id,
    )


async def handle_webhook_event(event: WebhookEvent, db: AsyncSession) -> Dict[str, Any]:
    """
    Apply one parsed event. The returned acknowledgement is only produced
    after the completion committed or was recognised as already applied.
    """
    if isinstance(event, IgnoredEvent):
        logger.info("webhook_ignored event_type=%s reason=%s", event.event_type, event.reason)
        return {"received": True, "outcome": "ignored", "reason": event.reason}

    record = await get_recharge(event.request_id, db)
    if record is None:
        logger.error(
            "Webhook references unknown recharge request_id=%s payment=%s",
            event.request_id,
            event.external_payment_id,
        )
        raise NotFound("Recharge record not found for webhook request_id.")

    try:
        result = await complete_recharge(
            event.request_id, db, external_payment_id=event.external_payment_id
        )
    except RechargeClosed as exc:
        logger.error(
            "Paid checkout %s arrived for closed recharge %s (status=%s); manual review needed",
            event.external_payment_id,
            exc.recharge_id,
            exc.status,
        )
        return {"received": True, "outcome": "closed", "status": exc.status}

    logger.info(
        "webhook_checkout_completed recharge=%s payment=%s outcome=%s",
        event.request_id,
        event.external_payment_id,
        result.outcome.value,
    )
    return {"received": True, "outcome": result.outcome.value}
