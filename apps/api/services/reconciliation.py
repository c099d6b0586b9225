"""Client-triggered reconciliation of a recharge against the payment provider."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models.recharge_record import RECHARGE_COMPLETED, RECHARGE_PENDING
from services.billing_errors import CheckoutMismatch, ProviderUnavailable
from services.payment_provider import CHECKOUT_COMPLETED, CHECKOUT_FAILED_STATUSES, PaymentProvider
from services.recharge import complete_recharge, fail_recharge, get_recharge, get_recharge_record

logger = logging.getLogger(__name__)


async def poll_recharge_status(
    user_id: str,
    recharge_id: str,
    db: AsyncSession,
    *,
    provider: Optional[PaymentProvider],
) -> Dict[str, Any]:
    """
    Return the recharge status, asking the provider when it is still pending.

    Provider failures propagate as ProviderUnavailable and leave the record
    pending; the next poll or webhook resolves it.
    """
    record = await get_recharge_record(user_id, recharge_id, db)
    if record.status == RECHARGE_COMPLETED:
        return {"recharge_id": recharge_id, "status": RECHARGE_COMPLETED, "provider_status": None}
    if record.status != RECHARGE_PENDING:
        return {"recharge_id": recharge_id, "status": record.status, "provider_status": None}
    if not record.payment_id:
        return {"recharge_id": recharge_id, "status": RECHARGE_PENDING, "provider_status": None}

    if provider is None:
        raise ProviderUnavailable("Payment provider is not configured.")

    payment_id = record.payment_id
    checkout = await provider.retrieve_checkout(payment_id)
    logger.info(
        "recharge_poll user=%s recharge=%s provider_status=%s", user_id, recharge_id, checkout.status
    )
    if checkout.request_id and checkout.request_id != recharge_id:
        logger.error(
            "recharge_poll_mismatch recharge=%s payment=%s checkout_request=%s",
            recharge_id,
            payment_id,
            checkout.request_id,
        )
        raise CheckoutMismatch("Provider checkout does not belong to this recharge.")

    if checkout.status == CHECKOUT_COMPLETED:
        result = await complete_recharge(recharge_id, db, external_payment_id=payment_id)
        return {
            "recharge_id": recharge_id,
            "status": RECHARGE_COMPLETED,
            "provider_status": checkout.status,
            "outcome": result.outcome.value,
        }

    if checkout.status in CHECKOUT_FAILED_STATUSES:
        await fail_recharge(recharge_id, db, reason=f"checkout {checkout.status}")
        current = await get_recharge(recharge_id, db)
        return {
            "recharge_id": recharge_id,
            "status": current.status if current else RECHARGE_PENDING,
            "provider_status": checkout.status,
        }

    return {"recharge_id": recharge_id, "status": RECHARGE_PENDING, "provider_status": checkout.status}
