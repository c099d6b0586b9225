"""Recharge lifecycle: pending -> completed | failed | cancelled.

Webhook delivery and client polling both end in complete_recharge(). The
conditional ``status = 'pending'`` update decides which caller wins; the loser
sees ALREADY_COMPLETED and applies nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.recharge_record import (
    RECHARGE_CANCELLED,
    RECHARGE_COMPLETED,
    RECHARGE_FAILED,
    RECHARGE_PENDING,
    RechargeRecord,
)
from services import ledger
from services.billing_errors import (
    BillingError,
    Forbidden,
    InvalidAmount,
    NotFound,
    ProviderUnavailable,
    RechargeClosed,
    RetryableBillingError,
)
from services.pagination import paginate
from services.payment_provider import PaymentProvider

logger = logging.getLogger(__name__)


class CompletionOutcome(str, Enum):
    NEWLY_COMPLETED = "newly_completed"
    ALREADY_COMPLETED = "already_completed"


@dataclass(frozen=True)
class CompletionResult:
    outcome: CompletionOutcome
    recharge_id: str
    user_id: str
    balance_after: Optional[Decimal] = None


def recharge_idempotency_key(recharge_id: str) -> str:
    return f"recharge:{recharge_id}"


def serialize_recharge(record: RechargeRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "amount": float(record.amount),
        "status": record.status,
        "payment_id": record.payment_id,
        "payment_method": record.payment_method,
        "description": record.description,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
    }


async def get_recharge(recharge_id: str, db: AsyncSession) -> Optional[RechargeRecord]:
    # Status changes go through Core UPDATEs, so always refresh identity-map copies.
    result = await db.execute(
        select(RechargeRecord)
        .where(RechargeRecord.id == recharge_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_recharge_record(user_id: str, recharge_id: str, db: AsyncSession) -> RechargeRecord:
    """Load a record for its owner; another user's record is Forbidden, not NotFound."""
    record = await get_recharge(recharge_id, db)
    if record is None:
        raise NotFound("Recharge record not found.")
    if record.user_id != user_id:
        raise Forbidden("You do not have access to this recharge record.")
    return record


def _recharge_amount(amount: Any) -> Decimal:
    value = ledger.normalize_amount(amount)
    if value != value.to_integral_value():
        raise InvalidAmount("Recharge amount must be a whole number.")
    if value > Decimal(int(settings.RECHARGE_MAX_AMOUNT)):
        raise InvalidAmount(f"Recharge amount cannot exceed {int(settings.RECHARGE_MAX_AMOUNT)}.")
    return value


async def create_recharge(
    user_id: str,
    db: AsyncSession,
    *,
    amount: Any,
    provider: PaymentProvider,
) -> Dict[str, Any]:
    """Persist a pending record, then open a provider checkout tagged with its id."""
    value = _recharge_amount(amount)
    await ledger.ensure_account(user_id, db)
    record = RechargeRecord(
        user_id=user_id,
        amount=value,
        status=RECHARGE_PENDING,
        payment_method=provider.name,
        description=f"Recharge {value}",
    )
    db.add(record)
    await db.commit()
    recharge_id = record.id
    logger.info("recharge_created user=%s recharge=%s amount=%s", user_id, recharge_id, value)

    app_url = settings.APP_URL.rstrip("/")
    try:
        checkout = await provider.create_checkout(
            request_id=recharge_id,
            units=int(value),
            success_url=f"{app_url}/billing/success?rechargeId={recharge_id}",
            metadata={
                "userId": user_id,
                "rechargeId": recharge_id,
                "amount": str(value),
                "type": "recharge",
            },
        )
    except ProviderUnavailable:
        logger.warning("Checkout creation failed for recharge %s; record left pending", recharge_id)
        raise

    # A webhook may already have recorded the provider id.
    await db.execute(
        update(RechargeRecord)
        .where(RechargeRecord.id == recharge_id, RechargeRecord.payment_id.is_(None))
        .values(payment_id=checkout.id, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return {
        "recharge_id": recharge_id,
        "checkout_url": checkout.checkout_url,
        "status": RECHARGE_PENDING,
        "amount": float(value),
    }


async def complete_recharge(
    recharge_id: str,
    db: AsyncSession,
    *,
    external_payment_id: Optional[str] = None,
) -> CompletionResult:
    """
    Flip pending -> completed and credit the ledger in one transaction.

    A failed credit rolls the flip back, so the record stays pending and the
    next webhook redelivery or poll can finish it.
    """
    try:
        record = await get_recharge(recharge_id, db)
        if record is None:
            raise NotFound("Recharge record not found.")
        user_id = record.user_id
        amount = record.amount

        changes: Dict[str, Any] = {
            "status": RECHARGE_COMPLETED,
            "completed_at": func.now(),
            "updated_at": func.now(),
        }
        if external_payment_id:
            changes["payment_id"] = external_payment_id
        result = await db.execute(
            update(RechargeRecord)
            .where(RechargeRecord.id == recharge_id, RechargeRecord.status == RECHARGE_PENDING)
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            current = await get_recharge(recharge_id, db)
            status = current.status if current is not None else None
            if status == RECHARGE_COMPLETED:
                logger.info("recharge_already_completed recharge=%s", recharge_id)
                return CompletionResult(
                    outcome=CompletionOutcome.ALREADY_COMPLETED,
                    recharge_id=recharge_id,
                    user_id=user_id,
                )
            logger.warning(
                "Completion attempted on closed recharge %s (status=%s)", recharge_id, status
            )
            raise RechargeClosed(recharge_id, status or "missing")

        credited = await ledger.credit(
            user_id,
            db,
            amount=amount,
            idempotency_key=recharge_idempotency_key(recharge_id),
            reference_type="recharge",
            reference_id=recharge_id,
        )
        await db.commit()
    except BillingError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Recharge %s completion failed; record left pending", recharge_id)
        raise RetryableBillingError("Recharge completion could not be saved. Retry later.") from exc
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "recharge_completed user=%s recharge=%s amount=%s balance_after=%s",
        user_id,
        recharge_id,
        amount,
        credited.balance_after,
    )
    return CompletionResult(
        outcome=CompletionOutcome.NEWLY_COMPLETED,
        recharge_id=recharge_id,
        user_id=user_id,
        balance_after=credited.balance_after,
    )


async def _close_pending(recharge_id: str, db: AsyncSession, *, status: str, reason: Optional[str]) -> bool:
    result = await db.execute(
        update(RechargeRecord)
        .where(RechargeRecord.id == recharge_id, RechargeRecord.status == RECHARGE_PENDING)
        .values(status=status, failure_reason=reason, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def fail_recharge(recharge_id: str, db: AsyncSession, *, reason: str) -> bool:
    """Move a pending record to failed. Returns False if it had already left pending."""
    changed = await _close_pending(recharge_id, db, status=RECHARGE_FAILED, reason=reason)
    if changed:
        logger.info("recharge_failed recharge=%s reason=%s", recharge_id, reason)
    return changed


async def cancel_recharge(user_id: str, recharge_id: str, db: AsyncSession) -> Dict[str, Any]:
    await get_recharge_record(user_id, recharge_id, db)
    changed = await _close_pending(recharge_id, db, status=RECHARGE_CANCELLED, reason="cancelled by user")
    if not changed:
        current = await get_recharge(recharge_id, db)
        raise RechargeClosed(recharge_id, current.status if current else "missing")
    logger.info("recharge_cancelled user=%s recharge=%s", user_id, recharge_id)
    return {"recharge_id": recharge_id, "status": RECHARGE_CANCELLED}


async def list_recharge_records(
    user_id: str,
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    query = (
        select(RechargeRecord)
        .where(RechargeRecord.user_id == user_id)
        .order_by(RechargeRecord.created_at.desc(), RechargeRecord.id)
    )
    if status:
        query = query.where(RechargeRecord.status == status)
    return await paginate(db, query, page=page, limit=limit, serializer=serialize_recharge)
