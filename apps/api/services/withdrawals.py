"""Withdrawal requests: the requested amount moves into the frozen balance."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.withdrawal_record import WithdrawalRecord
from services import ledger
from services.billing_errors import InvalidRequest
from services.pagination import paginate

logger = logging.getLogger(__name__)

WITHDRAWAL_PENDING = "pending"


def serialize_withdrawal(record: WithdrawalRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "amount": float(record.amount),
        "withdrawal_method": record.withdrawal_method,
        "withdrawal_address": record.withdrawal_address,
        "status": record.status,
        "description": record.description,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


async def request_withdrawal(
    user_id: str,
    db: AsyncSession,
    *,
    amount: Any,
    withdrawal_method: str,
    withdrawal_address: str,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    value = ledger.normalize_amount(amount)
    method = (withdrawal_method or "").strip()
    address = (withdrawal_address or "").strip()
    if not method or not address:
        raise InvalidRequest("withdrawal_method and withdrawal_address are required.")

    withdrawal_id = str(uuid.uuid4())
    try:
        frozen = await ledger.freeze(
            user_id,
            db,
            amount=value,
            idempotency_key=f"withdrawal:{withdrawal_id}",
            reference_type="withdrawal",
            reference_id=withdrawal_id,
        )
        db.add(
            WithdrawalRecord(
                id=withdrawal_id,
                user_id=user_id,
                amount=value,
                withdrawal_method=method,
                withdrawal_address=address,
                status=WITHDRAWAL_PENDING,
                description=description or f"Withdrawal {value}",
            )
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    balances = await ledger.get_balance(user_id, db)
    logger.info(
        "withdrawal_requested user=%s withdrawal=%s amount=%s frozen_balance=%s",
        user_id,
        withdrawal_id,
        value,
        balances.frozen_balance,
    )
    return {
        "withdrawal_id": withdrawal_id,
        "status": WITHDRAWAL_PENDING,
        "amount": float(value),
        "balance": float(frozen.balance_after),
        "frozen_balance": float(balances.frozen_balance),
    }


async def list_withdrawals(
    user_id: str,
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    query = (
        select(WithdrawalRecord)
        .where(WithdrawalRecord.user_id == user_id)
        .order_by(WithdrawalRecord.created_at.desc(), WithdrawalRecord.id)
    )
    if status:
        query = query.where(WithdrawalRecord.status == status)
    return await paginate(db, query, page=page, limit=limit, serializer=serialize_withdrawal)
