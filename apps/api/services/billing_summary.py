"""Caller-scoped billing overview."""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.consumption_record import ConsumptionRecord
from models.recharge_record import RechargeRecord
from models.withdrawal_record import WithdrawalRecord
from services.entitlements import serialize_consumption
from services.ledger import get_balance
from services.recharge import serialize_recharge
from services.withdrawals import serialize_withdrawal

RECENT_RECORD_LIMIT = 20


async def _recent(db: AsyncSession, model, user_id: str):
    result = await db.execute(
        select(model)
        .where(model.user_id == user_id)
        .order_by(model.created_at.desc(), model.id)
        .limit(RECENT_RECORD_LIMIT)
    )
    return result.scalars().all()


async def get_billing_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    balances = await get_balance(user_id, db)
    recharges = await _recent(db, RechargeRecord, user_id)
    consumption = await _recent(db, ConsumptionRecord, user_id)
    withdrawals = await _recent(db, WithdrawalRecord, user_id)
    return {
        "balance": float(balances.balance),
        "frozen_balance": float(balances.frozen_balance),
        "recharge_records": [serialize_recharge(row) for row in recharges],
        "consumption_records": [serialize_consumption(row) for row in consumption],
        "withdrawal_records": [serialize_withdrawal(row) for row in withdrawals],
    }
