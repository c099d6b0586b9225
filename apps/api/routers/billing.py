"""Billing router: balance, consumption, recharge, webhook, withdrawals."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.billing_summary import get_billing_summary
from services.entitlements import list_consumption, record_consumption
from services.ledger import ensure_account, get_balance
from services.payment_provider import (
    PaymentProvider,
    get_optional_payment_provider,
    get_payment_provider,
)
from services.reconciliation import poll_recharge_status
from services.recharge import (
    cancel_recharge,
    create_recharge,
    get_recharge_record,
    list_recharge_records,
    serialize_recharge,
)
from services.webhooks import (
    SIGNATURE_HEADER,
    decode_webhook_body,
    handle_webhook_event,
    parse_webhook_event,
    verify_signature,
)
from services.withdrawals import list_withdrawals, request_withdrawal

router = APIRouter()
logger = logging.getLogger(__name__)


class ConsumptionRequest(BaseModel):
    amount: Decimal
    product_type: str = Field(min_length=1, max_length=64)
    product_id: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=500)


class RechargeRequest(BaseModel):
    amount: Decimal


class RechargeCancelRequest(BaseModel):
    recharge_id: str = Field(min_length=1)


class WithdrawalRequest(BaseModel):
    amount: Decimal
    withdrawal_method: str = Field(min_length=1, max_length=64)
    withdrawal_address: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)


@router.get("/balance")
async def balance(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    balances = await get_balance(scoped_user_id, db)
    return {
        "user_id": scoped_user_id,
        "balance": float(balances.balance),
        "frozen_balance": float(balances.frozen_balance),
    }


@router.post("/consumption")
async def create_consumption(
    request: ConsumptionRequest,
    idempotency_key: Optional[str] = Header(default=None),
    _rate_limit: None = Depends(rate_limit("billing_consumption", limit=600, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await record_consumption(
        auth.user_id,
        db,
        amount=request.amount,
        product_type=request.product_type,
        product_id=request.product_id,
        description=request.description,
        idempotency_key=idempotency_key,
    )


@router.get("/consumption")
async def consumption_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    product_type: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_consumption(auth.user_id, db, page=page, limit=limit, product_type=product_type)


@router.post("/recharge")
async def start_recharge(
    request: RechargeRequest,
    _rate_limit: None = Depends(rate_limit("billing_recharge", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
):
    return await create_recharge(auth.user_id, db, amount=request.amount, provider=provider)


@router.get("/recharge")
async def recharge_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    status: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_recharge_records(auth.user_id, db, page=page, limit=limit, status=status)


@router.get("/recharge/record")
async def recharge_record(
    recharge_id: str = Query(min_length=1),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    record = await get_recharge_record(auth.user_id, recharge_id, db)
    return serialize_recharge(record)


@router.get("/recharge/status")
async def recharge_status(
    recharge_id: str = Query(min_length=1),
    _rate_limit: None = Depends(rate_limit("billing_recharge_status", limit=120, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    provider: Optional[PaymentProvider] = Depends(get_optional_payment_provider),
):
    return await poll_recharge_status(auth.user_id, recharge_id, db, provider=provider)


@router.post("/recharge/cancel")
async def recharge_cancel(
    request: RechargeCancelRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await cancel_recharge(auth.user_id, request.recharge_id, db)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Provider callback. Authenticated by signature, not by session token."""
    raw_body = await request.body()
    verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER))
    event = parse_webhook_event(decode_webhook_body(raw_body))
    return await handle_webhook_event(event, db)


@router.post("/withdrawal")
async def create_withdrawal(
    request: WithdrawalRequest,
    _rate_limit: None = Depends(rate_limit("billing_withdrawal", limit=10, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await request_withdrawal(
        auth.user_id,
        db,
        amount=request.amount,
        withdrawal_method=request.withdrawal_method,
        withdrawal_address=request.withdrawal_address,
        description=request.description,
    )


@router.get("/withdrawal")
async def withdrawal_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    status: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await list_withdrawals(auth.user_id, db, page=page, limit=limit, status=status)


@router.get("/summary")
async def billing_summary(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_account(scoped_user_id, db)
    await db.commit()
    return await get_billing_summary(scoped_user_id, db)
