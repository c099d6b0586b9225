"""Ledger store: the only code path that mutates account balances.

Every mutation is a single conditional UPDATE against the account row plus a
journal row keyed by an idempotency key. Functions flush but never commit, so
callers can put a ledger mutation and their own audit rows in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import insert_if_absent
from models.account import Account
from models.ledger_operation import LedgerOperation
from models.user import User
from services.billing_errors import IdempotencyConflict, InsufficientFunds, InvalidAmount

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Largest value a Numeric(12, 2) column holds.
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class AccountBalance:
    balance: Decimal
    frozen_balance: Decimal


@dataclass(frozen=True)
class LedgerResult:
    balance_after: Decimal
    applied: bool
    operation_id: Optional[str] = None
    reference_id: Optional[str] = None


def to_money(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
        if not amount.is_finite():
            raise InvalidAmount("Amount must be a number.")
        if abs(amount) <= MAX_AMOUNT:
            amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount("Amount must be a number.") from exc
    if abs(amount) > MAX_AMOUNT:
        raise InvalidAmount(f"Amount cannot exceed {MAX_AMOUNT}.")
    return amount


def normalize_amount(value: Any) -> Decimal:
    """Quantize to cents and reject non-positive amounts."""
    amount = to_money(value)
    if amount <= ZERO:
        raise InvalidAmount("Amount must be greater than 0.")
    return amount


async def ensure_account(user_id: str, db: AsyncSession) -> None:
    """Create the user and account rows if they do not exist yet."""
    await insert_if_absent(db, User, {"id": user_id, "email": f"{user_id}@local.invalid"})
    await insert_if_absent(
        db,
        Account,
        {"user_id": user_id, "balance": ZERO, "frozen_balance": ZERO},
    )


async def get_balance(user_id: str, db: AsyncSession) -> AccountBalance:
    result = await db.execute(
        select(Account.balance, Account.frozen_balance).where(Account.user_id == user_id)
    )
    row = result.first()
    if row is None:
        return AccountBalance(balance=ZERO, frozen_balance=ZERO)
    return AccountBalance(balance=to_money(row[0] or 0), frozen_balance=to_money(row[1] or 0))


async def find_operation(idempotency_key: str, db: AsyncSession) -> Optional[LedgerOperation]:
    result = await db.execute(
        select(LedgerOperation).where(LedgerOperation.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


async def replay_operation(
    idempotency_key: str,
    db: AsyncSession,
    *,
    expected_operation: Optional[str] = None,
    expected_amount: Optional[Decimal] = None,
) -> Optional[LedgerResult]:
    """Return the stored outcome of an already-applied operation, if any.

    A key reused for another operation kind or amount raises IdempotencyConflict.
    """
    operation = await find_operation(idempotency_key, db)
    if operation is None:
        return None
    if (expected_operation is not None and operation.operation != expected_operation) or (
        expected_amount is not None and to_money(operation.amount) != expected_amount
    ):
        logger.warning(
            "ledger_key_conflict key=%s user=%s stored=%s/%s requested=%s/%s",
            idempotency_key,
            operation.user_id,
            operation.operation,
            operation.amount,
            expected_operation,
            expected_amount,
        )
        raise IdempotencyConflict(idempotency_key)
    logger.info(
        "ledger_replay key=%s user=%s operation=%s", idempotency_key, operation.user_id, operation.operation
    )
    return LedgerResult(
        balance_after=to_money(operation.balance_after),
        applied=False,
        operation_id=operation.id,
        reference_id=operation.reference_id,
    )


async def _journal(
    db: AsyncSession,
    *,
    user_id: str,
    operation: str,
    amount: Decimal,
    idempotency_key: str,
    reference_type: Optional[str],
    reference_id: Optional[str],
) -> LedgerResult:
    balances = await get_balance(user_id, db)
    entry = LedgerOperation(
        idempotency_key=idempotency_key,
        user_id=user_id,
        operation=operation,
        amount=amount,
        balance_after=balances.balance,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    db.add(entry)
    # A concurrent first-time caller with the same key fails here on the
    # unique constraint and must roll back.
    await db.flush()
    logger.info(
        "ledger_%s user=%s amount=%s balance_after=%s key=%s",
        operation,
        user_id,
        amount,
        balances.balance,
        idempotency_key,
    )
    return LedgerResult(
        balance_after=balances.balance,
        applied=True,
        operation_id=entry.id,
        reference_id=reference_id,
    )


async def credit(
    user_id: str,
    db: AsyncSession,
    *,
    amount: Any,
    idempotency_key: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> LedgerResult:
    delta = normalize_amount(amount)
    replay = await replay_operation(
        idempotency_key, db, expected_operation="credit", expected_amount=delta
    )
    if replay is not None:
        return replay

    await ensure_account(user_id, db)
    await db.execute(
        update(Account)
        .where(Account.user_id == user_id)
        .values(balance=Account.balance + delta, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return await _journal(
        db,
        user_id=user_id,
        operation="credit",
        amount=delta,
        idempotency_key=idempotency_key,
        reference_type=reference_type,
        reference_id=reference_id,
    )


async def debit(
    user_id: str,
    db: AsyncSession,
    *,
    amount: Any,
    idempotency_key: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> LedgerResult:
    """Check-and-subtract in one statement; raises InsufficientFunds on zero affected rows."""
    delta = normalize_amount(amount)
    replay = await replay_operation(
        idempotency_key, db, expected_operation="debit", expected_amount=delta
    )
    if replay is not None:
        return replay

    result = await db.execute(
        update(Account)
        .where(Account.user_id == user_id, Account.balance >= delta)
        .values(balance=Account.balance - delta, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = (await get_balance(user_id, db)).balance
        logger.warning(
            "Insufficient balance: user=%s requested=%s available=%s", user_id, delta, available
        )
        raise InsufficientFunds(user_id, delta, available)

    return await _journal(
        db,
        user_id=user_id,
        operation="debit",
        amount=delta,
        idempotency_key=idempotency_key,
        reference_type=reference_type,
        reference_id=reference_id,
    )


async def freeze(
    user_id: str,
    db: AsyncSession,
    *,
    amount: Any,
    idempotency_key: str,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> LedgerResult:
    """Move funds from balance into frozen_balance."""
    delta = normalize_amount(amount)
    replay = await replay_operation(
        idempotency_key, db, expected_operation="freeze", expected_amount=delta
    )
    if replay is not None:
        return replay

    result = await db.execute(
        update(Account)
        .where(Account.user_id == user_id, Account.balance >= delta)
        .values(
            balance=Account.balance - delta,
            frozen_balance=Account.frozen_balance + delta,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = (await get_balance(user_id, db)).balance
        logger.warning(
            "Insufficient balance to freeze: user=%s requested=%s available=%s", user_id, delta, available
        )
        raise InsufficientFunds(user_id, delta, available)

    return await _journal(
        db,
        user_id=user_id,
        operation="freeze",
        amount=delta,
        idempotency_key=idempotency_key,
        reference_type=reference_type,
        reference_id=reference_id,
    )
