"""Entitlement and consumption processing.

A paid grant, its debit, its consumption record, and the download counter all
commit together or not at all. The (user, artifact) grant row is inserted
with ON CONFLICT DO NOTHING; only the call that actually inserts it charges
and counts.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import insert_if_absent
from models.artifact import Artifact
from models.artifact_grant import ArtifactGrant
from models.consumption_record import ConsumptionRecord
from services import ledger
from services.billing_errors import InvalidRequest, RetryableBillingError
from services.catalog import ensure_purchasable, get_artifact, paid_price
from services.pagination import paginate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurchaseResult:
    artifact_id: str
    artifact_type: str
    download_url: Optional[str]
    is_paid: bool
    already_granted: bool
    consumption_id: Optional[str] = None
    new_balance: Optional[Decimal] = None


def serialize_consumption(record: ConsumptionRecord) -> Dict[str, Any]:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "amount": float(record.amount),
        "product_type": record.product_type,
        "product_id": record.product_id,
        "description": record.description,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


def purchase_idempotency_key(user_id: str, artifact_id: str) -> str:
    return f"purchase:{user_id}:{artifact_id}"


async def _append_consumption_record(
    db: AsyncSession,
    *,
    consumption_id: str,
    user_id: str,
    amount: Decimal,
    product_type: str,
    product_id: Optional[str],
    description: Optional[str],
) -> ConsumptionRecord:
    record = ConsumptionRecord(
        id=consumption_id,
        user_id=user_id,
        amount=amount,
        product_type=product_type,
        product_id=product_id,
        description=description or f"Consumption {amount}",
    )
    db.add(record)
    await db.flush()
    return record


async def _increment_download_count(artifact_id: str, db: AsyncSession) -> None:
    await db.execute(
        update(Artifact)
        .where(Artifact.id == artifact_id)
        .values(download_count=Artifact.download_count + 1)
        .execution_options(synchronize_session=False)
    )


async def _insert_grant(
    user_id: str,
    artifact: Artifact,
    db: AsyncSession,
    *,
    price_paid: Decimal,
) -> bool:
    await ledger.ensure_account(user_id, db)
    return await insert_if_absent(
        db,
        ArtifactGrant,
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "artifact_id": artifact.id,
            "artifact_type": artifact.artifact_type,
            "price_paid": price_paid,
        },
    )


async def has_grant(user_id: str, artifact_id: str, db: AsyncSession) -> bool:
    result = await db.execute(
        select(ArtifactGrant.id).where(
            ArtifactGrant.user_id == user_id,
            ArtifactGrant.artifact_id == artifact_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def _grant_paid(user_id: str, artifact: Artifact, price: Decimal, db: AsyncSession) -> PurchaseResult:
    artifact_id = artifact.id
    artifact_type = artifact.artifact_type
    download_url = artifact.file_url

    created = await _insert_grant(user_id, artifact, db, price_paid=price)
    if not created:
        balances = await ledger.get_balance(user_id, db)
        return PurchaseResult(
            artifact_id=artifact_id,
            artifact_type=artifact_type,
            download_url=download_url,
            is_paid=True,
            already_granted=True,
            new_balance=balances.balance,
        )

    consumption_id = str(uuid.uuid4())
    debited = await ledger.debit(
        user_id,
        db,
        amount=price,
        idempotency_key=purchase_idempotency_key(user_id, artifact_id),
        reference_type="consumption",
        reference_id=consumption_id,
    )
    await _append_consumption_record(
        db,
        consumption_id=consumption_id,
        user_id=user_id,
        amount=price,
        product_type=artifact_type,
        product_id=artifact_id,
        description=f"Download {artifact_type} {artifact.title}",
    )
    await db.execute(
        update(ArtifactGrant)
        .where(ArtifactGrant.user_id == user_id, ArtifactGrant.artifact_id == artifact_id)
        .values(consumption_id=consumption_id)
        .execution_options(synchronize_session=False)
    )
    await _increment_download_count(artifact_id, db)
    return PurchaseResult(
        artifact_id=artifact_id,
        artifact_type=artifact_type,
        download_url=download_url,
        is_paid=True,
        already_granted=False,
        consumption_id=consumption_id,
        new_balance=debited.balance_after,
    )


async def _grant_free(user_id: str, artifact: Artifact, db: AsyncSession) -> PurchaseResult:
    created = await _insert_grant(user_id, artifact, db, price_paid=ledger.ZERO)
    if created:
        await _increment_download_count(artifact.id, db)
    return PurchaseResult(
        artifact_id=artifact.id,
        artifact_type=artifact.artifact_type,
        download_url=artifact.file_url,
        is_paid=False,
        already_granted=not created,
    )


async def purchase_artifact(
    user_id: str,
    artifact_type: str,
    artifact_id: str,
    db: AsyncSession,
) -> PurchaseResult:
    """Grant download access, charging once for paid artifacts."""
    try:
        artifact = await get_artifact(artifact_type, artifact_id, db)
        ensure_purchasable(artifact)
        price = paid_price(artifact)
        if price is None:
            result = await _grant_free(user_id, artifact, db)
        else:
            result = await _grant_paid(user_id, artifact, price, db)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if result.already_granted:
        logger.info("artifact_regrant user=%s artifact=%s", user_id, artifact_id)
    else:
        logger.info(
            "artifact_granted user=%s artifact=%s paid=%s consumption=%s",
            user_id,
            artifact_id,
            result.is_paid,
            result.consumption_id,
        )
    return result


async def record_consumption(
    user_id: str,
    db: AsyncSession,
    *,
    amount: Any,
    product_type: str,
    product_id: Optional[str] = None,
    description: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> Dict[str, Any]:
    """Debit the balance and append a consumption record in one transaction."""
    value = ledger.normalize_amount(amount)
    product_type = (product_type or "").strip()
    if not product_type:
        raise InvalidRequest("product_type is required.")

    key = f"consumption:{user_id}:{idempotency_key or uuid.uuid4()}"
    consumption_id = str(uuid.uuid4())
    try:
        debited = await ledger.debit(
            user_id,
            db,
            amount=value,
            idempotency_key=key,
            reference_type="consumption",
            reference_id=consumption_id,
        )
        if debited.applied:
            await _append_consumption_record(
                db,
                consumption_id=consumption_id,
                user_id=user_id,
                amount=value,
                product_type=product_type,
                product_id=product_id,
                description=description,
            )
        await db.commit()
    except IntegrityError as exc:
        # Lost a race against the same idempotency key.
        await db.rollback()
        debited = await ledger.replay_operation(
            key, db, expected_operation="debit", expected_amount=value
        )
        if debited is None:
            raise RetryableBillingError("Consumption could not be recorded. Retry later.") from exc
    except Exception:
        await db.rollback()
        raise

    if debited.applied:
        logger.info(
            "consumption_recorded user=%s consumption=%s amount=%s product_type=%s",
            user_id,
            debited.reference_id,
            value,
            product_type,
        )
    return {
        "consumption_id": debited.reference_id,
        "new_balance": float(debited.balance_after),
        "replayed": not debited.applied,
    }


async def list_consumption(
    user_id: str,
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 10,
    product_type: Optional[str] = None,
) -> Dict[str, Any]:
    query = (
        select(ConsumptionRecord)
        .where(ConsumptionRecord.user_id == user_id)
        .order_by(ConsumptionRecord.created_at.desc(), ConsumptionRecord.id)
    )
    if product_type:
        query = query.where(ConsumptionRecord.product_type == product_type)
    return await paginate(db, query, page=page, limit=limit, serializer=serialize_consumption)
