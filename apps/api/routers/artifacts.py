"""Model and dataset download entitlement endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.entitlements import PurchaseResult, purchase_artifact

router = APIRouter()


def _download_payload(result: PurchaseResult) -> dict:
    return {
        "artifact_id": result.artifact_id,
        "artifact_type": result.artifact_type,
        "download_url": result.download_url,
        "is_paid": result.is_paid,
        "already_granted": result.already_granted,
        "consumption_id": result.consumption_id,
        "new_balance": float(result.new_balance) if result.new_balance is not None else None,
    }


@router.post("/models/{artifact_id}/download")
async def download_model(
    artifact_id: str,
    _rate_limit: None = Depends(rate_limit("artifact_download", limit=120, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await purchase_artifact(auth.user_id, "model", artifact_id, db)
    return _download_payload(result)


@router.post("/datasets/{artifact_id}/download")
async def download_dataset(
    artifact_id: str,
    _rate_limit: None = Depends(rate_limit("artifact_download", limit=120, window_seconds=60)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    result = await purchase_artifact(auth.user_id, "dataset", artifact_id, db)
    return _download_payload(result)
