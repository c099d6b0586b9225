"""Content catalog lookups used when granting downloads."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.artifact import ARTIFACT_TYPES, Artifact
from services.billing_errors import ArtifactUnavailable, InvalidRequest, NotFound
from services.ledger import ZERO, to_money

PURCHASABLE_STATUS = "published"


async def get_artifact(artifact_type: str, artifact_id: str, db: AsyncSession) -> Artifact:
    if artifact_type not in ARTIFACT_TYPES:
        raise InvalidRequest(f"Unknown artifact type: {artifact_type}")
    result = await db.execute(
        select(Artifact)
        .where(Artifact.id == artifact_id, Artifact.artifact_type == artifact_type)
        .execution_options(populate_existing=True)
    )
    artifact = result.scalar_one_or_none()
    if artifact is None:
        raise NotFound(f"{artifact_type.capitalize()} not found.")
    return artifact


def ensure_purchasable(artifact: Artifact) -> None:
    """Withdrawn or unpublished artifacts cannot be granted."""
    if artifact.status != PURCHASABLE_STATUS:
        raise ArtifactUnavailable(f"{artifact.artifact_type.capitalize()} is not available.")


def paid_price(artifact: Artifact) -> Optional[Decimal]:
    """Price to charge, or None for free artifacts."""
    if not artifact.is_paid or artifact.price is None:
        return None
    price = to_money(artifact.price)
    return price if price > ZERO else None
