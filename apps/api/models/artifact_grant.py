"""ArtifactGrant model: a user's entitlement to download an artifact."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class ArtifactGrant(Base):
    """
    At most one row per (user, artifact). Inserting it is what grants access
    and what counts a download.
    """

    __tablename__ = "artifact_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "artifact_id", name="uq_artifact_grants_user_artifact"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    artifact_id = Column(String, ForeignKey("artifacts.id"), nullable=False, index=True)
    artifact_type = Column(String, nullable=False)
    price_paid = Column(Numeric(12, 2), nullable=False, default=0)
    consumption_id = Column(String, ForeignKey("consumption_records.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="artifact_grants")
    artifact = relationship("Artifact", back_populates="grants")
