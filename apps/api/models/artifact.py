"""Artifact model: catalog entry for a published model or dataset."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


ARTIFACT_TYPES = ("model", "dataset")


class Artifact(Base):
    """Priced or free downloadable artifact."""

    __tablename__ = "artifacts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String, nullable=True, index=True)
    artifact_type = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft", index=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    price = Column(Numeric(12, 2), nullable=True)
    file_url = Column(String, nullable=True)
    download_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    grants = relationship("ArtifactGrant", back_populates="artifact")
