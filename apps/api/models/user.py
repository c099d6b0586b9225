"""User model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """Platform user known to the billing service."""

    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    account = relationship("Account", back_populates="user", uselist=False)
    recharge_records = relationship("RechargeRecord", back_populates="user")
    consumption_records = relationship("ConsumptionRecord", back_populates="user")
    withdrawal_records = relationship("WithdrawalRecord", back_populates="user")
    artifact_grants = relationship("ArtifactGrant", back_populates="user")
