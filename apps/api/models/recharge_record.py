"""RechargeRecord model for purchase-of-credit attempts."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


RECHARGE_PENDING = "pending"
RECHARGE_COMPLETED = "completed"
RECHARGE_FAILED = "failed"
RECHARGE_CANCELLED = "cancelled"
RECHARGE_TERMINAL_STATUSES = (RECHARGE_COMPLETED, RECHARGE_FAILED, RECHARGE_CANCELLED)


class RechargeRecord(Base):
    """
    One recharge attempt. The id doubles as the provider request_id, so it is
    the correlation token for webhooks and polls.
    """

    __tablename__ = "recharge_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String, nullable=False, default=RECHARGE_PENDING, index=True)
    payment_id = Column(String, nullable=True, index=True)
    payment_method = Column(String, nullable=True)
    description = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="recharge_records")
