"""WithdrawalRecord model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class WithdrawalRecord(Base):
    """Withdrawal request whose amount sits in the account's frozen balance."""

    __tablename__ = "withdrawal_records"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    withdrawal_method = Column(String, nullable=False)
    withdrawal_address = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="withdrawal_records")
