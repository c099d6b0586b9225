"""Account model holding a user's monetary balance."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Account(Base):
    """One balance row per user; mutated only through services.ledger."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        CheckConstraint("frozen_balance >= 0", name="ck_accounts_frozen_balance_non_negative"),
    )

    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    frozen_balance = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="account")
