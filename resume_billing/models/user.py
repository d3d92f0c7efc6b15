"""User record as seen by the billing core."""

from datetime import datetime, UTC
from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint
from sqlalchemy.orm import relationship

from resume_billing.core.base_model import Base


class User(Base):
    """
    SQLAlchemy model for a user account.

    Profile and authentication data are owned by the user subsystem; the
    billing core only reads identity fields and owns ``credits``.

    Attributes:
        id (int): Primary key.
        email (str): Unique email, also the bearer-token subject.
        is_admin (bool): Administrators have unlimited credits and bypass subscription gates.
        credits (int): Current credit balance. Mutated only by the credit ledger.
        stripe_customer_id (str): Cached Stripe customer reference.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    credits = Column(Integer, default=0, nullable=False)
    stripe_customer_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    ledger_entries = relationship("CreditLedgerEntry", back_populates="user", cascade="all, delete-orphan")
    subscriptions = relationship("Subscription", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")
    resumes = relationship("Resume", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )
