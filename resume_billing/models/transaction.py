"""Transaction journal model."""

from datetime import datetime, UTC
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, Text, JSON, Boolean, UniqueConstraint
)
from sqlalchemy.orm import relationship

from resume_billing.core.base_model import Base


class TransactionType(str, Enum):
    CREDIT_PURCHASE = "credit_purchase"
    CREDIT_USAGE = "credit_usage"
    SUBSCRIPTION_PAYMENT = "subscription_payment"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    SUBSCRIPTION_SWITCH = "subscription_switch"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Transaction(Base):
    """
    Immutable record of one financial event.

    The Stripe references double as idempotency keys: at most one entry per
    (reference, status) pair, so a re-delivered checkout, invoice or imported
    charge can never produce a second completed entry.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_session_id = Column(String(255), nullable=True, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(100), nullable=True, index=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    type = Column(String(30), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value, index=True)
    amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="usd")
    credits_added = Column(Integer, nullable=False, default=0)
    credits_deducted = Column(Integer, nullable=False, default=0)
    plan = Column(String(20), nullable=True)
    description = Column(Text, nullable=True)
    stripe_event_type = Column(String(100), nullable=True)
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)

    user = relationship("User", back_populates="transactions")

    __table_args__ = (
        UniqueConstraint("stripe_session_id", "status", name="uq_transactions_session_status"),
        UniqueConstraint("stripe_invoice_id", "status", name="uq_transactions_invoice_status"),
        UniqueConstraint("stripe_payment_intent_id", "status", name="uq_transactions_payment_intent_status"),
    )
