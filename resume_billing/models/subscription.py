"""Subscription (entitlement) model."""

from datetime import datetime, UTC
from enum import Enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, JSON, Index
from sqlalchemy.orm import relationship

from resume_billing.core.base_model import Base


class SubscriptionPlan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"


ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


def default_features() -> dict:
    return {
        "public_resumes": True,
        "resume_analytics": True,
        "salary_estimation": True,
    }


class Subscription(Base):
    """
    SQLAlchemy model mirroring one Stripe subscription for a user.

    A user may own several historical records; the active one is derived by
    query (status in ``ENTITLED_STATUSES`` and ``current_period_end`` in the
    future), never stored as a pointer.

    Attributes:
        stripe_customer_id (str): Stripe customer the subscription belongs to.
        stripe_subscription_id (str): Stripe subscription reference, unique when set.
            Null only for a checkout that has not completed yet.
        plan (str): ``monthly`` or ``yearly``.
        status (str): One of ``SubscriptionStatus``.
        cancel_at_period_end (bool): Cancellation scheduled at the end of the period.
        features (dict): Feature flags granted by the subscription.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    stripe_customer_id = Column(String(100), nullable=True, index=True)
    stripe_subscription_id = Column(String(100), nullable=True, unique=True)
    plan = Column(String(20), nullable=False, default=SubscriptionPlan.MONTHLY.value)
    status = Column(String(20), nullable=False, default=SubscriptionStatus.INCOMPLETE.value)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    features = Column(JSON, nullable=False, default=default_features)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))

    user = relationship("User", back_populates="subscriptions")

    __table_args__ = (
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )
