"""Entitlement store: local mirror of users' Stripe subscriptions."""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.log.logging import logger
from resume_billing.models.resume import Resume
from resume_billing.models.subscription import (
    ENTITLED_STATUSES, Subscription, SubscriptionStatus
)
from resume_billing.models.user import User
from resume_billing.schemas.stripe_events import StripeSubscription
from resume_billing.services.utils import as_utc, utcnow

# Stripe subscription status -> local status
STRIPE_STATUS_MAP = {
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
}


def map_stripe_status(stripe_status: str) -> SubscriptionStatus:
    status = STRIPE_STATUS_MAP.get(stripe_status)
    if status is None:
        logger.warning(
            f"Unknown Stripe subscription status: {stripe_status}",
            event_type="unknown_subscription_status",
            stripe_status=stripe_status,
        )
        return SubscriptionStatus.INCOMPLETE
    return status


def is_entitled(record: Subscription) -> bool:
    """True when the record grants access right now: status and period both count."""
    period_end = as_utc(record.current_period_end)
    return record.status in ENTITLED_STATUSES and period_end is not None and period_end > utcnow()


class EntitlementStore:
    """
    Queries and updates on subscription records.

    Writes here are flushed, never committed: the webhook processor and the
    reconciliation service own the transaction boundary.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active(self, user_id: int) -> Optional[Subscription]:
        """Most recent record that is active/trialing with a billing period that has not ended."""
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status.in_(ENTITLED_STATUSES),
                Subscription.current_period_end > utcnow(),
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def is_subscribed(self, user_id: int) -> bool:
        return await self.get_active(user_id) is not None

    async def get_by_stripe_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_customer_id(self, user_id: int) -> Optional[str]:
        """Stripe customer of the user's most recent subscription record, if any."""
        result = await self.db.execute(
            select(Subscription.stripe_customer_id)
            .where(Subscription.user_id == user_id, Subscription.stripe_customer_id.is_not(None))
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def create_pending(self, user_id: int, plan: str, stripe_customer_id: str) -> Subscription:
        """
        Record a subscription checkout in progress as ``incomplete``.

        An earlier pending record without a Stripe reference is reused, so
        abandoned checkouts do not pile up.
        """
        result = await self.db.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.stripe_subscription_id.is_(None),
                Subscription.status == SubscriptionStatus.INCOMPLETE.value,
            ).limit(1)
        )
        record = result.scalars().first()
        if record is None:
            record = Subscription(user_id=user_id, status=SubscriptionStatus.INCOMPLETE.value)
            self.db.add(record)
        record.plan = plan
        record.stripe_customer_id = stripe_customer_id
        await self.db.flush()
        return record

    def apply_processor_state(self, record: Subscription, stripe_sub: StripeSubscription) -> Subscription:
        """
        Copy status, plan, billing period and cancel flag from Stripe onto ``record``.

        ``expired`` is terminal: a late or out-of-order update for an expired
        subscription is ignored instead of resurrecting it.
        """
        if record.status == SubscriptionStatus.EXPIRED.value:
            logger.info(
                "Ignoring Stripe update for expired subscription",
                event_type="subscription_update_ignored",
                stripe_subscription_id=stripe_sub.id,
                stripe_status=stripe_sub.status,
            )
            return record

        period_start, period_end = stripe_sub.period_bounds()
        record.status = map_stripe_status(stripe_sub.status).value
        record.plan = stripe_sub.plan
        record.current_period_start = period_start
        record.current_period_end = period_end
        record.cancel_at_period_end = stripe_sub.cancel_at_period_end
        if stripe_sub.customer:
            record.stripe_customer_id = stripe_sub.customer
        return record

    async def upsert_from_processor(self, user_id: int, stripe_sub: StripeSubscription) -> Subscription:
        """
        Create or update the record for ``stripe_sub``, keyed by its Stripe id.

        A pending checkout record for the same user is adopted when no record
        carries the id yet.
        """
        record = await self.get_by_stripe_id(stripe_sub.id)
        if record is None:
            result = await self.db.execute(
                select(Subscription).where(
                    Subscription.user_id == user_id,
                    Subscription.stripe_subscription_id.is_(None),
                    Subscription.status == SubscriptionStatus.INCOMPLETE.value,
                ).limit(1)
            )
            record = result.scalars().first()
            if record is None:
                record = Subscription(user_id=user_id)
                self.db.add(record)
            record.stripe_subscription_id = stripe_sub.id

        self.apply_processor_state(record, stripe_sub)
        await self.db.flush()

        logger.info(
            "Subscription upserted from Stripe",
            event_type="subscription_upserted",
            user_id=user_id,
            stripe_subscription_id=stripe_sub.id,
            status=record.status,
            plan=record.plan,
        )
        return record

    async def privatize_public_content(self, user_id: int) -> int:
        """Flip the user's public, non-deleted resumes to private. Returns how many changed."""
        result = await self.db.execute(
            update(Resume)
            .where(Resume.user_id == user_id, Resume.is_public.is_(True), Resume.is_deleted.is_(False))
            .values(is_public=False)
            .execution_options(synchronize_session=False)
        )
        privatized = result.rowcount or 0
        if privatized:
            logger.info(
                f"Privatized {privatized} public resumes",
                event_type="resumes_privatized",
                user_id=user_id,
                privatized=privatized,
            )
        return privatized

    async def enforce_visibility(self, user: User) -> int:
        """Privatize public content of a user who is neither admin nor subscribed."""
        if user.is_admin or await self.is_subscribed(user.id):
            return 0
        privatized = await self.privatize_public_content(user.id)
        await self.db.commit()
        return privatized
