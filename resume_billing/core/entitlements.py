"""Route-level gating dependencies for subscription features and credits."""

from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.core.auth import get_current_user
from resume_billing.core.billing_config import BillingConfig, get_billing_config
from resume_billing.core.database import get_db
from resume_billing.core.exceptions import (
    FeatureNotIncludedException, InsufficientCreditsException, SubscriptionRequiredException
)
from resume_billing.log.logging import logger
from resume_billing.models.subscription import Subscription
from resume_billing.models.user import User
from resume_billing.services.credit import CreditLedger
from resume_billing.services.entitlement_service import EntitlementStore


async def attach_subscription(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Optional[Subscription]:
    """The caller's active subscription, or None. Never rejects."""
    return await EntitlementStore(db).get_active(current_user.id)


async def require_subscription(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Optional[Subscription]:
    """
    Reject callers without an active subscription.

    Administrators pass without one; for them the dependency yields their
    subscription if they happen to have it, else None.
    """
    subscription = await EntitlementStore(db).get_active(current_user.id)
    if subscription is None and not current_user.is_admin:
        logger.info(
            "Subscription required",
            event_type="subscription_required",
            user_id=current_user.id,
        )
        raise SubscriptionRequiredException()
    return subscription


def require_feature(feature: str):
    """Dependency factory: the caller's subscription must include ``feature``."""

    async def dependency(
        current_user: User = Depends(get_current_user),
        subscription: Optional[Subscription] = Depends(require_subscription),
    ) -> Optional[Subscription]:
        if current_user.is_admin:
            return subscription
        if not (subscription.features or {}).get(feature, False):
            logger.info(
                "Feature not included in subscription",
                event_type="feature_not_included",
                user_id=current_user.id,
                feature=feature,
            )
            raise FeatureNotIncludedException(feature)
        return subscription

    return dependency


def require_credits(action: str):
    """
    Dependency factory: the caller must be able to afford ``action``.

    This is a pre-check only. The route still debits through
    ``CreditLedger.debit``, which is what enforces the balance.
    """

    async def dependency(
        current_user: User = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
        config: BillingConfig = Depends(get_billing_config),
    ) -> User:
        check = await CreditLedger(db).check_credits(current_user, action, config)
        if not check.allowed:
            raise InsufficientCreditsException(required=check.required, available=check.available, action=action)
        return current_user

    return dependency
