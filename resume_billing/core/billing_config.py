"""Billing configuration context.

Prices, allotments and per-action costs are tunable by operators through the
``app_settings`` table. They are read once per request into an immutable
``BillingConfig`` that is handed to the services at construction time, so no
billing code reads configuration globals while it runs.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from fastapi import Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.core.config import settings
from resume_billing.core.database import get_db
from resume_billing.core.exceptions import BillingValidationError
from resume_billing.log.logging import logger
from resume_billing.models.app_setting import AppSetting

# action key -> app_settings key holding its credit cost
ACTION_COST_KEYS: Dict[str, str] = {
    "resume_creation": "credits_per_resume",
    "job_post_cover_letter": "credits_per_cover_letter",
    "upwork_estimate": "credits_per_upwork_estimate",
    "upwork_proposal": "credits_per_upwork_proposal",
    "fiverr_estimate": "credits_per_fiverr_estimate",
    "fiverr_proposal": "credits_per_fiverr_proposal",
    "salary_estimation": "credits_per_salary_estimation",
}

ACTION_LABELS: Dict[str, str] = {
    "resume_creation": "Resume creation",
    "job_post_cover_letter": "Cover letter generation",
    "upwork_estimate": "Upwork estimate",
    "upwork_proposal": "Upwork proposal",
    "fiverr_estimate": "Fiverr estimate",
    "fiverr_proposal": "Fiverr proposal",
    "salary_estimation": "Salary estimation",
}

DEFAULT_ACTION_COST = 1

# credit amount -> package price in major currency units
CREDIT_PACKAGES: Dict[int, Decimal] = {
    5: Decimal("3.99"),
    15: Decimal("9.99"),
    30: Decimal("14.99"),
}


class BillingConfig(BaseModel):
    """Immutable snapshot of billing configuration for one unit of work."""
    model_config = ConfigDict(frozen=True)

    initial_credits: int = 10
    action_costs: Dict[str, int] = Field(
        default_factory=lambda: {action: DEFAULT_ACTION_COST for action in ACTION_COST_KEYS}
    )
    price_per_credit: Decimal = Decimal("0.80")
    currency: str = "usd"
    credit_packages: Dict[int, Decimal] = Field(default_factory=lambda: dict(CREDIT_PACKAGES))
    subscription_monthly_price: Decimal = Decimal("7.99")
    subscription_yearly_price: Decimal = Decimal("59.99")
    subscription_monthly_credits: int = 50
    subscription_yearly_credits: int = 700
    stripe_monthly_price_id: Optional[str] = None
    stripe_yearly_price_id: Optional[str] = None
    frontend_url: str = "http://localhost:3000"

    def cost_for(self, action: str) -> int:
        """Credit cost of ``action``; unknown actions are rejected."""
        if action not in self.action_costs:
            raise BillingValidationError(f"Unknown action: {action}", context={"action": action})
        return self.action_costs[action]

    def credits_for_plan(self, plan: str) -> int:
        return self.subscription_yearly_credits if plan == "yearly" else self.subscription_monthly_credits

    def price_id_for_plan(self, plan: str) -> Optional[str]:
        return self.stripe_yearly_price_id if plan == "yearly" else self.stripe_monthly_price_id

    def price_for_credits(self, credit_amount: int) -> Decimal:
        """Package price when one matches, otherwise the per-credit price."""
        if credit_amount in self.credit_packages:
            return self.credit_packages[credit_amount]
        return (self.price_per_credit * credit_amount).quantize(Decimal("0.01"))


def _cast(key: str, raw: str, default):
    try:
        if isinstance(default, bool):
            return raw.strip().lower() in ("1", "true", "yes")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, Decimal):
            return Decimal(raw)
        return raw
    except (ValueError, InvalidOperation):
        logger.warning(
            f"Ignoring invalid app setting {key}={raw!r}",
            event_type="config_warning",
            setting=key,
        )
        return default


def build_billing_config(values: Dict[str, str]) -> BillingConfig:
    """Build a ``BillingConfig`` from raw ``app_settings`` values, using defaults for missing keys."""
    defaults = BillingConfig()

    scalar_fields = {}
    for field in (
        "initial_credits", "price_per_credit", "currency",
        "subscription_monthly_price", "subscription_yearly_price",
        "subscription_monthly_credits", "subscription_yearly_credits",
    ):
        if field in values:
            scalar_fields[field] = _cast(field, values[field], getattr(defaults, field))

    action_costs = {
        action: _cast(cost_key, values[cost_key], DEFAULT_ACTION_COST) if cost_key in values else DEFAULT_ACTION_COST
        for action, cost_key in ACTION_COST_KEYS.items()
    }

    return BillingConfig(
        **scalar_fields,
        action_costs=action_costs,
        stripe_monthly_price_id=values.get("stripe_monthly_price_id") or settings.STRIPE_MONTHLY_PRICE_ID or None,
        stripe_yearly_price_id=values.get("stripe_yearly_price_id") or settings.STRIPE_YEARLY_PRICE_ID or None,
        frontend_url=settings.FRONTEND_URL.rstrip("/"),
    )


async def load_billing_config(db: AsyncSession) -> BillingConfig:
    """Read all app settings and build the configuration snapshot."""
    result = await db.execute(select(AppSetting.key, AppSetting.value))
    return build_billing_config({key: value for key, value in result.all()})


async def get_billing_config(db: AsyncSession = Depends(get_db)) -> BillingConfig:
    """FastAPI dependency providing the per-request ``BillingConfig``."""
    return await load_billing_config(db)
