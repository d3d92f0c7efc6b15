"""Pydantic schemas for checkout, subscription and transaction endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from resume_billing.models.subscription import SubscriptionPlan
from resume_billing.schemas.credit_schemas import Pagination


class CreditCheckoutRequest(BaseModel):
    credit_amount: int = Field(..., ge=1, le=100, description="Number of credits to purchase")


class SubscriptionCheckoutRequest(BaseModel):
    plan: SubscriptionPlan


class SwitchPlanRequest(BaseModel):
    plan: SubscriptionPlan


class CheckoutSessionResponse(BaseModel):
    """Redirect handle for a Stripe Checkout session."""
    session_id: str
    url: Optional[str] = None


class SubscriptionResponse(BaseModel):
    id: int
    plan: str
    status: str
    stripe_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    features: Dict[str, bool] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class SubscriptionStatusResponse(BaseModel):
    subscribed: bool
    subscription: Optional[SubscriptionResponse] = None


class CancellationResponse(BaseModel):
    message: str
    cancel_at_period_end: bool
    current_period_end: Optional[datetime] = None


class SwitchPlanResponse(BaseModel):
    message: str
    plan: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None


class BillingPortalResponse(BaseModel):
    url: str


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    type: str
    status: str
    amount: Decimal
    currency: str
    credits_added: int = 0
    credits_deducted: int = 0
    plan: Optional[str] = None
    description: Optional[str] = None
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    stripe_event_type: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
    pagination: Pagination


class VerifySessionResponse(BaseModel):
    already_processed: bool
    transaction: Optional[TransactionResponse] = None


class SubscriptionSyncResponse(BaseModel):
    synced: bool
    message: str
    subscription: Optional[SubscriptionResponse] = None


class TransactionSyncResponse(BaseModel):
    synced: bool
    imported: int
    message: str


class VisibilityEnforcementResponse(BaseModel):
    privatized: int


class PlanPricing(BaseModel):
    plan: str
    price: Decimal
    credits: int


class PricingResponse(BaseModel):
    currency: str
    price_per_credit: Decimal
    credit_packages: Dict[int, Decimal]
    plans: List[PlanPricing]
    action_costs: Dict[str, int]
