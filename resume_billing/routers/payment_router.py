"""Router for checkout, subscription and transaction endpoints."""

from math import ceil
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.core.auth import get_current_admin, get_current_user
from resume_billing.core.billing_config import BillingConfig, get_billing_config
from resume_billing.core.database import get_db
from resume_billing.models.subscription import SubscriptionPlan
from resume_billing.models.transaction import TransactionStatus, TransactionType
from resume_billing.models.user import User
from resume_billing.schemas.credit_schemas import Pagination
from resume_billing.schemas.error_schemas import ErrorResponse
from resume_billing.schemas.payment_schemas import (
    BillingPortalResponse,
    CancellationResponse,
    CheckoutSessionResponse,
    CreditCheckoutRequest,
    PlanPricing,
    PricingResponse,
    SubscriptionCheckoutRequest,
    SubscriptionResponse,
    SubscriptionStatusResponse,
    SubscriptionSyncResponse,
    SwitchPlanRequest,
    SwitchPlanResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionSyncResponse,
    VerifySessionResponse,
    VisibilityEnforcementResponse,
)
from resume_billing.services.entitlement_service import EntitlementStore
from resume_billing.services.reconciliation_service import ReconciliationService
from resume_billing.services.transaction_journal import TransactionJournal


router = APIRouter(prefix="/payments", tags=["payments"])

_PROCESSOR_RESPONSES = {
    502: {"model": ErrorResponse, "description": "Stripe request failed"},
    504: {"model": ErrorResponse, "description": "Stripe did not respond in time"},
}


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config)
) -> ReconciliationService:
    return ReconciliationService(db, config)


def _transaction_page(transactions, total: int, page: int, limit: int) -> TransactionListResponse:
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(tx) for tx in transactions],
        pagination=Pagination(page=page, limit=limit, total=total, pages=ceil(total / limit) if total else 0),
    )


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing(config: BillingConfig = Depends(get_billing_config)):
    """Credit packages, subscription plans and per-action costs. Public."""
    return PricingResponse(
        currency=config.currency,
        price_per_credit=config.price_per_credit,
        credit_packages=config.credit_packages,
        plans=[
            PlanPricing(plan=SubscriptionPlan.MONTHLY.value, price=config.subscription_monthly_price,
                        credits=config.subscription_monthly_credits),
            PlanPricing(plan=SubscriptionPlan.YEARLY.value, price=config.subscription_yearly_price,
                        credits=config.subscription_yearly_credits),
        ],
        action_costs=config.action_costs,
    )


@router.post("/credits/checkout", response_model=CheckoutSessionResponse, responses=_PROCESSOR_RESPONSES)
async def create_credit_checkout(
    request: CreditCheckoutRequest,
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """Start a Stripe Checkout for a one-off credit purchase."""
    session_id, url = await service.create_credit_checkout(current_user, request.credit_amount)
    return CheckoutSessionResponse(session_id=session_id, url=url)


@router.post(
    "/subscription/checkout",
    response_model=CheckoutSessionResponse,
    responses={409: {"model": ErrorResponse, "description": "An active subscription already exists"},
               **_PROCESSOR_RESPONSES},
)
async def create_subscription_checkout(
    request: SubscriptionCheckoutRequest,
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """Start a Stripe Checkout for a subscription."""
    session_id, url = await service.create_subscription_checkout(current_user, request.plan.value)
    return CheckoutSessionResponse(session_id=session_id, url=url)


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    subscription = await service.get_subscription_status(current_user)
    return SubscriptionStatusResponse(
        subscribed=subscription is not None,
        subscription=SubscriptionResponse.model_validate(subscription) if subscription else None,
    )


@router.post("/subscription/cancel", response_model=CancellationResponse, responses=_PROCESSOR_RESPONSES)
async def cancel_subscription(
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """Cancel at the end of the current billing period. Access continues until then."""
    record = await service.cancel_subscription(current_user)
    return CancellationResponse(
        message="Subscription will be canceled at the end of the billing period",
        cancel_at_period_end=record.cancel_at_period_end,
        current_period_end=record.current_period_end,
    )


@router.post("/subscription/reactivate", response_model=CancellationResponse, responses=_PROCESSOR_RESPONSES)
async def reactivate_subscription(
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    record = await service.reactivate_subscription(current_user)
    return CancellationResponse(
        message="Subscription reactivated",
        cancel_at_period_end=record.cancel_at_period_end,
        current_period_end=record.current_period_end,
    )


@router.post("/subscription/switch", response_model=SwitchPlanResponse, responses=_PROCESSOR_RESPONSES)
async def switch_plan(
    request: SwitchPlanRequest,
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """
    Switch to another plan with immediate proration.

    Credits for the new plan are granted once Stripe reports the proration
    invoice as paid.
    """
    record = await service.switch_plan(current_user, request.plan.value)
    return SwitchPlanResponse(
        message=f"Switched to the {record.plan} plan",
        plan=record.plan,
        current_period_start=record.current_period_start,
        current_period_end=record.current_period_end,
    )


@router.get("/billing-portal", response_model=BillingPortalResponse, responses=_PROCESSOR_RESPONSES)
async def get_billing_portal(
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    return BillingPortalResponse(url=await service.create_billing_portal_session(current_user))


@router.post("/subscription/sync", response_model=SubscriptionSyncResponse, responses=_PROCESSOR_RESPONSES)
async def sync_subscription(
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    synced, message, record = await service.sync_subscription(current_user)
    return SubscriptionSyncResponse(
        synced=synced,
        message=message,
        subscription=SubscriptionResponse.model_validate(record) if record else None,
    )


@router.post("/subscription/enforce-visibility", response_model=VisibilityEnforcementResponse)
async def enforce_visibility(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Make the caller's public resumes private unless they are subscribed."""
    return VisibilityEnforcementResponse(privatized=await EntitlementStore(db).enforce_visibility(current_user))


@router.post("/verify/{session_id}", response_model=VerifySessionResponse, responses=_PROCESSOR_RESPONSES)
async def verify_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    """Apply a completed checkout whose webhook has not arrived yet."""
    already_processed, transaction = await service.verify_session(current_user, session_id)
    return VerifySessionResponse(
        already_processed=already_processed,
        transaction=TransactionResponse.model_validate(transaction) if transaction else None,
    )


@router.post("/transactions/sync", response_model=TransactionSyncResponse, responses=_PROCESSOR_RESPONSES)
async def sync_transactions(
    current_user: User = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service)
):
    synced, imported, message = await service.sync_transactions(current_user)
    return TransactionSyncResponse(synced=synced, imported=imported, message=message)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[TransactionType] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """The caller's financial history, newest first. Credit usage is not listed."""
    transactions, total = await TransactionJournal(db).list_for_user(current_user.id, page=page, limit=limit, type=type)
    return _transaction_page(transactions, total, page, limit)


@router.get("/transactions/all", response_model=TransactionListResponse)
async def list_all_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    user_id: Optional[int] = None,
    _: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    transactions, total = await TransactionJournal(db).list_all(
        page=page, limit=limit, type=type, status=status, user_id=user_id
    )
    return _transaction_page(transactions, total, page, limit)
