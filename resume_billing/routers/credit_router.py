"""Router for credit-related endpoints."""

from math import ceil
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.core.auth import get_current_admin, get_current_user, get_internal_service
from resume_billing.core.billing_config import BillingConfig, get_billing_config
from resume_billing.core.database import get_db
from resume_billing.core.exceptions import InsufficientCreditsException, NotFoundError
from resume_billing.models.credit import CreditEventKind
from resume_billing.models.user import User
from resume_billing.schemas.credit_schemas import (
    AdminCreditAdjustRequest,
    AdminCreditAdjustResponse,
    CreditBalanceResponse,
    CreditCheckResponse,
    CreditDebitResponse,
    CreditHistoryResponse,
    LedgerEntryResponse,
    Pagination,
)
from resume_billing.schemas.error_schemas import ErrorResponse, InsufficientCreditsResponse
from resume_billing.services.credit import CreditLedger
from resume_billing.log.logging import logger


router = APIRouter(prefix="/credits", tags=["credits"])

_DEBIT_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Unknown action"},
    402: {"model": InsufficientCreditsResponse, "description": "Insufficient credits"},
}


async def _debit_or_raise(db: AsyncSession, user: User, action: str, config: BillingConfig) -> CreditDebitResponse:
    result = await CreditLedger(db).debit(user, action, config)
    if not result.success:
        raise InsufficientCreditsException(required=result.required, available=result.available, action=action)
    return CreditDebitResponse(
        action=action,
        deducted=result.deducted,
        remaining=result.remaining,
        unlimited=result.unlimited,
    )


@router.get("/balance", response_model=CreditBalanceResponse)
async def get_credit_balance(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Current credit balance of the authenticated user."""
    balance = await CreditLedger(db).get_balance(current_user.id)
    return CreditBalanceResponse(credits=balance, is_admin=current_user.is_admin)


@router.get("/history", response_model=CreditHistoryResponse)
async def get_credit_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    kind: Optional[CreditEventKind] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Ledger entries of the authenticated user, newest first.

    Args:
        page: 1-based page number
        limit: Page size
        kind: Optional filter on the entry kind
    """
    entries, total = await CreditLedger(db).get_history(current_user.id, page=page, limit=limit, kind=kind)
    return CreditHistoryResponse(
        logs=[LedgerEntryResponse.model_validate(entry) for entry in entries],
        pagination=Pagination(page=page, limit=limit, total=total, pages=ceil(total / limit) if total else 0),
    )


@router.get("/check/{action}", response_model=CreditCheckResponse, responses={400: _DEBIT_RESPONSES[400]})
async def check_credits(
    action: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config)
):
    """Whether the authenticated user can afford ``action``. Nothing is charged."""
    check = await CreditLedger(db).check_credits(current_user, action, config)
    return CreditCheckResponse(action=action, allowed=check.allowed, required=check.required, available=check.available)


@router.post("/debit/{action}", response_model=CreditDebitResponse, responses=_DEBIT_RESPONSES)
async def debit_credits(
    action: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config)
):
    """
    Charge the authenticated user for ``action``.

    Responds 402 with ``required`` and ``available`` when the balance does
    not cover the action; nothing is charged in that case.
    """
    return await _debit_or_raise(db, current_user, action, config)


@router.post(
    "/internal/{user_id}/debit/{action}",
    response_model=CreditDebitResponse,
    responses=_DEBIT_RESPONSES,
)
async def internal_debit_credits(
    user_id: int,
    action: str,
    _: str = Depends(get_internal_service),
    db: AsyncSession = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config)
):
    """
    Credit-debit contract for other subsystems.

    Callers must call this before performing the paid action and must not
    perform it on a 402.
    """
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", context={"user_id": user_id})
    return await _debit_or_raise(db, user, action, config)


@router.post(
    "/internal/{user_id}/initial",
    response_model=CreditBalanceResponse,
    status_code=status.HTTP_200_OK,
)
async def grant_initial_credits(
    user_id: int,
    _: str = Depends(get_internal_service),
    db: AsyncSession = Depends(get_db),
    config: BillingConfig = Depends(get_billing_config)
):
    """Grant the sign-up credit allotment. Calling it again changes nothing."""
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", context={"user_id": user_id})
    is_admin = user.is_admin
    ledger = CreditLedger(db)
    await ledger.grant_initial_credits(user_id, config)
    return CreditBalanceResponse(credits=await ledger.get_balance(user_id), is_admin=is_admin)


@router.post("/admin/adjust", response_model=AdminCreditAdjustResponse)
async def admin_adjust_credits(
    request: AdminCreditAdjustRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db)
):
    previous, new_balance = await CreditLedger(db).admin_adjust(
        admin, request.user_id, request.credits, request.operation, request.reason
    )
    logger.info(
        "Admin credit adjustment applied",
        event_type="admin_credit_adjustment",
        admin_id=admin.id,
        user_id=request.user_id,
        operation=request.operation.value,
    )
    return AdminCreditAdjustResponse(
        user_id=request.user_id,
        previous_balance=previous,
        credits=new_balance,
        operation=request.operation,
    )
