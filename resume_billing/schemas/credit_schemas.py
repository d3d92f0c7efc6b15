"""Pydantic schemas for credit operations."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditBalanceResponse(BaseModel):
    credits: int
    is_admin: bool = False


class CreditCheckResponse(BaseModel):
    """Whether the user can afford ``action``."""
    action: str
    allowed: bool
    required: int
    available: int


class CreditDebitResponse(BaseModel):
    """Outcome of a successful debit."""
    success: bool = True
    action: str
    deducted: int
    remaining: int
    unlimited: bool = False


class LedgerEntryResponse(BaseModel):
    id: int
    kind: str
    action: Optional[str] = None
    credits: int
    balance_after: int
    description: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CreditHistoryResponse(BaseModel):
    logs: List[LedgerEntryResponse]
    pagination: Pagination


class AdjustmentOperation(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"
    SET = "set"


class AdminCreditAdjustRequest(BaseModel):
    """Administrative change to a user's balance."""
    user_id: int
    credits: int = Field(..., ge=0, description="Amount to add or subtract, or the new balance for 'set'")
    operation: AdjustmentOperation = AdjustmentOperation.ADD
    reason: Optional[str] = Field(None, max_length=500)


class AdminCreditAdjustResponse(BaseModel):
    user_id: int
    previous_balance: int
    credits: int
    operation: AdjustmentOperation
