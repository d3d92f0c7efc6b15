# resume_billing/models/__init__.py
from resume_billing.models.user import User
from resume_billing.models.credit import CreditLedgerEntry, CreditEventKind
from resume_billing.models.subscription import (
    Subscription, SubscriptionPlan, SubscriptionStatus, ENTITLED_STATUSES
)
from resume_billing.models.transaction import Transaction, TransactionType, TransactionStatus
from resume_billing.models.processed_event import ProcessedStripeEvent
from resume_billing.models.app_setting import AppSetting
from resume_billing.models.resume import Resume

__all__ = [
    'User',
    'CreditLedgerEntry',
    'CreditEventKind',
    'Subscription',
    'SubscriptionPlan',
    'SubscriptionStatus',
    'ENTITLED_STATUSES',
    'Transaction',
    'TransactionType',
    'TransactionStatus',
    'ProcessedStripeEvent',
    'AppSetting',
    'Resume',
]
