"""Credit ledger package."""

from resume_billing.services.credit.ledger import CreditLedger, CreditCheck, DebitResult

__all__ = ["CreditLedger", "CreditCheck", "DebitResult"]
