"""Credit ledger model."""

from datetime import datetime, UTC
from enum import Enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON, CheckConstraint, Index, text
from sqlalchemy.orm import relationship

from resume_billing.core.base_model import Base


class CreditEventKind(str, Enum):
    """Kinds of credit ledger entries. Only usage decreases the balance by kind alone."""
    USAGE = "usage"
    ADDITION = "addition"
    INITIAL = "initial"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    PURCHASE = "purchase"
    REFUND = "refund"


class CreditLedgerEntry(Base):
    """
    Immutable record of one change to a user's credit balance.

    ``credits`` is always non-negative; direction comes from ``kind``, except
    for admin adjustments, which record ``direction`` ("credit" or "debit")
    in their metadata. ``balance_after`` is the balance right after the
    change was applied.
    """
    __tablename__ = "credit_ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = Column(String(20), nullable=False, index=True)
    action = Column(String(50), nullable=True)
    credits = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), index=True)

    user = relationship("User", back_populates="ledger_entries")

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_credit_ledger_credits_non_negative"),
        # At most one sign-up grant per user
        Index(
            "uq_credit_ledger_initial_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("kind = 'initial'"),
            sqlite_where=text("kind = 'initial'"),
        ),
    )

    @property
    def signed_credits(self) -> int:
        """Balance delta this entry represents."""
        if self.kind == CreditEventKind.USAGE.value:
            return -self.credits
        if self.kind == CreditEventKind.ADMIN_ADJUSTMENT.value and (self.event_metadata or {}).get("direction") == "debit":
            return -self.credits
        return self.credits
