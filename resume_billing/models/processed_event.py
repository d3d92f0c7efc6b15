from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime

from resume_billing.core.base_model import Base


class ProcessedStripeEvent(Base):
    """Stripe event ids whose effects have been committed."""
    __tablename__ = "processed_stripe_events"

    stripe_event_id = Column(String(255), primary_key=True, index=True)
    event_type = Column(String(100), nullable=True)
    processed_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<ProcessedStripeEvent(stripe_event_id='{self.stripe_event_id}', event_type='{self.event_type}')>"
