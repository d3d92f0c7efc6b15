"""Webhook response schemas."""

from typing import Optional
from enum import Enum
from pydantic import BaseModel, Field

from resume_billing.schemas.stripe_events import HANDLED_EVENT_TYPES


class WebhookStatus(str, Enum):
    """Webhook processing status."""
    SUCCESS = "success"
    ALREADY_PROCESSED = "already_processed"
    UNHANDLED = "unhandled"
    ERROR = "error"


class WebhookResponse(BaseModel):
    """Standard webhook response."""
    received: bool = Field(True, description="The delivery was accepted")
    status: WebhookStatus = Field(..., description="Processing status")
    message: str = Field(..., description="Status message")
    event_id: Optional[str] = Field(None, description="Stripe event ID")
    event_type: Optional[str] = Field(None, description="Stripe event type")

    model_config = {
        "json_schema_extra": {
            "example": {
                "received": True,
                "status": "success",
                "message": "Event processed successfully",
                "event_id": "evt_1234567890",
                "event_type": "checkout.session.completed"
            }
        }
    }


class WebhookErrorResponse(BaseModel):
    """Body returned with a 500 so that Stripe redelivers the event."""
    status: WebhookStatus = Field(default=WebhookStatus.ERROR, description="Error status")
    message: str = Field(..., description="Error message")
    event_id: Optional[str] = Field(None, description="Stripe event ID if available")
    event_type: Optional[str] = Field(None, description="Stripe event type if available")
    retry: bool = Field(default=True, description="Whether Stripe should retry this event")


SUPPORTED_WEBHOOK_EVENTS = sorted(HANDLED_EVENT_TYPES)

WEBHOOK_EVENTS_DESCRIPTION = """
## Supported Stripe Webhook Events

| Event Type | Effect |
|------------|--------|
| `checkout.session.completed` | Credit purchase: grant credits. Subscription: activate and grant the plan allotment |
| `customer.subscription.updated` | Refresh status, billing period, cancel flag and plan |
| `customer.subscription.deleted` | Expire the subscription and privatize public resumes |
| `invoice.payment_succeeded` | Renewal or plan switch: grant the plan allotment |
| `invoice.payment_failed` | Mark the subscription past due and journal the failure |

Other event types are acknowledged and ignored.

### Idempotency

Checkout completions are keyed by session id and invoices by invoice id;
redelivered events are acknowledged without applying their effects twice.

### Retry Behavior

- **2xx**: processed, already processed, or ignored
- **400**: missing or invalid signature, malformed payload (not retried)
- **5xx**: transient server error, Stripe retries with exponential backoff
"""
