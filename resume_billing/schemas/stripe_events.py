"""Typed views of the Stripe webhook events the billing core consumes.

Inbound events decode into a closed union: one model per handled event type,
plus ``UnhandledEvent`` for everything else. Each payload is validated into a
strict structure before any handler touches it.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, model_validator

from resume_billing.services.utils import from_timestamp, utcnow


def _expandable_id(value: Any) -> Any:
    """Stripe references may arrive expanded; keep only the id."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _empty_if_none(value: Any) -> Any:
    return {} if value is None else value


StripeId = Annotated[Optional[str], BeforeValidator(_expandable_id)]
Metadata = Annotated[Dict[str, str], BeforeValidator(_empty_if_none)]


class StripeModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CheckoutSession(StripeModel):
    id: str
    mode: Optional[str] = None
    customer: StripeId = None
    subscription: StripeId = None
    payment_intent: StripeId = None
    invoice: StripeId = None
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: Metadata = Field(default_factory=dict)


class Recurring(StripeModel):
    interval: Optional[str] = None


class Price(StripeModel):
    id: Optional[str] = None
    recurring: Optional[Recurring] = None


class SubscriptionItem(StripeModel):
    id: str
    price: Optional[Price] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None


class SubscriptionItemList(StripeModel):
    data: List[SubscriptionItem] = Field(default_factory=list)


class StripeSubscription(StripeModel):
    id: str
    customer: StripeId = None
    status: str
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    items: SubscriptionItemList = Field(default_factory=SubscriptionItemList)
    metadata: Metadata = Field(default_factory=dict)

    @property
    def first_item(self) -> Optional[SubscriptionItem]:
        return self.items.data[0] if self.items.data else None

    @property
    def plan(self) -> str:
        """Local plan inferred from the billing interval of the first item."""
        item = self.first_item
        interval = item.price.recurring.interval if item and item.price and item.price.recurring else None
        return "yearly" if interval == "year" else "monthly"

    def period_bounds(self) -> Tuple[datetime, datetime]:
        """
        Billing period of the subscription.

        Newer API versions report the period on the subscription item only,
        older ones on the subscription itself; now() is the last resort.
        """
        item = self.first_item
        start = (item.current_period_start if item else None) or self.current_period_start
        end = (item.current_period_end if item else None) or self.current_period_end
        now = utcnow()
        return from_timestamp(start) or now, from_timestamp(end) or now


class InvoiceLine(StripeModel):
    amount: int = 0
    price: Optional[Price] = None


class InvoiceLineList(StripeModel):
    data: List[InvoiceLine] = Field(default_factory=list)


class Invoice(StripeModel):
    id: str
    customer: StripeId = None
    subscription: StripeId = None
    payment_intent: StripeId = None
    billing_reason: Optional[str] = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: Optional[str] = None
    lines: InvoiceLineList = Field(default_factory=InvoiceLineList)

    @property
    def charged_plan(self) -> Optional[str]:
        """Plan of the first positively charged recurring line, if any."""
        for line in self.lines.data:
            if line.amount > 0 and line.price and line.price.recurring and line.price.recurring.interval:
                return "yearly" if line.price.recurring.interval == "year" else "monthly"
        return None

    @model_validator(mode="before")
    @classmethod
    def _subscription_from_parent(cls, value: Any) -> Any:
        # Newer API versions nest the subscription under parent.subscription_details
        if isinstance(value, dict) and not value.get("subscription"):
            parent = value.get("parent") or {}
            details = parent.get("subscription_details") or {}
            if details.get("subscription"):
                value = {**value, "subscription": details["subscription"]}
        return value


class _EventBase(StripeModel):
    id: str

    @model_validator(mode="before")
    @classmethod
    def _lift_data_object(cls, value: Any) -> Any:
        if isinstance(value, dict) and "data_object" not in value:
            data = value.get("data") or {}
            value = {**value, "data_object": data.get("object")}
        return value


class CheckoutSessionCompleted(_EventBase):
    type: Literal["checkout.session.completed"]
    data_object: CheckoutSession


class SubscriptionUpdated(_EventBase):
    type: Literal["customer.subscription.updated"]
    data_object: StripeSubscription


class SubscriptionDeleted(_EventBase):
    type: Literal["customer.subscription.deleted"]
    data_object: StripeSubscription


class InvoicePaymentSucceeded(_EventBase):
    type: Literal["invoice.payment_succeeded"]
    data_object: Invoice


class InvoicePaymentFailed(_EventBase):
    type: Literal["invoice.payment_failed"]
    data_object: Invoice


class UnhandledEvent(_EventBase):
    """Any event type the billing core does not act on."""
    type: str
    data_object: Optional[Dict[str, Any]] = None


HandledEvent = Annotated[
    Union[
        CheckoutSessionCompleted,
        SubscriptionUpdated,
        SubscriptionDeleted,
        InvoicePaymentSucceeded,
        InvoicePaymentFailed,
    ],
    Field(discriminator="type"),
]

StripeEvent = Union[
    CheckoutSessionCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    UnhandledEvent,
]

HANDLED_EVENT_TYPES = frozenset({
    "checkout.session.completed",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "invoice.payment_succeeded",
    "invoice.payment_failed",
})

_handled_event_adapter = TypeAdapter(HandledEvent)


def decode_event(payload: Dict[str, Any]) -> StripeEvent:
    """
    Decode a raw Stripe event payload.

    Raises:
        pydantic.ValidationError: If a handled event type carries a malformed payload.
    """
    if payload.get("type") in HANDLED_EVENT_TYPES:
        return _handled_event_adapter.validate_python(payload)
    return UnhandledEvent.model_validate(payload)
