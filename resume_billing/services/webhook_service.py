"""Webhook event processor.

Applies each Stripe event's ledger, entitlement and journal effects exactly
once. Handlers only flush; ``process`` commits every mutation of an event,
together with its ``ProcessedStripeEvent`` marker, in one transaction, so an
event is either fully applied or not at all and can be safely redelivered.

Handlers assert only facts carried by their own payload. Stripe does not
order deliveries, so no handler assumes an earlier event has been seen.
"""

from enum import Enum
from typing import Optional, Tuple

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from resume_billing.core.billing_config import BillingConfig
from resume_billing.log.logging import logger
from resume_billing.models.credit import CreditEventKind
from resume_billing.models.processed_event import ProcessedStripeEvent
from resume_billing.models.subscription import Subscription, SubscriptionStatus
from resume_billing.models.transaction import TransactionStatus, TransactionType
from resume_billing.models.user import User
from resume_billing.schemas.stripe_events import (
    CheckoutSession, CheckoutSessionCompleted, Invoice, InvoicePaymentFailed,
    InvoicePaymentSucceeded, StripeEvent, StripeSubscription, SubscriptionDeleted,
    SubscriptionUpdated, UnhandledEvent,
)
from resume_billing.schemas.webhook_schemas import WebhookStatus
from resume_billing.services import stripe_async
from resume_billing.services.credit import CreditLedger
from resume_billing.services.entitlement_service import EntitlementStore, is_entitled
from resume_billing.services.transaction_journal import TransactionJournal
from resume_billing.services.utils import as_utc, to_major_units, utcnow


class EventOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


_STATUS_FOR_OUTCOME = {
    EventOutcome.APPLIED: (WebhookStatus.SUCCESS, "Successfully processed event"),
    EventOutcome.DUPLICATE: (WebhookStatus.ALREADY_PROCESSED, "Event effects were already applied"),
    EventOutcome.IGNORED: (WebhookStatus.SUCCESS, "Event acknowledged, nothing to apply"),
}


def _metadata_user_id(metadata: dict) -> Optional[int]:
    raw = metadata.get("user_id")
    try:
        return int(raw) if raw is not None else None
    except ValueError:
        return None


class WebhookEventProcessor:
    """One handler per Stripe event category, sharing a single unit of work."""

    def __init__(self, db: AsyncSession, config: BillingConfig):
        self.db = db
        self.config = config
        self.ledger = CreditLedger(db)
        self.entitlements = EntitlementStore(db)
        self.journal = TransactionJournal(db)

    async def is_event_processed(self, event_id: str) -> bool:
        result = await self.db.execute(
            select(exists().where(ProcessedStripeEvent.stripe_event_id == event_id))
        )
        return bool(result.scalar())

    async def process(self, event: StripeEvent) -> Tuple[WebhookStatus, str]:
        """
        Apply ``event`` and commit.

        Returns:
            Tuple[WebhookStatus, str]: status and message for the webhook response.

        Raises:
            Exception: Any unexpected failure, after rolling back. The caller
                answers 500 so that Stripe redelivers.
        """
        if isinstance(event, UnhandledEvent):
            logger.info(
                f"Ignoring unhandled Stripe event type: {event.type}",
                event_type="webhook_unhandled",
                event_id=event.id,
                stripe_event_type=event.type,
            )
            return WebhookStatus.UNHANDLED, f"Webhook received for unhandled event type: {event.type}"

        if await self.is_event_processed(event.id):
            logger.info(
                f"Event {event.id} ({event.type}) already processed. Skipping.",
                event_type="webhook_already_processed",
                event_id=event.id,
            )
            return WebhookStatus.ALREADY_PROCESSED, f"Event {event.id} already processed"

        try:
            if isinstance(event, CheckoutSessionCompleted):
                outcome = await self.handle_checkout_completed(event.data_object)
            elif isinstance(event, SubscriptionUpdated):
                outcome = await self.handle_subscription_updated(event.data_object)
            elif isinstance(event, SubscriptionDeleted):
                outcome = await self.handle_subscription_deleted(event.data_object)
            elif isinstance(event, InvoicePaymentSucceeded):
                outcome = await self.handle_invoice_payment_succeeded(event.data_object)
            elif isinstance(event, InvoicePaymentFailed):
                outcome = await self.handle_invoice_payment_failed(event.data_object)
            else:
                raise TypeError(f"No handler for {type(event).__name__}")

            self.db.add(ProcessedStripeEvent(stripe_event_id=event.id, event_type=event.type))
            await self.db.commit()
        except IntegrityError:
            # A concurrent delivery committed the same effects first
            await self.db.rollback()
            logger.info(
                f"Event {event.id} ({event.type}) applied concurrently. Skipping.",
                event_type="webhook_already_processed",
                event_id=event.id,
            )
            return WebhookStatus.ALREADY_PROCESSED, f"Event {event.id} already processed"
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"Processed Stripe event {event.id} ({event.type}): {outcome.value}",
            event_type="webhook_processed",
            event_id=event.id,
            stripe_event_type=event.type,
            outcome=outcome.value,
        )
        return _STATUS_FOR_OUTCOME[outcome]

    async def handle_checkout_completed(self, session: CheckoutSession) -> EventOutcome:
        """
        Apply a completed checkout.

        Credit purchases grant the purchased credits. Subscriptions are
        activated from the Stripe subscription object and granted the plan
        allotment in the same unit of work. Keyed by session id: a session
        with a completed transaction is never applied again. Also used by
        session verification when the webhook was missed.
        """
        user_id = _metadata_user_id(session.metadata)
        if user_id is None:
            logger.error(
                "User ID missing from checkout session metadata",
                event_type="webhook_invalid_payload",
                session_id=session.id,
            )
            return EventOutcome.IGNORED

        user = await self.db.get(User, user_id)
        if user is None:
            logger.error("User not found for checkout session", event_type="webhook_user_not_found",
                         session_id=session.id, user_id=user_id)
            return EventOutcome.IGNORED

        if await self.journal.find_by_session(session.id) is not None:
            logger.info("Checkout session already applied", event_type="checkout_already_processed",
                        session_id=session.id, user_id=user_id)
            return EventOutcome.DUPLICATE

        checkout_type = session.metadata.get("type")
        stripe_sub: Optional[StripeSubscription] = None
        if checkout_type == "subscription":
            if not session.subscription:
                logger.error("Subscription checkout without subscription id", event_type="webhook_invalid_payload",
                             session_id=session.id)
                return EventOutcome.IGNORED
            # Stripe is read before the first write of this unit of work
            stripe_sub = StripeSubscription.model_validate(
                stripe_async.to_plain(await stripe_async.Subscription.retrieve(session.subscription))
            )

        if session.customer and user.stripe_customer_id != session.customer:
            await self.db.execute(
                update(User).where(User.id == user_id).values(stripe_customer_id=session.customer)
                .execution_options(synchronize_session=False)
            )
            set_committed_value(user, "stripe_customer_id", session.customer)

        amount = to_major_units(session.amount_total)
        currency = session.currency or self.config.currency

        if checkout_type == "credit_purchase":
            try:
                credits = int(session.metadata.get("credit_amount", "0"))
            except ValueError:
                credits = 0
            if credits <= 0:
                logger.error("Invalid credit amount in checkout metadata", event_type="webhook_invalid_payload",
                             session_id=session.id, credit_amount=session.metadata.get("credit_amount"))
                return EventOutcome.IGNORED

            await self.ledger.credit(
                user_id,
                CreditEventKind.PURCHASE,
                credits,
                description=f"Purchased {credits} credits",
                metadata={"stripe_session_id": session.id, "amount": str(amount)},
                commit=False,
            )
            await self.journal.record_or_adopt(
                user_id,
                TransactionType.CREDIT_PURCHASE,
                TransactionStatus.COMPLETED,
                stripe_session_id=session.id,
                stripe_payment_intent_id=session.payment_intent,
                amount=amount,
                currency=currency,
                credits_added=credits,
                description=f"Purchased {credits} credits",
                stripe_event_type="checkout.session.completed",
                event_metadata={"credit_amount": credits},
            )
            return EventOutcome.APPLIED

        if stripe_sub is not None:
            plan = stripe_sub.plan
            grant = self.config.credits_for_plan(plan)

            # Credit grant and activation land in the same commit
            await self.ledger.credit(
                user_id,
                CreditEventKind.ADDITION,
                grant,
                description=f"{plan.capitalize()} subscription credits",
                metadata={"stripe_session_id": session.id, "stripe_subscription_id": stripe_sub.id, "plan": plan},
                commit=False,
            )
            await self.entitlements.upsert_from_processor(user_id, stripe_sub)
            await self.journal.record_or_adopt(
                user_id,
                TransactionType.SUBSCRIPTION_PAYMENT,
                TransactionStatus.COMPLETED,
                stripe_session_id=session.id,
                stripe_subscription_id=stripe_sub.id,
                stripe_invoice_id=session.invoice,
                amount=amount,
                currency=currency,
                credits_added=grant,
                plan=plan,
                description=f"{plan.capitalize()} subscription",
                stripe_event_type="checkout.session.completed",
            )
            return EventOutcome.APPLIED

        logger.warning("Unknown checkout type in session metadata", event_type="webhook_invalid_payload",
                       session_id=session.id, checkout_type=checkout_type)
        return EventOutcome.IGNORED

    async def handle_subscription_updated(self, stripe_sub: StripeSubscription) -> EventOutcome:
        """Refresh status, period, cancel flag and plan. No credit effects."""
        record = await self.entitlements.get_by_stripe_id(stripe_sub.id)
        if record is None:
            logger.warning("Subscription not found for update", event_type="subscription_not_found",
                           stripe_subscription_id=stripe_sub.id)
            return EventOutcome.IGNORED

        self.entitlements.apply_processor_state(record, stripe_sub)
        await self.db.flush()

        period_end = as_utc(record.current_period_end)
        if record.status in (SubscriptionStatus.CANCELED.value, SubscriptionStatus.EXPIRED.value) \
                and (period_end is None or period_end <= utcnow()):
            await self._privatize_if_unentitled(record)
        return EventOutcome.APPLIED

    async def handle_subscription_deleted(self, stripe_sub: StripeSubscription) -> EventOutcome:
        """Expire the record and privatize the owner's public content."""
        record = await self.entitlements.get_by_stripe_id(stripe_sub.id)
        if record is None:
            logger.warning("Subscription not found for deletion", event_type="subscription_not_found",
                           stripe_subscription_id=stripe_sub.id)
            return EventOutcome.IGNORED

        record.status = SubscriptionStatus.EXPIRED.value
        record.cancel_at_period_end = False
        await self.db.flush()
        logger.info("Subscription expired", event_type="subscription_expired",
                    user_id=record.user_id, stripe_subscription_id=stripe_sub.id)

        await self._privatize_if_unentitled(record)
        return EventOutcome.APPLIED

    async def handle_invoice_payment_succeeded(self, invoice: Invoice) -> EventOutcome:
        """
        Grant the plan allotment for a renewal or plan-switch invoice.

        The first invoice of a subscription is covered by the checkout, and
        zero-amount invoices (pure proration credits) grant nothing. Keyed by
        invoice id.
        """
        if not invoice.subscription or invoice.billing_reason == "subscription_create":
            return EventOutcome.IGNORED
        if invoice.amount_paid <= 0:
            logger.info("Skipping zero-amount invoice", event_type="invoice_zero_amount", invoice_id=invoice.id)
            return EventOutcome.IGNORED

        record = await self.entitlements.get_by_stripe_id(invoice.subscription)
        if record is None:
            logger.warning("Subscription not found for invoice", event_type="subscription_not_found",
                           invoice_id=invoice.id, stripe_subscription_id=invoice.subscription)
            return EventOutcome.IGNORED

        if await self.journal.find_by_invoice(invoice.id) is not None:
            logger.info("Invoice already applied", event_type="invoice_already_processed", invoice_id=invoice.id)
            return EventOutcome.DUPLICATE

        is_switch = invoice.billing_reason == "subscription_update"
        plan = invoice.charged_plan or record.plan
        grant = self.config.credits_for_plan(plan)
        label = "Plan switch" if is_switch else "Subscription renewal"

        await self.ledger.credit(
            record.user_id,
            CreditEventKind.ADDITION,
            grant,
            description=f"{label} credits ({plan})",
            metadata={"stripe_invoice_id": invoice.id, "plan": plan},
            commit=False,
        )
        await self.journal.record_or_adopt(
            record.user_id,
            TransactionType.SUBSCRIPTION_SWITCH if is_switch else TransactionType.SUBSCRIPTION_RENEWAL,
            TransactionStatus.COMPLETED,
            stripe_invoice_id=invoice.id,
            stripe_subscription_id=invoice.subscription,
            stripe_payment_intent_id=invoice.payment_intent,
            amount=to_major_units(invoice.amount_paid),
            currency=invoice.currency or self.config.currency,
            credits_added=grant,
            plan=plan,
            description=f"{label} ({plan})",
            stripe_event_type="invoice.payment_succeeded",
            event_metadata={"billing_reason": invoice.billing_reason},
        )
        return EventOutcome.APPLIED

    async def handle_invoice_payment_failed(self, invoice: Invoice) -> EventOutcome:
        """Mark the subscription past due and journal the failure. No ledger effect."""
        if not invoice.subscription:
            return EventOutcome.IGNORED

        record = await self.entitlements.get_by_stripe_id(invoice.subscription)
        if record is None:
            logger.warning("Subscription not found for failed invoice", event_type="subscription_not_found",
                           invoice_id=invoice.id, stripe_subscription_id=invoice.subscription)
            return EventOutcome.IGNORED

        if await self.journal.find_by_invoice(invoice.id, TransactionStatus.FAILED) is not None:
            return EventOutcome.DUPLICATE

        if record.status != SubscriptionStatus.EXPIRED.value:
            record.status = SubscriptionStatus.PAST_DUE.value

        self.journal.record(
            record.user_id,
            TransactionType.SUBSCRIPTION_RENEWAL,
            TransactionStatus.FAILED,
            stripe_invoice_id=invoice.id,
            stripe_subscription_id=invoice.subscription,
            amount=to_major_units(invoice.amount_due),
            currency=invoice.currency or self.config.currency,
            plan=record.plan,
            description="Subscription payment failed",
            stripe_event_type="invoice.payment_failed",
        )
        await self.db.flush()
        logger.warning("Subscription payment failed", event_type="subscription_payment_failed",
                       user_id=record.user_id, invoice_id=invoice.id)
        return EventOutcome.APPLIED

    async def _privatize_if_unentitled(self, record: Subscription) -> None:
        user = await self.db.get(User, record.user_id)
        if user is None or user.is_admin:
            return
        if is_entitled(record) or await self.entitlements.is_subscribed(record.user_id):
            return
        await self.entitlements.privatize_public_content(record.user_id)
