"""Reconciliation service: user-triggered flows that talk to Stripe directly.

Checkout creation, cancellation, reactivation, plan switch and billing-portal
handoff drive Stripe; session verification, subscription sync and
transaction sync repair local state when a webhook was delayed or lost.

Every Stripe call happens before the local write it justifies. A Stripe
failure surfaces as ``PaymentProcessorError``/``ProcessorTimeoutError`` and
leaves local state untouched.
"""

from typing import Dict, List, Optional, Tuple

from fastapi import status
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from resume_billing.core.billing_config import BillingConfig
from resume_billing.core.exceptions import (
    BillingException, BillingValidationError, NotFoundError, SubscriptionConflictError
)
from resume_billing.log.logging import logger
from resume_billing.models.subscription import ENTITLED_STATUSES, Subscription
from resume_billing.models.transaction import Transaction, TransactionStatus, TransactionType
from resume_billing.models.user import User
from resume_billing.schemas.stripe_events import CheckoutSession, StripeSubscription
from resume_billing.services import stripe_async
from resume_billing.services.decorators import processor_error_handler
from resume_billing.services.entitlement_service import EntitlementStore
from resume_billing.services.transaction_journal import TransactionJournal
from resume_billing.services.utils import from_timestamp, to_major_units, to_minor_units
from resume_billing.services.webhook_service import EventOutcome, WebhookEventProcessor

# Invoice billing reason -> journal type for imported invoice-backed payments
_SYNC_TYPE_FOR_BILLING_REASON = {
    "subscription_cycle": TransactionType.SUBSCRIPTION_RENEWAL,
}


class ReconciliationService:
    """Client-facing subscription and checkout operations for one user request."""

    def __init__(self, db: AsyncSession, config: BillingConfig):
        self.db = db
        self.config = config
        self.entitlements = EntitlementStore(db)
        self.journal = TransactionJournal(db)

    @property
    def success_url(self) -> str:
        return f"{self.config.frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def cancel_url(self) -> str:
        return f"{self.config.frontend_url}/payment/cancel"

    async def _cache_customer_id(self, user: User, customer_id: str) -> None:
        if user.stripe_customer_id == customer_id:
            return
        await self.db.execute(
            update(User).where(User.id == user.id).values(stripe_customer_id=customer_id)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(user, "stripe_customer_id", customer_id)

    async def resolve_customer(self, user: User, lookup_remote: bool = False) -> Optional[str]:
        """
        Find the user's Stripe customer without creating one.

        Looks at local subscription records, then the cached id on the user,
        then (with ``lookup_remote``) searches Stripe by email. Nothing is
        written; callers cache a remote match with ``_cache_customer_id``
        once their last Stripe call has returned.
        """
        customer_id = await self.entitlements.get_customer_id(user.id) or user.stripe_customer_id
        if customer_id or not lookup_remote:
            return customer_id

        customers = stripe_async.to_plain(await stripe_async.Customer.list(email=user.email, limit=1))
        data = customers.get("data") or []
        if not data:
            return None
        return data[0]["id"]

    @processor_error_handler
    async def get_or_create_customer(self, user: User) -> str:
        customer_id = await self.resolve_customer(user)
        if customer_id:
            return customer_id

        customer = stripe_async.to_plain(await stripe_async.Customer.create(
            email=user.email,
            name=user.name,
            metadata={"user_id": str(user.id)},
        ))
        await self._cache_customer_id(user, customer["id"])
        await self.db.commit()
        logger.info("Created Stripe customer", event_type="stripe_customer_created",
                    user_id=user.id, customer_id=customer["id"])
        return customer["id"]

    @processor_error_handler
    async def create_credit_checkout(self, user: User, credit_amount: int) -> Tuple[str, Optional[str]]:
        """
        Create a one-off Stripe Checkout session for ``credit_amount`` credits.

        Returns:
            Tuple[str, Optional[str]]: checkout session id and redirect URL.
        """
        price = self.config.price_for_credits(credit_amount)
        customer_id = await self.get_or_create_customer(user)
        metadata = {"user_id": str(user.id), "type": "credit_purchase", "credit_amount": str(credit_amount)}

        session = stripe_async.to_plain(await stripe_async.CheckoutSession.create(
            customer=customer_id,
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": self.config.currency,
                    "product_data": {"name": f"{credit_amount} Credits"},
                    "unit_amount": to_minor_units(price),
                },
                "quantity": 1,
            }],
            success_url=self.success_url,
            cancel_url=self.cancel_url,
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
        ))

        logger.info("Created credit checkout session", event_type="checkout_session_created",
                    user_id=user.id, session_id=session["id"], credit_amount=credit_amount, price=str(price))
        return session["id"], session.get("url")

    async def _remote_active_subscription(self, customer_id: str) -> Optional[StripeSubscription]:
        subscriptions = stripe_async.to_plain(
            await stripe_async.Subscription.list(customer=customer_id, status="all", limit=10)
        )
        for data in subscriptions.get("data") or []:
            if data.get("status") in ENTITLED_STATUSES:
                return StripeSubscription.model_validate(data)
        return None

    @processor_error_handler
    async def create_subscription_checkout(self, user: User, plan: str) -> Tuple[str, Optional[str]]:
        """
        Create a Stripe Checkout session for a subscription to ``plan``.

        Rejected with 409 when an active subscription exists locally, or
        exists on Stripe without a local record (it is synced first).

        Returns:
            Tuple[str, Optional[str]]: checkout session id and redirect URL.
        """
        if await self.entitlements.is_subscribed(user.id):
            raise SubscriptionConflictError("You already have an active subscription")

        price_id = self.config.price_id_for_plan(plan)
        if not price_id:
            raise BillingValidationError(f"No price configured for the {plan} plan", context={"plan": plan})

        customer_id = await self.get_or_create_customer(user)

        remote = await self._remote_active_subscription(customer_id)
        if remote is not None:
            await self.entitlements.upsert_from_processor(user.id, remote)
            await self.db.commit()
            logger.warning("Active Stripe subscription found without local record", event_type="subscription_remote_duplicate",
                           user_id=user.id, stripe_subscription_id=remote.id)
            raise SubscriptionConflictError(
                "You already have an active subscription on Stripe. It has been synced.",
                context={"stripe_subscription_id": remote.id},
            )

        metadata = {"user_id": str(user.id), "type": "subscription", "plan": plan}
        session = stripe_async.to_plain(await stripe_async.CheckoutSession.create(
            customer=customer_id,
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=self.success_url,
            cancel_url=self.cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        ))

        await self.entitlements.create_pending(user.id, plan, customer_id)
        await self.db.commit()

        logger.info("Created subscription checkout session", event_type="checkout_session_created",
                    user_id=user.id, session_id=session["id"], plan=plan)
        return session["id"], session.get("url")

    async def get_subscription_status(self, user: User) -> Optional[Subscription]:
        return await self.entitlements.get_active(user.id)

    async def _require_active(self, user: User) -> Subscription:
        record = await self.entitlements.get_active(user.id)
        if record is None or not record.stripe_subscription_id:
            raise NotFoundError("No active subscription found")
        return record

    @processor_error_handler
    async def cancel_subscription(self, user: User) -> Subscription:
        """Schedule cancellation at the end of the current period."""
        record = await self._require_active(user)
        if record.cancel_at_period_end:
            return record

        stripe_sub = StripeSubscription.model_validate(stripe_async.to_plain(
            await stripe_async.Subscription.modify(record.stripe_subscription_id, cancel_at_period_end=True)
        ))
        self.entitlements.apply_processor_state(record, stripe_sub)
        await self.db.commit()

        logger.info("Subscription cancellation scheduled", event_type="subscription_cancel_scheduled",
                    user_id=user.id, stripe_subscription_id=record.stripe_subscription_id)
        return record

    @processor_error_handler
    async def reactivate_subscription(self, user: User) -> Subscription:
        """Undo a scheduled cancellation."""
        record = await self._require_active(user)
        if not record.cancel_at_period_end:
            raise SubscriptionConflictError("Subscription is not scheduled for cancellation")

        stripe_sub = StripeSubscription.model_validate(stripe_async.to_plain(
            await stripe_async.Subscription.modify(record.stripe_subscription_id, cancel_at_period_end=False)
        ))
        self.entitlements.apply_processor_state(record, stripe_sub)
        await self.db.commit()

        logger.info("Subscription reactivated", event_type="subscription_reactivated",
                    user_id=user.id, stripe_subscription_id=record.stripe_subscription_id)
        return record

    @processor_error_handler
    async def switch_plan(self, user: User, plan: str) -> Subscription:
        """
        Move the active subscription to ``plan`` with immediate proration.

        The billing cycle restarts now. No credits are granted here: the
        proration invoice's ``invoice.payment_succeeded`` event grants them.
        """
        record = await self._require_active(user)
        if record.cancel_at_period_end:
            raise SubscriptionConflictError("Cannot switch plans while a cancellation is pending")
        if record.plan == plan:
            raise BillingValidationError(f"Already subscribed to the {plan} plan", context={"plan": plan})

        price_id = self.config.price_id_for_plan(plan)
        if not price_id:
            raise BillingValidationError(f"No price configured for the {plan} plan", context={"plan": plan})

        current = StripeSubscription.model_validate(stripe_async.to_plain(
            await stripe_async.Subscription.retrieve(record.stripe_subscription_id)
        ))
        item = current.first_item
        if item is None:
            raise NotFoundError("Subscription has no items to switch",
                                context={"stripe_subscription_id": current.id})

        updated = StripeSubscription.model_validate(stripe_async.to_plain(
            await stripe_async.Subscription.modify(
                record.stripe_subscription_id,
                items=[{"id": item.id, "price": price_id}],
                proration_behavior="always_invoice",
                billing_cycle_anchor="now",
                metadata={"user_id": str(user.id), "plan": plan},
            )
        ))
        self.entitlements.apply_processor_state(record, updated)
        record.plan = plan
        await self.db.commit()

        logger.info("Subscription plan switched", event_type="subscription_plan_switched",
                    user_id=user.id, stripe_subscription_id=record.stripe_subscription_id, plan=plan)
        return record

    @processor_error_handler
    async def create_billing_portal_session(self, user: User) -> str:
        customer_id = await self.resolve_customer(user)
        if not customer_id:
            raise NotFoundError("No billing account found")

        portal = stripe_async.to_plain(await stripe_async.BillingPortalSession.create(
            customer=customer_id,
            return_url=f"{self.config.frontend_url}/subscription",
        ))
        return portal["url"]

    @processor_error_handler
    async def verify_session(self, user: User, session_id: str) -> Tuple[bool, Optional[Transaction]]:
        """
        Apply a completed checkout whose webhook has not arrived.

        Runs the same checkout-completion logic as the webhook path.

        Returns:
            Tuple[bool, Optional[Transaction]]: whether the session had already
            been applied, and its journal entry.
        """
        existing = await self.journal.find_by_session(session_id)
        if existing is not None:
            if existing.user_id != user.id:
                raise BillingException("Checkout session does not belong to this user",
                                       status_code=status.HTTP_403_FORBIDDEN)
            return True, existing

        session = CheckoutSession.model_validate(stripe_async.to_plain(
            await stripe_async.CheckoutSession.retrieve(session_id)
        ))
        if session.metadata.get("user_id") != str(user.id):
            logger.warning("Checkout session ownership mismatch", event_type="checkout_session_forbidden",
                           user_id=user.id, session_id=session_id)
            raise BillingException("Checkout session does not belong to this user",
                                   status_code=status.HTTP_403_FORBIDDEN)
        if session.payment_status != "paid":
            raise BillingValidationError("Checkout session is not paid",
                                         context={"payment_status": session.payment_status})

        processor = WebhookEventProcessor(self.db, self.config)
        try:
            outcome = await processor.handle_checkout_completed(session)
            await self.db.commit()
        except IntegrityError:
            # The webhook applied it in the meantime
            await self.db.rollback()
            outcome = EventOutcome.DUPLICATE
        except Exception:
            await self.db.rollback()
            raise

        if outcome == EventOutcome.IGNORED:
            raise BillingValidationError("Checkout session cannot be applied", context={"session_id": session_id})

        logger.info("Checkout session verified", event_type="checkout_session_verified",
                    user_id=user.id, session_id=session_id, outcome=outcome.value)
        return outcome != EventOutcome.APPLIED, await self.journal.find_by_session(session_id)

    @processor_error_handler
    async def sync_subscription(self, user: User) -> Tuple[bool, str, Optional[Subscription]]:
        """Upsert the customer's first active or trialing Stripe subscription."""
        customer_id = await self.resolve_customer(user, lookup_remote=True)
        if not customer_id:
            return False, "No Stripe customer found for your account.", None

        remote = await self._remote_active_subscription(customer_id)
        await self._cache_customer_id(user, customer_id)
        if remote is None:
            await self.db.commit()
            return False, "No active subscription found on Stripe.", None

        record = await self.entitlements.upsert_from_processor(user.id, remote)
        await self.db.commit()
        return True, "Subscription synced from Stripe.", record

    async def _classify_invoice(self, invoice_id: str, cache: Dict[str, TransactionType]) -> TransactionType:
        if invoice_id not in cache:
            invoice = stripe_async.to_plain(await stripe_async.Invoice.retrieve(invoice_id))
            cache[invoice_id] = _SYNC_TYPE_FOR_BILLING_REASON.get(
                invoice.get("billing_reason"), TransactionType.SUBSCRIPTION_PAYMENT
            )
        return cache[invoice_id]

    @processor_error_handler
    async def sync_transactions(self, user: User) -> Tuple[bool, int, str]:
        """
        Import succeeded Stripe charges and payment intents missing from the journal.

        Imports are journal entries only and grant no credits. A later webhook
        for the same payment takes the imported entry over.

        Returns:
            Tuple[bool, int, str]: synced flag, number imported, message.
        """
        customer_id = await self.resolve_customer(user, lookup_remote=True)
        if not customer_id:
            return False, 0, "No Stripe customer found for your account."

        charges = stripe_async.to_plain(await stripe_async.Charge.list(customer=customer_id, limit=100))
        intents = stripe_async.to_plain(await stripe_async.PaymentIntent.list(customer=customer_id, limit=100))

        payment_refs, invoice_ids = await self.journal.known_processor_refs(user.id)
        invoice_types: Dict[str, TransactionType] = {}
        pending: List[dict] = []

        for source, items in (("charge", charges.get("data") or []), ("payment_intent", intents.get("data") or [])):
            for item in items:
                if item.get("status") != "succeeded":
                    continue
                payment_intent_id = item["id"] if source == "payment_intent" else (item.get("payment_intent") or item["id"])
                invoice_id = item.get("invoice")
                if isinstance(invoice_id, dict):
                    invoice_id = invoice_id.get("id")
                if payment_intent_id in payment_refs or item["id"] in payment_refs or (invoice_id and invoice_id in invoice_ids):
                    continue

                tx_type = await self._classify_invoice(invoice_id, invoice_types) if invoice_id \
                    else TransactionType.CREDIT_PURCHASE
                pending.append({
                    "source": source,
                    "item": item,
                    "payment_intent_id": payment_intent_id,
                    "invoice_id": invoice_id,
                    "type": tx_type,
                })
                payment_refs.update({payment_intent_id, item["id"]})
                if invoice_id:
                    invoice_ids.add(invoice_id)

        # Stripe calls are done; nothing below can fail on the processor side
        await self._cache_customer_id(user, customer_id)
        for entry in pending:
            item = entry["item"]
            amount = to_major_units(item.get("amount"))
            currency = item.get("currency") or self.config.currency
            label = entry["type"].value.replace("_", " ").capitalize()
            metadata = {
                "synced": True,
                f"{entry['source']}_id": item["id"],
                "original_created_at": from_timestamp(item.get("created")).isoformat() if item.get("created") else None,
            }
            credit_amount = (item.get("metadata") or {}).get("credit_amount")
            if credit_amount:
                metadata["credit_amount"] = credit_amount
            self.journal.record(
                user.id,
                entry["type"],
                TransactionStatus.COMPLETED,
                stripe_payment_intent_id=entry["payment_intent_id"],
                stripe_invoice_id=entry["invoice_id"],
                amount=amount,
                currency=currency,
                description=f"{label} - {amount} {currency.upper()}",
                stripe_event_type=f"{entry['source']}.synced",
                event_metadata=metadata,
            )
        await self.db.commit()

        imported = len(pending)
        logger.info(f"Imported {imported} transactions from Stripe", event_type="transactions_synced",
                    user_id=user.id, imported=imported)
        if imported == 0:
            return True, 0, "Transactions are already up to date."
        return True, imported, f"Imported {imported} transactions from Stripe."
