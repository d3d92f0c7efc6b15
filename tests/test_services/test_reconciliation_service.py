"""Tests for the reconciliation service (Stripe calls mocked)."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from sqlalchemy import func, select

from resume_billing.core.exceptions import (
    BillingException, BillingValidationError, NotFoundError, PaymentProcessorError,
    ProcessorTimeoutError, SubscriptionConflictError,
)
from resume_billing.models.subscription import Subscription, SubscriptionStatus
from resume_billing.models.transaction import Transaction, TransactionStatus, TransactionType
from resume_billing.services import stripe_async
from resume_billing.services.reconciliation_service import ReconciliationService
from resume_billing.services.utils import utcnow


@pytest.fixture
def service(db, billing_config):
    return ReconciliationService(db, billing_config)


@pytest.fixture
def active_subscription(db):
    async def _make(user, plan="monthly", cancel_at_period_end=False):
        record = Subscription(
            user_id=user.id,
            stripe_subscription_id="sub_123",
            stripe_customer_id="cus_123",
            plan=plan,
            status=SubscriptionStatus.ACTIVE.value,
            cancel_at_period_end=cancel_at_period_end,
            current_period_start=utcnow() - timedelta(days=1),
            current_period_end=utcnow() + timedelta(days=29),
        )
        db.add(record)
        await db.commit()
        return record

    return _make


def _list(*items):
    return {"object": "list", "data": list(items)}


class TestCheckout:

    @pytest.mark.asyncio
    async def test_credit_checkout_uses_package_price(self, service, make_user):
        user = await make_user(stripe_customer_id="cus_123")
        create = AsyncMock(return_value={"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"})

        with patch.object(stripe_async.AsyncStripeCheckoutSession, "create", new=create):
            session_id, url = await service.create_credit_checkout(user, 15)

        assert session_id == "cs_1"
        assert url.endswith("cs_1")
        params = create.call_args.kwargs
        assert params["mode"] == "payment"
        assert params["customer"] == "cus_123"
        assert params["line_items"][0]["price_data"]["unit_amount"] == 999
        assert params["metadata"] == {"user_id": str(user.id), "type": "credit_purchase", "credit_amount": "15"}
        assert "{CHECKOUT_SESSION_ID}" in params["success_url"]

    @pytest.mark.asyncio
    async def test_customer_created_once(self, service, make_user):
        user = await make_user()
        create_customer = AsyncMock(return_value={"id": "cus_new"})

        with patch.object(stripe_async.AsyncStripeCustomer, "create", new=create_customer):
            assert await service.get_or_create_customer(user) == "cus_new"
            assert await service.get_or_create_customer(user) == "cus_new"

        create_customer.assert_awaited_once()
        assert user.stripe_customer_id == "cus_new"

    @pytest.mark.asyncio
    async def test_subscription_checkout_creates_pending_record(self, db, service, make_user):
        user = await make_user(stripe_customer_id="cus_123")

        with patch.object(stripe_async.AsyncStripeSubscription, "list", new=AsyncMock(return_value=_list())), \
                patch.object(stripe_async.AsyncStripeCheckoutSession, "create",
                             new=AsyncMock(return_value={"id": "cs_sub", "url": None})) as create:
            session_id, _ = await service.create_subscription_checkout(user, "yearly")

        assert session_id == "cs_sub"
        assert create.call_args.kwargs["line_items"] == [{"price": "price_yearly", "quantity": 1}]
        record = (await db.execute(select(Subscription).where(Subscription.user_id == user.id))).scalar_one()
        assert record.status == SubscriptionStatus.INCOMPLETE.value
        assert record.plan == "yearly"

    @pytest.mark.asyncio
    async def test_subscription_checkout_rejected_when_subscribed(self, service, make_user, active_subscription):
        user = await make_user()
        await active_subscription(user)
        with pytest.raises(SubscriptionConflictError):
            await service.create_subscription_checkout(user, "monthly")

    @pytest.mark.asyncio
    async def test_remote_active_subscription_synced_and_rejected(self, db, service, make_user, stripe_subscription):
        user = await make_user(stripe_customer_id="cus_123")
        create = AsyncMock()

        with patch.object(stripe_async.AsyncStripeSubscription, "list",
                          new=AsyncMock(return_value=_list(stripe_subscription(sub_id="sub_remote")))), \
                patch.object(stripe_async.AsyncStripeCheckoutSession, "create", new=create):
            with pytest.raises(SubscriptionConflictError) as exc_info:
                await service.create_subscription_checkout(user, "monthly")

        assert exc_info.value.status_code == 409
        assert "synced" in exc_info.value.detail
        create.assert_not_awaited()
        record = (await db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == "sub_remote")
        )).scalar_one()
        assert record.status == SubscriptionStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_processor_error(self, service, make_user):
        user = await make_user(stripe_customer_id="cus_123")
        with patch.object(stripe_async.AsyncStripeCheckoutSession, "create",
                          new=AsyncMock(side_effect=stripe.APIConnectionError("down"))):
            with pytest.raises(PaymentProcessorError) as exc_info:
                await service.create_credit_checkout(user, 5)
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_stripe_timeout(self, service, make_user):
        user = await make_user(stripe_customer_id="cus_123")
        with patch.object(stripe_async.AsyncStripeCheckoutSession, "create",
                          new=AsyncMock(side_effect=asyncio.TimeoutError())):
            with pytest.raises(ProcessorTimeoutError) as exc_info:
                await service.create_credit_checkout(user, 5)
        assert exc_info.value.status_code == 504


class TestSubscriptionManagement:

    @pytest.mark.asyncio
    async def test_cancel_schedules_and_is_idempotent(self, service, make_user, active_subscription,
                                                      stripe_subscription):
        user = await make_user()
        await active_subscription(user)
        modify = AsyncMock(return_value=stripe_subscription(cancel_at_period_end=True))

        with patch.object(stripe_async.AsyncStripeSubscription, "modify", new=modify):
            record = await service.cancel_subscription(user)
            again = await service.cancel_subscription(user)

        assert record.cancel_at_period_end is True
        assert again.id == record.id
        modify.assert_awaited_once_with("sub_123", cancel_at_period_end=True)

    @pytest.mark.asyncio
    async def test_cancel_without_subscription(self, service, make_user):
        user = await make_user()
        with pytest.raises(NotFoundError):
            await service.cancel_subscription(user)

    @pytest.mark.asyncio
    async def test_reactivate_requires_pending_cancellation(self, service, make_user, active_subscription):
        user = await make_user()
        await active_subscription(user)
        with pytest.raises(SubscriptionConflictError):
            await service.reactivate_subscription(user)

    @pytest.mark.asyncio
    async def test_reactivate(self, service, make_user, active_subscription, stripe_subscription):
        user = await make_user()
        await active_subscription(user, cancel_at_period_end=True)
        with patch.object(stripe_async.AsyncStripeSubscription, "modify",
                          new=AsyncMock(return_value=stripe_subscription(cancel_at_period_end=False))):
            record = await service.reactivate_subscription(user)
        assert record.cancel_at_period_end is False

    @pytest.mark.asyncio
    async def test_switch_plan_prorates_now_without_credits(self, service, make_user, active_subscription,
                                                            stripe_subscription, balance_of):
        user = await make_user(credits=3)
        await active_subscription(user)
        modify = AsyncMock(return_value=stripe_subscription(interval="year", price_id="price_yearly"))

        with patch.object(stripe_async.AsyncStripeSubscription, "retrieve",
                          new=AsyncMock(return_value=stripe_subscription())), \
                patch.object(stripe_async.AsyncStripeSubscription, "modify", new=modify):
            record = await service.switch_plan(user, "yearly")

        params = modify.call_args.kwargs
        assert params["items"] == [{"id": "si_123", "price": "price_yearly"}]
        assert params["proration_behavior"] == "always_invoice"
        assert params["billing_cycle_anchor"] == "now"
        assert record.plan == "yearly"
        assert await balance_of(user.id) == 3

    @pytest.mark.asyncio
    async def test_switch_to_same_plan_rejected(self, service, make_user, active_subscription):
        user = await make_user()
        await active_subscription(user, plan="monthly")
        with pytest.raises(BillingValidationError):
            await service.switch_plan(user, "monthly")

    @pytest.mark.asyncio
    async def test_switch_blocked_by_pending_cancellation(self, service, make_user, active_subscription):
        user = await make_user()
        await active_subscription(user, cancel_at_period_end=True)
        with pytest.raises(SubscriptionConflictError):
            await service.switch_plan(user, "yearly")

    @pytest.mark.asyncio
    async def test_billing_portal_requires_customer(self, service, make_user):
        user = await make_user()
        with pytest.raises(NotFoundError):
            await service.create_billing_portal_session(user)

    @pytest.mark.asyncio
    async def test_billing_portal(self, service, make_user):
        user = await make_user(stripe_customer_id="cus_123")
        create = AsyncMock(return_value={"url": "https://billing.stripe.test/p"})
        with patch.object(stripe_async.AsyncStripeBillingPortalSession, "create", new=create):
            assert await service.create_billing_portal_session(user) == "https://billing.stripe.test/p"
        assert create.call_args.kwargs["return_url"].endswith("/subscription")


class TestVerifySession:

    @pytest.mark.asyncio
    async def test_verify_applies_missed_webhook(self, service, make_user, checkout_session, balance_of):
        user = await make_user()
        with patch.object(stripe_async.AsyncStripeCheckoutSession, "retrieve",
                          new=AsyncMock(return_value=checkout_session(user.id, credit_amount=10))):
            already_processed, tx = await service.verify_session(user, "cs_test_123")
            again, _ = await service.verify_session(user, "cs_test_123")

        assert already_processed is False
        assert tx.credits_added == 10
        assert again is True
        assert await balance_of(user.id) == 10

    @pytest.mark.asyncio
    async def test_verify_rejects_foreign_session(self, service, make_user, checkout_session, balance_of):
        owner = await make_user()
        intruder = await make_user()
        with patch.object(stripe_async.AsyncStripeCheckoutSession, "retrieve",
                          new=AsyncMock(return_value=checkout_session(owner.id))):
            with pytest.raises(BillingException) as exc_info:
                await service.verify_session(intruder, "cs_test_123")

        assert exc_info.value.status_code == 403
        assert await balance_of(owner.id) == 0

    @pytest.mark.asyncio
    async def test_verify_rejects_foreign_applied_session(self, service, make_user, checkout_session):
        owner = await make_user()
        intruder = await make_user()
        with patch.object(stripe_async.AsyncStripeCheckoutSession, "retrieve",
                          new=AsyncMock(return_value=checkout_session(owner.id))):
            await service.verify_session(owner, "cs_test_123")
        with pytest.raises(BillingException) as exc_info:
            await service.verify_session(intruder, "cs_test_123")
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_verify_unpaid_session(self, service, make_user, checkout_session):
        user = await make_user()
        with patch.object(stripe_async.AsyncStripeCheckoutSession, "retrieve",
                          new=AsyncMock(return_value=checkout_session(user.id, payment_status="unpaid"))):
            with pytest.raises(BillingValidationError):
                await service.verify_session(user, "cs_test_123")


class TestSync:

    @pytest.mark.asyncio
    async def test_sync_subscription(self, db, service, make_user, stripe_subscription):
        user = await make_user(stripe_customer_id="cus_123")
        with patch.object(stripe_async.AsyncStripeSubscription, "list",
                          new=AsyncMock(return_value=_list(stripe_subscription(status="canceled"),
                                                           stripe_subscription(sub_id="sub_live")))):
            synced, _, record = await service.sync_subscription(user)

        assert synced is True
        assert record.stripe_subscription_id == "sub_live"

    @pytest.mark.asyncio
    async def test_sync_subscription_looks_up_customer_by_email(self, service, make_user):
        user = await make_user()
        with patch.object(stripe_async.AsyncStripeCustomer, "list",
                          new=AsyncMock(return_value=_list({"id": "cus_found"}))), \
                patch.object(stripe_async.AsyncStripeSubscription, "list", new=AsyncMock(return_value=_list())):
            synced, message, record = await service.sync_subscription(user)

        assert synced is False
        assert record is None
        assert user.stripe_customer_id == "cus_found"

    @pytest.mark.asyncio
    async def test_sync_transactions_imports_without_credits(self, db, service, make_user, balance_of):
        user = await make_user(stripe_customer_id="cus_123")
        charges = _list(
            {"id": "ch_1", "status": "succeeded", "amount": 399, "currency": "usd", "payment_intent": "pi_1",
             "invoice": None, "created": 1700000000, "metadata": {"credit_amount": "5"}},
            {"id": "ch_2", "status": "succeeded", "amount": 799, "currency": "usd", "payment_intent": "pi_2",
             "invoice": "in_2", "created": 1700000100},
            {"id": "ch_3", "status": "failed", "amount": 799, "currency": "usd", "payment_intent": "pi_3"},
        )
        intents = _list(
            {"id": "pi_1", "status": "succeeded", "amount": 399, "currency": "usd"},
        )

        with patch.object(stripe_async.AsyncStripeCharge, "list", new=AsyncMock(return_value=charges)), \
                patch.object(stripe_async.AsyncStripePaymentIntent, "list", new=AsyncMock(return_value=intents)), \
                patch.object(stripe_async.AsyncStripeInvoice, "retrieve",
                             new=AsyncMock(return_value={"id": "in_2", "billing_reason": "subscription_cycle"})):
            synced, imported, _ = await service.sync_transactions(user)
            _, imported_again, message = await service.sync_transactions(user)

        assert synced is True
        assert imported == 2
        assert imported_again == 0
        assert message == "Transactions are already up to date."
        assert await balance_of(user.id) == 0

        rows = (await db.execute(
            select(Transaction).where(Transaction.user_id == user.id).order_by(Transaction.id)
        )).scalars().all()
        assert [row.type for row in rows] == [
            TransactionType.CREDIT_PURCHASE.value, TransactionType.SUBSCRIPTION_RENEWAL.value
        ]
        assert all(row.stripe_event_type == "charge.synced" for row in rows)
        assert all(row.credits_added == 0 for row in rows)
        assert rows[0].event_metadata["credit_amount"] == "5"

    @pytest.mark.asyncio
    async def test_sync_skips_journaled_payments(self, db, service, make_user):
        user = await make_user(stripe_customer_id="cus_123")
        service.journal.record(user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED,
                               stripe_payment_intent_id="pi_1", stripe_session_id="cs_1")
        await db.commit()

        with patch.object(stripe_async.AsyncStripeCharge, "list", new=AsyncMock(return_value=_list(
                {"id": "ch_1", "status": "succeeded", "amount": 399, "payment_intent": "pi_1"}))), \
                patch.object(stripe_async.AsyncStripePaymentIntent, "list", new=AsyncMock(return_value=_list())):
            _, imported, _ = await service.sync_transactions(user)

        assert imported == 0
        total = (await db.execute(select(func.count()).select_from(Transaction))).scalar_one()
        assert total == 1
