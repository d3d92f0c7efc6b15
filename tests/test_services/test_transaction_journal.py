"""Tests for the transaction journal."""

from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from resume_billing.models.transaction import Transaction, TransactionStatus, TransactionType
from resume_billing.services.transaction_journal import TransactionJournal


class TestRecord:

    @pytest.mark.asyncio
    async def test_duplicate_completed_session_rejected(self, db, make_user):
        """A session id can carry only one completed entry."""
        user = await make_user()
        journal = TransactionJournal(db)
        journal.record(user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED, stripe_session_id="cs_1")
        await db.commit()

        journal.record(user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED, stripe_session_id="cs_1")
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

    @pytest.mark.asyncio
    async def test_failed_and_completed_share_invoice(self, db, make_user):
        user = await make_user()
        journal = TransactionJournal(db)
        journal.record(user.id, TransactionType.SUBSCRIPTION_RENEWAL, TransactionStatus.FAILED, stripe_invoice_id="in_1")
        journal.record(user.id, TransactionType.SUBSCRIPTION_RENEWAL, TransactionStatus.COMPLETED, stripe_invoice_id="in_1")
        await db.commit()

        assert (await journal.find_by_invoice("in_1")).status == TransactionStatus.COMPLETED.value
        assert (await journal.find_by_invoice("in_1", TransactionStatus.FAILED)).status == TransactionStatus.FAILED.value


class TestSyncedImports:

    @pytest.mark.asyncio
    async def test_synced_import_does_not_count_as_applied(self, db, make_user):
        user = await make_user()
        journal = TransactionJournal(db)
        journal.record(
            user.id, TransactionType.SUBSCRIPTION_RENEWAL, TransactionStatus.COMPLETED,
            stripe_invoice_id="in_1", stripe_event_type="charge.synced",
        )
        await db.commit()

        assert await journal.find_by_invoice("in_1") is None
        assert (await journal.find_synced_import(user.id, invoice_id="in_1")) is not None

    @pytest.mark.asyncio
    async def test_record_or_adopt_takes_over_import(self, db, make_user):
        user = await make_user()
        journal = TransactionJournal(db)
        imported = journal.record(
            user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED,
            stripe_payment_intent_id="pi_1", amount=Decimal("3.99"),
            stripe_event_type="payment_intent.synced", event_metadata={"synced": True},
        )
        await db.commit()

        tx = await journal.record_or_adopt(
            user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED,
            stripe_session_id="cs_1", stripe_payment_intent_id="pi_1", credits_added=5,
            stripe_event_type="checkout.session.completed", event_metadata={"credit_amount": 5},
        )
        await db.commit()

        assert tx.id == imported.id
        assert tx.stripe_session_id == "cs_1"
        assert tx.credits_added == 5
        assert tx.stripe_event_type == "checkout.session.completed"
        assert tx.event_metadata["adopted_from"] == "payment_intent.synced"
        assert tx.event_metadata["synced"] is True
        rows = (await db.execute(select(Transaction).where(Transaction.user_id == user.id))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_record_or_adopt_inserts_without_import(self, db, make_user):
        user = await make_user()
        journal = TransactionJournal(db)
        tx = await journal.record_or_adopt(
            user.id, TransactionType.SUBSCRIPTION_RENEWAL, TransactionStatus.COMPLETED, stripe_invoice_id="in_9",
        )
        await db.commit()
        assert tx.id is not None
        assert (await journal.find_by_invoice("in_9")).id == tx.id

    @pytest.mark.asyncio
    async def test_known_processor_refs(self, db, make_user):
        user = await make_user()
        journal = TransactionJournal(db)
        journal.record(
            user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED,
            stripe_payment_intent_id="pi_1", event_metadata={"charge_id": "ch_1"},
        )
        journal.record(user.id, TransactionType.SUBSCRIPTION_RENEWAL, TransactionStatus.COMPLETED, stripe_invoice_id="in_1")
        await db.commit()

        payment_refs, invoice_ids = await journal.known_processor_refs(user.id)
        assert payment_refs == {"pi_1", "ch_1"}
        assert invoice_ids == {"in_1"}


class TestListing:

    @pytest.mark.asyncio
    async def test_list_for_user_excludes_usage_and_other_users(self, db, make_user):
        user = await make_user()
        other = await make_user()
        journal = TransactionJournal(db)
        journal.record(user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED, stripe_session_id="cs_1")
        journal.record(user.id, TransactionType.CREDIT_USAGE, TransactionStatus.COMPLETED)
        journal.record(user.id, TransactionType.SUBSCRIPTION_RENEWAL, TransactionStatus.FAILED, stripe_invoice_id="in_1")
        journal.record(other.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED, stripe_session_id="cs_2")
        await db.commit()

        transactions, total = await journal.list_for_user(user.id)
        assert total == 2
        assert {tx.type for tx in transactions} == {"credit_purchase", "subscription_renewal"}

        renewals, renewal_total = await journal.list_for_user(user.id, type=TransactionType.SUBSCRIPTION_RENEWAL)
        assert renewal_total == 1

    @pytest.mark.asyncio
    async def test_list_all_filters(self, db, make_user):
        user = await make_user()
        other = await make_user()
        journal = TransactionJournal(db)
        journal.record(user.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.COMPLETED, stripe_session_id="cs_1")
        journal.record(other.id, TransactionType.CREDIT_PURCHASE, TransactionStatus.FAILED, stripe_session_id="cs_2")
        await db.commit()

        _, total = await journal.list_all()
        assert total == 2
        failed, failed_total = await journal.list_all(status=TransactionStatus.FAILED)
        assert failed_total == 1
        assert failed[0].user_id == other.id
        _, user_total = await journal.list_all(user_id=user.id, page=1, limit=1)
        assert user_total == 1
