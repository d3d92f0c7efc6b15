"""Transaction journal: append-only record of financial events."""

from typing import Any, List, Optional, Set, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from resume_billing.log.logging import logger
from resume_billing.models.transaction import Transaction, TransactionStatus, TransactionType

# stripe_event_type of entries imported by transaction sync
SYNCED_EVENT_TYPES = ("charge.synced", "payment_intent.synced")

_not_synced = or_(
    Transaction.stripe_event_type.is_(None),
    Transaction.stripe_event_type.not_in(SYNCED_EVENT_TYPES),
)


class TransactionJournal:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_session(
        self, session_id: str, status: TransactionStatus = TransactionStatus.COMPLETED
    ) -> Optional[Transaction]:
        result = await self.db.execute(
            select(Transaction).where(
                Transaction.stripe_session_id == session_id,
                Transaction.status == status.value,
            )
        )
        return result.scalars().first()

    async def find_by_invoice(
        self, invoice_id: str, status: TransactionStatus = TransactionStatus.COMPLETED
    ) -> Optional[Transaction]:
        """Entry written when the invoice's event was applied. Sync imports do not count."""
        result = await self.db.execute(
            select(Transaction).where(
                Transaction.stripe_invoice_id == invoice_id,
                Transaction.status == status.value,
                _not_synced,
            )
        )
        return result.scalars().first()

    async def find_synced_import(
        self,
        user_id: int,
        invoice_id: Optional[str] = None,
        payment_intent_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        refs = []
        if invoice_id:
            refs.append(Transaction.stripe_invoice_id == invoice_id)
        if payment_intent_id:
            refs.append(Transaction.stripe_payment_intent_id == payment_intent_id)
        if not refs:
            return None
        result = await self.db.execute(
            select(Transaction).where(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.COMPLETED.value,
                Transaction.stripe_event_type.in_(SYNCED_EVENT_TYPES),
                or_(*refs),
            )
        )
        return result.scalars().first()

    async def known_processor_refs(self, user_id: int) -> Tuple[Set[str], Set[str]]:
        """
        Stripe payment references already journaled for a user.

        Returns:
            Tuple[Set[str], Set[str]]: payment-intent and charge ids, and invoice ids.
        """
        result = await self.db.execute(
            select(Transaction).where(Transaction.user_id == user_id)
        )
        payment_refs: Set[str] = set()
        invoice_ids: Set[str] = set()
        for tx in result.scalars().all():
            metadata = tx.event_metadata or {}
            for ref in (tx.stripe_payment_intent_id, metadata.get("charge_id"), metadata.get("payment_intent_id")):
                if ref:
                    payment_refs.add(ref)
            if tx.stripe_invoice_id:
                invoice_ids.add(tx.stripe_invoice_id)
        return payment_refs, invoice_ids

    def record(self, user_id: int, type: TransactionType, status: TransactionStatus, **fields: Any) -> Transaction:
        """Append an entry to the current unit of work. The caller commits."""
        tx = Transaction(user_id=user_id, type=type.value, status=status.value, **fields)
        self.db.add(tx)
        logger.info(
            f"Journaled {type.value} transaction ({status.value})",
            event_type="transaction_recorded",
            user_id=user_id,
            transaction_type=type.value,
            status=status.value,
            session_id=fields.get("stripe_session_id"),
            invoice_id=fields.get("stripe_invoice_id"),
        )
        return tx

    async def record_or_adopt(
        self, user_id: int, type: TransactionType, status: TransactionStatus, **fields: Any
    ) -> Transaction:
        """
        Journal a completed payment event, taking over a matching sync import if there is one.

        Transaction sync may import a payment before its webhook arrives. The
        import carries the same Stripe references, so the event's entry
        replaces it in place instead of colliding with it.
        """
        existing = None
        if status == TransactionStatus.COMPLETED:
            existing = await self.find_synced_import(
                user_id,
                invoice_id=fields.get("stripe_invoice_id"),
                payment_intent_id=fields.get("stripe_payment_intent_id"),
            )
        if existing is None:
            return self.record(user_id, type, status, **fields)

        metadata = {**(existing.event_metadata or {}), **(fields.pop("event_metadata", None) or {})}
        metadata["adopted_from"] = existing.stripe_event_type
        for key, value in fields.items():
            if value is not None:
                setattr(existing, key, value)
        existing.type = type.value
        existing.event_metadata = metadata

        logger.info(
            f"Adopted synced transaction as {type.value}",
            event_type="transaction_adopted",
            user_id=user_id,
            transaction_id=existing.id,
            session_id=fields.get("stripe_session_id"),
            invoice_id=fields.get("stripe_invoice_id"),
        )
        return existing

    async def list_for_user(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        type: Optional[TransactionType] = None,
    ) -> Tuple[List[Transaction], int]:
        """A user's financial history, newest first. Pure credit usage is excluded."""
        conditions = [
            Transaction.user_id == user_id,
            Transaction.is_deleted.is_(False),
            Transaction.type != TransactionType.CREDIT_USAGE.value,
        ]
        if type is not None:
            conditions.append(Transaction.type == type.value)
        return await self._paginate(conditions, page, limit)

    async def list_all(
        self,
        page: int = 1,
        limit: int = 20,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        user_id: Optional[int] = None,
    ) -> Tuple[List[Transaction], int]:
        conditions = [Transaction.is_deleted.is_(False)]
        if type is not None:
            conditions.append(Transaction.type == type.value)
        if status is not None:
            conditions.append(Transaction.status == status.value)
        if user_id is not None:
            conditions.append(Transaction.user_id == user_id)
        return await self._paginate(conditions, page, limit)

    async def _paginate(self, conditions, page: int, limit: int) -> Tuple[List[Transaction], int]:
        total = (await self.db.execute(
            select(func.count()).select_from(Transaction).where(*conditions)
        )).scalar_one()
        result = await self.db.execute(
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total
