"""Credit ledger: the only writer of ``users.credits``.

Every balance change is a single conditional ``UPDATE ... RETURNING`` on the
user row plus one appended ``CreditLedgerEntry``, flushed in the same
database transaction. There is no read-modify-write anywhere in this module
except the administrative ``set`` operation, which is last-writer-wins by
definition and is logged as such.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from resume_billing.core.billing_config import ACTION_LABELS, BillingConfig
from resume_billing.core.exceptions import BillingValidationError, NotFoundError
from resume_billing.log.logging import logger
from resume_billing.models.credit import CreditEventKind, CreditLedgerEntry
from resume_billing.models.user import User
from resume_billing.schemas.credit_schemas import AdjustmentOperation
from resume_billing.services.decorators import db_error_handler


@dataclass(frozen=True)
class CreditCheck:
    allowed: bool
    required: int
    available: int


@dataclass(frozen=True)
class DebitResult:
    """
    Outcome of ``CreditLedger.debit``.

    ``success`` is False only for insufficient credits; ``required`` and
    ``available`` are then what the client needs to offer a purchase.
    """
    success: bool
    required: int
    available: int
    deducted: int = 0
    remaining: int = 0
    unlimited: bool = False


class CreditLedger:
    """Atomic check, debit and credit operations on a user's balance."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_balance(self, user_id: int) -> int:
        result = await self.db.execute(select(User.credits).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError("User not found", context={"user_id": user_id})
        return balance

    async def check_credits(self, user: User, action: str, config: BillingConfig) -> CreditCheck:
        """
        Check whether ``user`` can afford ``action``.

        Administrators are always allowed and are never charged. Unknown
        actions raise ``BillingValidationError``.
        """
        required = config.cost_for(action)
        available = await self.get_balance(user.id)
        if user.is_admin:
            return CreditCheck(allowed=True, required=0, available=available)
        return CreditCheck(allowed=available >= required, required=required, available=available)

    @db_error_handler
    async def debit(self, user: User, action: str, config: BillingConfig, commit: bool = True) -> DebitResult:
        """
        Charge ``user`` for ``action``.

        The decrement is conditional on ``credits >= required`` in the same
        statement, so two concurrent debits can never overdraw the balance
        even if both passed the preliminary check. On insufficient credits
        nothing is written.
        """
        check = await self.check_credits(user, action, config)
        label = ACTION_LABELS.get(action, action)

        if user.is_admin:
            self.db.add(CreditLedgerEntry(
                user_id=user.id,
                kind=CreditEventKind.USAGE.value,
                action=action,
                credits=0,
                balance_after=check.available,
                description=f"{label} (admin - unlimited)",
                event_metadata={"unlimited": True},
            ))
            if commit:
                await self.db.commit()
            logger.info(
                "Admin action recorded without charge",
                event_type="credits_debited",
                user_id=user.id,
                action=action,
                unlimited=True,
            )
            return DebitResult(
                success=True, required=0, available=check.available,
                deducted=0, remaining=check.available, unlimited=True
            )

        if not check.allowed:
            logger.warning(
                "Insufficient credits",
                event_type="insufficient_credits",
                user_id=user.id,
                action=action,
                required=check.required,
                available=check.available,
            )
            return DebitResult(success=False, required=check.required, available=check.available)

        stmt = (
            update(User)
            .where(User.id == user.id, User.credits >= check.required)
            .values(credits=User.credits - check.required)
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        remaining = (await self.db.execute(stmt)).scalar_one_or_none()

        if remaining is None:
            # Balance dropped between the check and the update; nothing was written
            available = await self.get_balance(user.id)
            logger.warning(
                "Insufficient credits at debit time",
                event_type="insufficient_credits",
                user_id=user.id,
                action=action,
                required=check.required,
                available=available,
            )
            return DebitResult(success=False, required=check.required, available=available)

        self.db.add(CreditLedgerEntry(
            user_id=user.id,
            kind=CreditEventKind.USAGE.value,
            action=action,
            credits=check.required,
            balance_after=remaining,
            description=label,
            event_metadata={"credits_before": remaining + check.required, "credits_after": remaining},
        ))
        if commit:
            await self.db.commit()
        set_committed_value(user, "credits", remaining)

        logger.info(
            f"Debited {check.required} credits for {action}",
            event_type="credits_debited",
            user_id=user.id,
            action=action,
            deducted=check.required,
            remaining=remaining,
        )
        return DebitResult(
            success=True, required=check.required, available=check.available,
            deducted=check.required, remaining=remaining
        )

    @db_error_handler
    async def credit(
        self,
        user_id: int,
        kind: CreditEventKind,
        amount: int,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> int:
        """
        Add ``amount`` credits and append a ledger entry of ``kind``.

        With ``commit=False`` the change joins the caller's unit of work
        (the webhook processor commits once per event).

        Returns:
            int: The balance after the increment.
        """
        if amount < 0:
            raise BillingValidationError("Credit amount must not be negative", context={"amount": amount})

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(credits=User.credits + amount)
            .returning(User.credits)
            .execution_options(synchronize_session=False)
        )
        balance = (await self.db.execute(stmt)).scalar_one_or_none()
        if balance is None:
            raise NotFoundError("User not found", context={"user_id": user_id})

        self.db.add(CreditLedgerEntry(
            user_id=user_id,
            kind=kind.value,
            credits=amount,
            balance_after=balance,
            description=description,
            event_metadata=metadata or {},
        ))
        if commit:
            await self.db.commit()

        logger.info(
            f"Added {amount} credits ({kind.value})",
            event_type="credits_added",
            user_id=user_id,
            kind=kind.value,
            amount=amount,
            balance=balance,
        )
        return balance

    async def has_initial_grant(self, user_id: int) -> bool:
        existing = await self.db.execute(
            select(CreditLedgerEntry.id).where(
                CreditLedgerEntry.user_id == user_id,
                CreditLedgerEntry.kind == CreditEventKind.INITIAL.value,
            ).limit(1)
        )
        return existing.scalar_one_or_none() is not None

    async def grant_initial_credits(self, user_id: int, config: BillingConfig) -> Optional[int]:
        """
        Grant the sign-up allotment once.

        The unique index on ``initial`` entries decides between overlapping
        requests: the loser's increment is rolled back with its entry.

        Returns:
            Optional[int]: The new balance, or None if already granted.
        """
        if await self.has_initial_grant(user_id):
            logger.info("Initial credits already granted", event_type="initial_credits_already_granted", user_id=user_id)
            return None

        try:
            balance = await self.credit(
                user_id,
                CreditEventKind.INITIAL,
                config.initial_credits,
                description="Welcome credits",
                commit=False,
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Initial credits granted concurrently", event_type="initial_credits_already_granted",
                        user_id=user_id)
            return None
        return balance

    @db_error_handler
    async def admin_adjust(
        self,
        admin: User,
        user_id: int,
        credits: int,
        operation: AdjustmentOperation,
        reason: Optional[str] = None,
    ) -> Tuple[int, int]:
        """
        Apply an administrative balance change.

        ``add`` and ``subtract`` are conditional atomic updates; ``subtract``
        never takes the balance below zero. ``set`` overwrites the balance
        (last writer wins); the row is locked where the database supports it.

        Returns:
            Tuple[int, int]: previous balance and new balance.
        """
        if operation == AdjustmentOperation.SET:
            previous_stmt = select(User.credits).where(User.id == user_id).with_for_update()
            previous = (await self.db.execute(previous_stmt)).scalar_one_or_none()
            if previous is None:
                raise NotFoundError("User not found", context={"user_id": user_id})
            stmt = (
                update(User).where(User.id == user_id).values(credits=credits)
                .returning(User.credits).execution_options(synchronize_session=False)
            )
            new_balance = (await self.db.execute(stmt)).scalar_one()
            magnitude = abs(new_balance - previous)
            direction = "credit" if new_balance >= previous else "debit"
        elif operation == AdjustmentOperation.SUBTRACT:
            stmt = (
                update(User).where(User.id == user_id, User.credits >= credits)
                .values(credits=User.credits - credits)
                .returning(User.credits).execution_options(synchronize_session=False)
            )
            new_balance = (await self.db.execute(stmt)).scalar_one_or_none()
            if new_balance is None:
                await self.get_balance(user_id)
                raise BillingValidationError(
                    "Resulting balance cannot be negative",
                    context={"user_id": user_id, "credits": credits},
                )
            previous, magnitude, direction = new_balance + credits, credits, "debit"
        else:
            stmt = (
                update(User).where(User.id == user_id)
                .values(credits=User.credits + credits)
                .returning(User.credits).execution_options(synchronize_session=False)
            )
            new_balance = (await self.db.execute(stmt)).scalar_one_or_none()
            if new_balance is None:
                raise NotFoundError("User not found", context={"user_id": user_id})
            previous, magnitude, direction = new_balance - credits, credits, "credit"

        self.db.add(CreditLedgerEntry(
            user_id=user_id,
            kind=CreditEventKind.ADMIN_ADJUSTMENT.value,
            credits=magnitude,
            balance_after=new_balance,
            description=reason or f"Admin {operation.value} adjustment",
            event_metadata={
                "operation": operation.value,
                "direction": direction,
                "previous_balance": previous,
                "admin_id": admin.id,
            },
        ))
        await self.db.commit()

        logger.info(
            f"Admin credit adjustment ({operation.value})",
            event_type="credits_admin_adjusted",
            user_id=user_id,
            admin_id=admin.id,
            operation=operation.value,
            previous_balance=previous,
            new_balance=new_balance,
        )
        return previous, new_balance

    async def get_history(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 20,
        kind: Optional[CreditEventKind] = None,
    ) -> Tuple[List[CreditLedgerEntry], int]:
        """Ledger entries for a user, newest first, with the total count."""
        conditions = [CreditLedgerEntry.user_id == user_id]
        if kind is not None:
            conditions.append(CreditLedgerEntry.kind == kind.value)

        total = (await self.db.execute(
            select(func.count()).select_from(CreditLedgerEntry).where(*conditions)
        )).scalar_one()

        result = await self.db.execute(
            select(CreditLedgerEntry)
            .where(*conditions)
            .order_by(CreditLedgerEntry.created_at.desc(), CreditLedgerEntry.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def replay_balance(self, user_id: int) -> int:
        """Recompute a balance from the ledger alone, for audits."""
        result = await self.db.execute(
            select(CreditLedgerEntry).where(CreditLedgerEntry.user_id == user_id)
        )
        return sum(entry.signed_credits for entry in result.scalars().all())
