"""Common test fixtures and configurations."""

import os

# Settings are read at import time; configure the environment before the app loads
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummykey"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_MONTHLY_PRICE_ID"] = "price_monthly"
os.environ["STRIPE_YEARLY_PRICE_ID"] = "price_yearly"
os.environ["INTERNAL_API_KEY"] = "internal-test-key-0123456789abcdef0123"
os.environ["FRONTEND_URL"] = "http://frontend.test"

import logging
import time
from datetime import timedelta
from typing import Any, AsyncGenerator, Callable, Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import resume_billing.models  # noqa: F401  registers every table on Base.metadata
from resume_billing.core.base_model import Base
from resume_billing.core.billing_config import BillingConfig, build_billing_config
from resume_billing.core.database import get_db
from resume_billing.core.security import create_access_token
from resume_billing.main import app as app_instance
from resume_billing.models.resume import Resume
from resume_billing.models.user import User

logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

DAY = 24 * 60 * 60


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async test client sharing the test's database session."""

    async def override_get_db():
        yield db

    app_instance.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app_instance), base_url="http://test") as test_client:
        yield test_client
    app_instance.dependency_overrides.clear()


@pytest.fixture
def billing_config() -> BillingConfig:
    return build_billing_config({})


@pytest.fixture
def make_user(db: AsyncSession) -> Callable[..., Any]:
    """Factory creating committed users."""
    counter = {"n": 0}

    async def _make(credits: int = 0, is_admin: bool = False, email: Optional[str] = None,
                    stripe_customer_id: Optional[str] = None) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            name=f"User {counter['n']}",
            credits=credits,
            is_admin=is_admin,
            stripe_customer_id=stripe_customer_id,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def make_resume(db: AsyncSession) -> Callable[..., Any]:
    async def _make(user_id: int, is_public: bool = True, is_deleted: bool = False) -> Resume:
        resume = Resume(user_id=user_id, title="My resume", is_public=is_public, is_deleted=is_deleted)
        db.add(resume)
        await db.commit()
        return resume

    return _make


@pytest.fixture
def auth_header() -> Callable[[User], Dict[str, str]]:
    def _header(user: User) -> Dict[str, str]:
        token = create_access_token({"sub": user.email}, expires_delta=timedelta(minutes=30))
        return {"Authorization": f"Bearer {token}"}

    return _header


@pytest.fixture
def internal_header() -> Dict[str, str]:
    return {"X-API-Key": os.environ["INTERNAL_API_KEY"]}


@pytest.fixture
def balance_of(db: AsyncSession) -> Callable[[int], Any]:
    """Read a balance straight from the database, bypassing the identity map."""

    async def _balance(user_id: int) -> int:
        return (await db.execute(select(User.credits).where(User.id == user_id))).scalar_one()

    return _balance


# Stripe payload builders

@pytest.fixture
def stripe_subscription() -> Callable[..., Dict[str, Any]]:
    def _build(sub_id: str = "sub_123", status: str = "active", interval: str = "month",
               customer: str = "cus_123", start: Optional[int] = None, end: Optional[int] = None,
               cancel_at_period_end: bool = False, item_id: str = "si_123",
               price_id: str = "price_monthly") -> Dict[str, Any]:
        now = int(time.time())
        start = start if start is not None else now - DAY
        end = end if end is not None else now + 30 * DAY
        return {
            "id": sub_id,
            "object": "subscription",
            "customer": customer,
            "status": status,
            "cancel_at_period_end": cancel_at_period_end,
            "items": {
                "object": "list",
                "data": [{
                    "id": item_id,
                    "price": {"id": price_id, "recurring": {"interval": interval}},
                    "current_period_start": start,
                    "current_period_end": end,
                }],
            },
            "metadata": {},
        }

    return _build


@pytest.fixture
def checkout_session() -> Callable[..., Dict[str, Any]]:
    def _build(user_id: int, session_id: str = "cs_test_123", checkout_type: str = "credit_purchase",
               credit_amount: int = 10, plan: str = "monthly", subscription: Optional[str] = None,
               invoice: Optional[str] = None, amount_total: int = 800,
               payment_intent: Optional[str] = "pi_123", payment_status: str = "paid") -> Dict[str, Any]:
        metadata = {"user_id": str(user_id), "type": checkout_type}
        if checkout_type == "credit_purchase":
            metadata["credit_amount"] = str(credit_amount)
        else:
            metadata["plan"] = plan
        return {
            "id": session_id,
            "object": "checkout.session",
            "mode": "payment" if checkout_type == "credit_purchase" else "subscription",
            "customer": "cus_123",
            "subscription": subscription,
            "payment_intent": payment_intent if checkout_type == "credit_purchase" else None,
            "invoice": invoice,
            "payment_status": payment_status,
            "amount_total": amount_total,
            "currency": "usd",
            "metadata": metadata,
        }

    return _build


@pytest.fixture
def stripe_invoice() -> Callable[..., Dict[str, Any]]:
    def _build(invoice_id: str = "in_123", subscription: str = "sub_123",
               billing_reason: str = "subscription_cycle", amount_paid: int = 799,
               amount_due: int = 799, interval: Optional[str] = "month",
               payment_intent: Optional[str] = "pi_inv_123") -> Dict[str, Any]:
        lines = []
        if interval:
            lines.append({"amount": amount_paid or amount_due, "price": {"recurring": {"interval": interval}}})
        return {
            "id": invoice_id,
            "object": "invoice",
            "customer": "cus_123",
            "subscription": subscription,
            "payment_intent": payment_intent,
            "billing_reason": billing_reason,
            "amount_paid": amount_paid,
            "amount_due": amount_due,
            "currency": "usd",
            "lines": {"object": "list", "data": lines},
        }

    return _build


@pytest.fixture
def stripe_event() -> Callable[..., Dict[str, Any]]:
    counter = {"n": 0}

    def _build(event_type: str, data_object: Dict[str, Any], event_id: Optional[str] = None) -> Dict[str, Any]:
        counter["n"] += 1
        return {
            "id": event_id or f"evt_test_{counter['n']}",
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "data": {"object": data_object},
        }

    return _build
