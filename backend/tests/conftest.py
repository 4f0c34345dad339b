"""
Centralized Test Configuration.
"""

import asyncio
from decimal import Decimal
from typing import Dict, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool, NullPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.dependencies import get_gateway
from backend.app.core.exceptions import GatewayUnavailableError, InvalidInputError
from backend.app.integrations.payment_gateway import (
    CheckoutSessionHandle,
    GatewaySession,
    PaymentGateway,
)
from backend.app.models.parcel import Parcel
from backend.app.models.parcel_enums import ParcelStatus
from backend.app.models.payment_record import PaymentRecord
from backend.app.models.audit_log import AuditLog

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class FakeGateway(PaymentGateway):
    """In-memory stand-in for Stripe Checkout."""

    def __init__(self):
        self.sessions: Dict[str, GatewaySession] = {}
        self.created = []
        self.retrieve_calls = 0
        self.unavailable = False

    def add_session(
        self,
        session_id: str,
        parcel_id: Optional[int],
        transaction_id: Optional[str],
        amount_total: Optional[int] = 2500,
        payment_status: str = "paid",
        currency: str = "usd",
        customer_email: str = "sender@test.com",
        parcel_name: str = "Books",
    ) -> str:
        metadata = {"parcel_name": parcel_name}
        if parcel_id is not None:
            metadata["parcel_id"] = str(parcel_id)
        self.sessions[session_id] = GatewaySession(
            id=session_id,
            payment_status=payment_status,
            amount_total=amount_total,
            currency=currency,
            customer_email=customer_email,
            transaction_id=transaction_id,
            metadata=metadata,
        )
        return session_id

    async def create_checkout_session(self, metadata, amount, currency, product_name, customer_email=None):
        if self.unavailable:
            raise GatewayUnavailableError()
        session_id = f"cs_test_{len(self.created) + 1}"
        self.created.append({
            "id": session_id,
            "metadata": metadata,
            "amount": amount,
            "currency": currency,
            "product_name": product_name,
            "customer_email": customer_email,
        })
        return CheckoutSessionHandle(id=session_id, redirect_url=f"https://checkout.test/pay/{session_id}")

    async def retrieve_session(self, session_id):
        self.retrieve_calls += 1
        # Yield so concurrent reconciliations interleave
        await asyncio.sleep(0)
        if self.unavailable:
            raise GatewayUnavailableError()
        if session_id not in self.sessions:
            raise InvalidInputError("Payment gateway rejected the request")
        return self.sessions[session_id]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(autouse=True)
def apply_overrides(gateway):
    """Route the app's database and gateway dependencies to the test doubles."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_gateway():
        return gateway

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = override_get_gateway
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def create_parcel():
    """Factory inserting a PENDING parcel; returns its ID."""

    async def _create(db: AsyncSession, parcel_name="Books", sender_email="sender@test.com", cost="25.00") -> int:
        parcel = Parcel(
            parcel_name=parcel_name,
            sender_email=sender_email,
            cost=Decimal(cost),
            status=ParcelStatus.PENDING,
        )
        db.add(parcel)
        await db.commit()
        return parcel.id

    return _create


@pytest.fixture
async def file_session_factory(tmp_path):
    """
    File-backed SQLite with one connection per session.

    The in-memory StaticPool shares a single connection, which cannot
    model concurrent transactions.
    """
    file_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"timeout": 30},
        poolclass=NullPool,
    )
    async with file_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)

    await file_engine.dispose()


async def snapshot_state(db: AsyncSession) -> dict:
    """Rows of every parcel and payment, for before/after comparisons."""
    parcels = (await db.execute(
        select(Parcel.id, Parcel.status, Parcel.tracking_id).order_by(Parcel.id)
    )).all()
    payments = (await db.execute(
        select(PaymentRecord.idempotency_key, PaymentRecord.parcel_id, PaymentRecord.tracking_id)
        .order_by(PaymentRecord.id)
    )).all()
    return {"parcels": [tuple(p) for p in parcels], "payments": [tuple(p) for p in payments]}


async def assert_ledger_consistent(db: AsyncSession) -> None:
    """Every PAID parcel has exactly one payment with the same tracking ID, and vice versa."""
    parcels = (await db.execute(select(Parcel).execution_options(populate_existing=True))).scalars().all()
    for parcel in parcels:
        records = (await db.execute(
            select(PaymentRecord).where(PaymentRecord.parcel_id == parcel.id)
        )).scalars().all()
        if parcel.status == ParcelStatus.PAID:
            assert len(records) == 1
            assert records[0].tracking_id == parcel.tracking_id
        else:
            assert parcel.tracking_id is None


async def count_audit(db: AsyncSession, action: str) -> int:
    return (await db.execute(
        select(func.count(AuditLog.id)).where(AuditLog.action == action)
    )).scalar()
