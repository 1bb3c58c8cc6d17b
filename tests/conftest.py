"""
Test Fixtures
=============

Shared fixtures: a throwaway SQLite database (aiosqlite), a mocked
Redis client and an httpx client bound to the ASGI app.
"""

import os

# Must be set before the app (and its settings) are imported
os.environ["ENVIRONMENT"] = "test"
os.environ["DEV_AUTH_DISABLED"] = "false"
os.environ["PAYKICKSTART_WEBHOOK_SECRET"] = ""
os.environ["METRICS_ENABLED"] = "true"

import uuid
from datetime import datetime
from typing import AsyncGenerator, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models import (
    BillingProvider,
    Member,
    MembershipStatus,
    Subscription,
    SubscriptionStatus,
    User,
)
from app.services import cache as cache_module


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with working SAVEPOINTs."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def redis_mock(monkeypatch):
    """Redis stand-in: every read misses, writes and deletes are recorded."""
    client = AsyncMock()
    client.get.return_value = None
    client.setex.return_value = True
    client.delete.return_value = 1
    monkeypatch.setattr(cache_module, "_redis_client", client)
    return client


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """httpx client against the app, with get_db bound to the test database."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

async def _make_member_user(
    session: AsyncSession,
    *,
    email: str = "reader@example.com",
    membership_status: MembershipStatus = MembershipStatus.INACTIVE,
    membership_tier: str = "Customer",
    customer_id: Optional[str] = None,
) -> tuple[User, Member]:
    """Persist a User linked to a Member."""
    member = Member(
        email=email,
        first_name="Test",
        last_name="Reader",
        membership_tier=membership_tier,
        membership_status=membership_status,
        paykickstart_customer_id=customer_id,
    )
    session.add(member)
    await session.flush()

    user = User(email=email, full_name="Test Reader", member_id=member.member_id)
    session.add(user)
    await session.flush()
    return user, member


async def _make_subscription(
    session: AsyncSession,
    member: Member,
    *,
    provider: BillingProvider = BillingProvider.PAYKICKSTART,
    provider_subscription_id: Optional[str] = None,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    tier: str = "COLLECTIVE",
    current_period_end: Optional[datetime] = None,
    cancel_at_period_end: bool = False,
) -> Subscription:
    subscription = Subscription(
        member_id=member.member_id,
        provider=provider,
        provider_subscription_id=provider_subscription_id or f"sub_{uuid.uuid4().hex[:12]}",
        status=status,
        tier=tier,
        current_period_end=current_period_end,
        cancel_at_period_end=cancel_at_period_end,
    )
    session.add(subscription)
    await session.flush()
    return subscription


@pytest.fixture
def make_member_user():
    return _make_member_user


@pytest.fixture
def make_subscription():
    return _make_subscription
