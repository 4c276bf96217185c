"""
Pytest configuration and fixtures.

WHY: Fixtures provide reusable test setup/teardown logic, reducing
duplication and ensuring consistent test environments.
"""

import os

# WHY: Settings are read at import time, so test configuration must be in
# the environment before anything from formbuilder is imported.
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_PRICE_BASIC_MONTHLY", "price_basic_monthly")
os.environ.setdefault("STRIPE_PRICE_BASIC_ANNUAL", "price_basic_annual")
os.environ.setdefault("STRIPE_PRICE_PRO_MONTHLY", "price_pro_monthly")
os.environ.setdefault("STRIPE_PRICE_PRO_ANNUAL", "price_pro_annual")
os.environ.setdefault("STRIPE_PRICE_ENTERPRISE_MONTHLY", "price_enterprise_monthly")
os.environ.setdefault("STRIPE_PRICE_ENTERPRISE_ANNUAL", "price_enterprise_annual")

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from formbuilder.main import app
from formbuilder.models.base import Base
from formbuilder.models.user import User
from formbuilder.db.session import get_db
from formbuilder.core.auth import create_access_token
from formbuilder.core.deps import get_subscription_service
from formbuilder.services.plan_catalog import PlanCatalog
from formbuilder.services.schedule_service import ScheduleService
from formbuilder.services.subscription_service import SubscriptionService

from tests.fakes import FakeBillingPlatform, PRICES


# WHY: SQLite in memory eliminates external database dependencies.
# StaticPool keeps every session on the one connection holding the schema.
TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """
    Create a test database engine.

    WHY: Function scope ensures each test gets a fresh database state.
    """
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session, rolled back after the test."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def catalog() -> PlanCatalog:
    """Plan catalog with every plan/interval priced."""
    return PlanCatalog(PRICES)


@pytest.fixture
def platform() -> FakeBillingPlatform:
    """Fresh in-memory billing platform."""
    return FakeBillingPlatform()


@pytest.fixture
def schedules(platform: FakeBillingPlatform) -> ScheduleService:
    return ScheduleService(platform)


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """
    Create a test user with a Stripe customer.

    WHY: Most billing tests act on a customer who has checked out before.
    """
    user = User(
        name="Test User",
        email="testuser@example.com",
        stripe_customer_id="cus_test",
        is_active=True,
    )
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def free_user(db_session: AsyncSession) -> User:
    """Create a user who has never checked out."""
    user = User(name="Free User", email="free@example.com", is_active=True)
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    token = create_access_token({"user_id": test_user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def subscription_service(
    db_session: AsyncSession,
    platform: FakeBillingPlatform,
    catalog: PlanCatalog,
) -> SubscriptionService:
    return SubscriptionService(db_session, gateway=platform, catalog=catalog)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    subscription_service: SubscriptionService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create a test HTTP client.

    WHY: AsyncClient over ASGITransport exercises the full middleware and
    exception-handler stack without running a server.
    """

    async def override_get_db():
        yield db_session

    async def override_get_subscription_service():
        return subscription_service

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_subscription_service] = override_get_subscription_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
