"""Shared test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (aiosqlite). The webhook
endpoint opens its own sessions, so API tests read results back through a
new session from ``session_factory`` rather than the seeding session.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from evently.api.deps import get_db, get_price_map, get_session_factory, get_stripe_gateway
from evently.billing.reconciler import SubscriptionReconciler
from evently.billing.stripe_client import StripeGateway
from evently.database import Base
from evently.main import app
from evently.models.user import User
from tests.helpers import PRICE_MAP, WEBHOOK_SECRET, create_user

# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database; StaticPool keeps every session on one connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session for direct service/handler tests."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Billing collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway() -> StripeGateway:
    """A real gateway (for signature checks); tests mock its network methods."""
    return StripeGateway(secret_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET, timeout_seconds=1.0)


@pytest.fixture
def price_map() -> dict[str, str]:
    return dict(PRICE_MAP)


@pytest.fixture
def reconciler(gateway: StripeGateway, price_map: dict[str, str]) -> SubscriptionReconciler:
    return SubscriptionReconciler(gateway, price_map)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(session_factory, gateway, price_map) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB and gateway."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    app.dependency_overrides[get_price_map] = lambda: dict(price_map)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """A committed user on the free plan."""
    return await create_user(db_session)
