import os
from types import SimpleNamespace
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Load .env.test when present so tests can target a real Postgres
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "development")

from libs.auth.dependencies import get_current_user  # noqa: E402
from libs.auth.models import AuthUser  # noqa: E402
from libs.common.config import get_settings  # noqa: E402
from libs.db.base import Base  # noqa: E402
from libs.db.session import get_async_db  # noqa: E402

# Import all models so metadata includes every table
from services.payments_service import models as _payments_models  # noqa: E402,F401
from services.payments_service.phonepe_client import (  # noqa: E402
    PhonePeClient,
    get_phonepe_client,
)
from services.store_service import models as _store_models  # noqa: E402,F401

get_settings.cache_clear()
settings = get_settings()

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

CUSTOMER = AuthUser(
    user_id="customer-1", email="customer@example.com", role="customer", phone="9999999999"
)
STAFF = AuthUser(user_id="staff-1", email="staff@example.com", role="staff")
ADMIN = AuthUser(user_id="admin-1", email="admin@example.com", role="admin")

PHONEPE_REDIRECT_URL = "https://mercury.phonepe.test/transact/pay-page"


@pytest_asyncio.fixture
async def test_engine():
    """Fresh schema per test. In-memory SQLite needs a single shared connection."""
    engine_kwargs = {}
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine_kwargs["poolclass"] = StaticPool
    engine = create_async_engine(TEST_DATABASE_URL, **engine_kwargs)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def auth():
    """Mutable caller identity; set ``auth.user`` to switch roles mid-test."""
    return SimpleNamespace(user=CUSTOMER)


@pytest.fixture
def phonepe_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def phonepe_client(phonepe_requests) -> PhonePeClient:
    """PhonePe client backed by an in-process transport that always accepts."""

    def handler(request: httpx.Request) -> httpx.Response:
        phonepe_requests.append(request)
        if request.method == "POST":
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "code": "PAYMENT_INITIATED",
                    "data": {
                        "instrumentResponse": {
                            "type": "PAY_PAGE",
                            "redirectInfo": {"url": PHONEPE_REDIRECT_URL},
                        }
                    },
                },
            )
        return httpx.Response(
            200,
            json={
                "success": True,
                "code": "PAYMENT_SUCCESS",
                "data": {"state": "COMPLETED", "transactionId": "T-PHONEPE-1"},
            },
        )

    return PhonePeClient(
        merchant_id="TESTMERCHANT",
        salt_key="test-salt-key",
        salt_index="1",
        base_url="https://phonepe.test",
        callback_url="http://test/payments/webhook",
        transport=httpx.MockTransport(handler),
    )


def _override(app, db_session, auth, phonepe_client=None):
    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_current_user] = lambda: auth.user
    if phonepe_client is not None:
        app.dependency_overrides[get_phonepe_client] = lambda: phonepe_client


@pytest_asyncio.fixture
async def store_client(db_session, auth) -> AsyncGenerator[AsyncClient, None]:
    from services.store_service.app.main import app

    _override(app, db_session, auth)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def payments_client(
    db_session, auth, phonepe_client
) -> AsyncGenerator[AsyncClient, None]:
    from services.payments_service.app.main import app

    _override(app, db_session, auth, phonepe_client)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
