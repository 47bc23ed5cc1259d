"""Pytest configuration and fixtures for the Convertly test suite.

Provides:
- A fresh schema per test on TEST_DATABASE_URL (SQLite via aiosqlite by default)
- Mock Redis (fakeredis)
- Disabled rate limiting
- Shopify settings, signing helpers and HTTP mocks
- Shop and OAuth state factories
"""

import base64
import hashlib
import hmac
import os
import time
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import fakeredis.aioredis
import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from convertly.core.database import get_async_session
from convertly.core.deps import get_db, get_redis
from convertly.core.encryption import encrypt_token
from convertly.core.rate_limit import limiter
from convertly.main import app
from convertly.models import Base, OAuthState, PlanStatus, PlanType, Shop

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TEST_API_KEY = "test-shopify-api-key"
TEST_API_SECRET = "test-shopify-api-secret-0123456789abcdef"
TEST_WEBHOOK_SECRET = "test-shopify-webhook-secret-0123456789"
TEST_ADMIN_TOKEN = "test-admin-token-0123456789"
TEST_APP_URL = "https://app.example.com"
TEST_SHOP = "test-shop.myshopify.com"
OTHER_SHOP = "other-shop.myshopify.com"
TEST_ACCESS_TOKEN = "shpat_0000000000000000000000000000000X"
ROTATED_ACCESS_TOKEN = "shpat_1111111111111111111111111111111Y"

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite:///./convertly_test.db")

# ---------------------------------------------------------------------------
# Disable rate limiting globally for tests
# ---------------------------------------------------------------------------
limiter.enabled = False


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def set_shopify_test_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure Shopify settings are set for all tests.

    This is autouse=True so all tests have consistent Shopify config.
    """
    monkeypatch.setattr("convertly.core.config.settings.shopify_api_key", TEST_API_KEY)
    monkeypatch.setattr("convertly.core.config.settings.shopify_api_secret", TEST_API_SECRET)
    monkeypatch.setattr("convertly.core.config.settings.shopify_webhook_secret", TEST_WEBHOOK_SECRET)
    monkeypatch.setattr("convertly.core.config.settings.admin_api_token", TEST_ADMIN_TOKEN)
    monkeypatch.setattr("convertly.core.config.settings.app_url", TEST_APP_URL)
    monkeypatch.setattr("convertly.core.config.settings.shopify_redirect_uri", "")
    monkeypatch.setattr("convertly.core.config.settings.app_home_path", "/")
    monkeypatch.setattr("convertly.core.config.settings.uninstall_mode", "delete")
    monkeypatch.setattr("convertly.core.config.settings.fresh_token_retry_delay_seconds", 0.0)


# ---------------------------------------------------------------------------
# Database: fresh schema per test
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create all tables before the test and drop them afterwards.

    Uses NullPool so no connection outlives the test's event loop.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for test setup and service tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fetch_shop(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str], Awaitable[Shop | None]]:
    """Read a shop through a fresh session, bypassing any identity-map cache."""

    async def _fetch(shop_domain: str = TEST_SHOP) -> Shop | None:
        async with session_factory() as session:
            result = await session.execute(select(Shop).where(Shop.shop_domain == shop_domain))
            return result.scalar_one_or_none()

    return _fetch


@pytest.fixture
def count_states(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[str | None], Awaitable[int]]:
    """Count OAuth state rows, optionally for a single shop."""

    async def _count(shop_domain: str | None = None) -> int:
        async with session_factory() as session:
            stmt = select(OAuthState)
            if shop_domain is not None:
                stmt = stmt.where(OAuthState.shop_domain == shop_domain)
            return len((await session.execute(stmt)).scalars().all())

    return _count


# ---------------------------------------------------------------------------
# Fake Redis
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis() -> fakeredis.aioredis.FakeRedis:
    """Provide a fresh fakeredis instance per test."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: fakeredis.aioredis.FakeRedis,
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with DB and Redis overridden. Auth is NOT overridden."""

    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as s:
            yield s

    async def _override_redis() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_async_session] = _override_session
    app.dependency_overrides[get_db] = _override_session
    app.dependency_overrides[get_redis] = _override_redis

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def plain_client() -> AsyncGenerator[AsyncClient, None]:
    """Minimal async test client with NO dependency overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Model Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def shop_factory(db_session: AsyncSession) -> Callable[..., Awaitable[Shop]]:
    """Factory that creates Shop rows with an encrypted access token."""

    async def _create(
        *,
        shop_domain: str = TEST_SHOP,
        access_token: str | None = TEST_ACCESS_TOKEN,
        plan_type: PlanType = PlanType.FREE,
        plan_status: PlanStatus = PlanStatus.ACTIVE,
        billing_charge_id: str | None = None,
        admin_granted_free: bool = False,
        first_installed_at: datetime | None = None,
        uninstalled_at: datetime | None = None,
        last_used_at: datetime | None = None,
    ) -> Shop:
        shop = Shop(
            shop_domain=shop_domain,
            access_token=encrypt_token(access_token) if access_token else None,
            scopes="read_orders",
            plan_type=plan_type,
            plan_status=plan_status,
            billing_charge_id=billing_charge_id,
            admin_granted_free=admin_granted_free,
            install_count=1,
            first_installed_at=first_installed_at or datetime.now(UTC) - timedelta(days=30),
            uninstalled_at=uninstalled_at,
            last_used_at=last_used_at,
        )
        db_session.add(shop)
        await db_session.commit()
        await db_session.refresh(shop)
        return shop

    return _create


@pytest.fixture
def oauth_state_factory(db_session: AsyncSession) -> Callable[..., Awaitable[OAuthState]]:
    """Factory that creates OAuth state rows directly."""

    async def _create(
        *,
        state_token: str = "state-token-abc",
        shop_domain: str = TEST_SHOP,
        expires_in: timedelta = timedelta(minutes=10),
    ) -> OAuthState:
        state = OAuthState(
            state_token=state_token,
            shop_domain=shop_domain,
            expires_at=datetime.now(UTC) + expires_in,
        )
        db_session.add(state)
        await db_session.commit()
        return state

    return _create


# ---------------------------------------------------------------------------
# Shopify signing helpers
# ---------------------------------------------------------------------------


def sign_oauth_params(params: dict[str, str], secret: str = TEST_API_SECRET) -> str:
    """Hex HMAC over sorted ``key=value`` pairs, excluding hmac/signature."""
    message = "&".join(
        f"{k}={v}" for k, v in sorted(params.items()) if k not in ("hmac", "signature")
    )
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def sign_webhook_body(body: bytes, secret: str = TEST_API_SECRET) -> str:
    """Base64 HMAC Shopify sends in X-Shopify-Hmac-Sha256."""
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def sign_session_token(
    shop: str = TEST_SHOP,
    *,
    secret: str = TEST_API_SECRET,
    audience: str = TEST_API_KEY,
    issued_by: str | None = None,
    expires_in: int = 60,
    **overrides: Any,
) -> str:
    """Build a session token shaped like the ones App Bridge issues."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "iss": f"https://{issued_by or shop}/admin",
        "dest": f"https://{shop}",
        "aud": audience,
        "sub": "42",
        "exp": now + expires_in,
        "nbf": now - 5,
        "iat": now - 5,
        "jti": "00000000-0000-0000-0000-000000000000",
        "sid": "session-id",
    }
    payload.update(overrides)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def shopify_oauth_hmac() -> Callable[[dict[str, str]], str]:
    """Generate a valid Shopify OAuth callback HMAC for query params.

    Usage:
        params = {"code": "abc", "shop": "store.myshopify.com", "state": "tok"}
        params["hmac"] = shopify_oauth_hmac(params)
    """
    return sign_oauth_params


@pytest.fixture
def shopify_webhook_headers() -> Callable[..., dict[str, str]]:
    """Generate complete Shopify webhook headers for a body, topic and shop.

    Usage:
        body = b'{"id": 123}'
        headers = shopify_webhook_headers(body, "app/uninstalled")
        response = await client.post("/api/v1/webhooks/shopify", content=body, headers=headers)
    """

    def _headers(
        body: bytes,
        topic: str,
        shop: str = TEST_SHOP,
        secret: str = TEST_API_SECRET,
    ) -> dict[str, str]:
        headers = {
            "X-Shopify-Hmac-Sha256": sign_webhook_body(body, secret),
            "X-Shopify-Topic": topic,
            "X-Shopify-Webhook-Id": "b54557e4-bdd9-4b37-8a5f-bf7d70bcd043",
            "Content-Type": "application/json",
        }
        if shop:
            headers["X-Shopify-Shop-Domain"] = shop
        return headers

    return _headers


# ---------------------------------------------------------------------------
# Shopify HTTP mocks
# ---------------------------------------------------------------------------


def make_response(status_code: int = 200, json_data: Any = None) -> MagicMock:
    """A stand-in for httpx.Response with the attributes the code reads."""
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json.return_value = json_data if json_data is not None else {}
    return response


@pytest.fixture
def mock_shopify_token_exchange() -> Generator[AsyncMock, None, None]:
    """Mock the Shopify OAuth token exchange HTTP call.

    Patches httpx.AsyncClient in oauth.py to return a valid access token + scopes.
    """
    with patch("convertly.integrations.shopify.oauth.httpx.AsyncClient") as mock_class:
        mock_client = AsyncMock()
        mock_class.return_value.__aenter__.return_value = mock_client
        mock_client.post.return_value = make_response(
            200,
            {"access_token": TEST_ACCESS_TOKEN, "scope": "read_orders,write_application_charges"},
        )
        yield mock_client


@pytest.fixture
def mock_shopify_client() -> Generator[MagicMock, None, None]:
    """Mock the ShopifyClient used by the OAuth callback to register webhooks."""
    with patch("convertly.api.v1.shopify.ShopifyClient") as mock_class:
        mock_instance = MagicMock()
        mock_class.return_value = mock_instance
        mock_instance.register_webhooks = AsyncMock(return_value=["app/uninstalled"])
        yield mock_instance


@pytest.fixture
def mock_billing_client() -> Generator[MagicMock, None, None]:
    """Mock the ShopifyClient the webhook reconciler uses to cancel stale charges."""
    with patch("convertly.services.webhook_service.ShopifyClient") as mock_class:
        mock_instance = MagicMock()
        mock_class.return_value = mock_instance
        mock_instance.cancel_charge = AsyncMock(return_value=True)
        yield mock_instance


@pytest.fixture
def mock_shopify_http() -> Generator[AsyncMock, None, None]:
    """Mock httpx.AsyncClient for ShopifyClient unit tests.

    Tests drive responses through ``mock_client.request``.
    """
    with patch("convertly.integrations.shopify.client.httpx.AsyncClient") as mock_class:
        mock_client = AsyncMock()
        mock_class.return_value.__aenter__.return_value = mock_client
        mock_client.request.return_value = make_response(200, {"webhooks": []})
        yield mock_client
