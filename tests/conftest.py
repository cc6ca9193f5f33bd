"""Shared test fixtures.

Every test gets its own SQLite database file, so no external services are
needed. Redis stays uninitialised: rate limiting is skipped and the webhook
dedupe cache runs in memory.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from academy.auth.jwt import reset_keys
from academy.config import get_settings
from academy.database import close_db, get_engine, get_session_factory, init_db
from academy.db.base import Base
from academy.db.models import Category, User, UserRole
from academy.payments.idempotency import InMemoryNotificationCache
from academy.payments.notifications import NotificationRouter, PaymentNotificationService
from academy.videos.provider import VimeoClient
from academy.videos.router import get_video_provider
from tests.factories import STREAM_URL, make_category, make_user



@pytest.fixture(scope="session", autouse=True)
def _jwt_keys(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """RSA key pair for access tokens, written once per session."""
    keydir = tmp_path_factory.mktemp("keys")
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_path = keydir / "jwt_private.pem"
    public_path = keydir / "jwt_public.pem"
    private_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    public_path.write_bytes(
        key.public_key().public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
    )
    os.environ["ACADEMY_JWT_PRIVATE_KEY_PATH"] = str(private_path)
    os.environ["ACADEMY_JWT_PUBLIC_KEY_PATH"] = str(public_path)
    os.environ["ACADEMY_LOG_FORMAT"] = "console"
    get_settings.cache_clear()
    reset_keys()
    yield
    reset_keys()


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    """Settings changed through monkeypatch.setenv take effect and do not leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[None, None]:
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'academy.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """Direct session for arranging data and asserting on it."""
    async with get_session_factory()() as session:
        yield session


# ---------------------------------------------------------------------------
# Domain objects
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    return await make_user(db_session, "student@example.com")


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await make_user(db_session, "admin@example.com", UserRole.ADMIN)


@pytest_asyncio.fixture
async def course(db_session: AsyncSession) -> Category:
    return await make_category(db_session, "python-basics")


# ---------------------------------------------------------------------------
# Providers and app
# ---------------------------------------------------------------------------


@pytest.fixture
def gateway() -> AsyncMock:
    """Stand-in for MercadoPagoClient; tests set ``fetch_payment.return_value``."""
    mock = AsyncMock()
    mock.fetch_payment = AsyncMock()
    return mock


@pytest.fixture
def vimeo() -> AsyncMock:
    mock = AsyncMock(spec=VimeoClient)
    mock.get_secure_player_url.return_value = STREAM_URL
    return mock


@pytest.fixture
def notification_cache() -> InMemoryNotificationCache:
    return InMemoryNotificationCache(capacity=100)


@pytest_asyncio.fixture
async def app(
    database: None,
    gateway: AsyncMock,
    vimeo: AsyncMock,
    notification_cache: InMemoryNotificationCache,
) -> FastAPI:
    from academy.main import create_app

    application = create_app()
    application.state.notification_router = NotificationRouter(
        PaymentNotificationService(gateway=gateway, cache=notification_cache)
    )
    application.dependency_overrides[get_video_provider] = lambda: vimeo
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app; the lifespan is not run, fixtures own the database."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
