"""
Test configuration and fixtures.

Service and API tests run against an in-memory SQLite database through
aiosqlite; the API client talks to the app in-process through httpx.
"""
from datetime import timedelta
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wallet_referrals.core.rate_limiter import limiter
from wallet_referrals.core.security import AuthenticatedIdentity, create_access_token
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db import models  # noqa: F401
from wallet_referrals.db.database import Base, get_db
from wallet_referrals.db.models import Admin, Referrer, ReferralCode
from wallet_referrals.main import app

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    """HTTP client with the database dependency overridden and rate limiting off."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client

    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
def alice():
    return AuthenticatedIdentity(email="alice@example.com", user_id="user-alice")


@pytest.fixture
def bob():
    return AuthenticatedIdentity(email="bob@example.com", user_id="user-bob")


@pytest.fixture
def carol():
    return AuthenticatedIdentity(email="carol@example.com", user_id="user-carol")


def auth_headers(identity: AuthenticatedIdentity) -> dict:
    token = create_access_token(identity.user_id, identity.email, expires_delta=timedelta(minutes=5))
    return {"Authorization": f"Bearer {token}"}


async def add_referrer(
    db: AsyncSession,
    identity: AuthenticatedIdentity,
    approved: bool = True,
    codes: Optional[list] = None,
) -> Referrer:
    """Insert a referrer and optional approved codes directly."""
    now = utcnow()
    referrer = Referrer(
        email=identity.email,
        user_id=identity.user_id,
        is_approved=approved,
        approved_at=now if approved else None,
    )
    db.add(referrer)
    await db.flush()
    for code in codes or []:
        db.add(ReferralCode(
            code=code,
            referrer_id=referrer.id,
            is_approved=True,
            is_active=True,
            usage_count=0,
            created_at=now,
            approved_at=now,
        ))
    await db.commit()
    return referrer


async def add_admin(db: AsyncSession, email: str) -> None:
    db.add(Admin(email=email))
    await db.commit()
