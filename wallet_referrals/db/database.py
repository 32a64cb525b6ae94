from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from wallet_referrals.core.config import settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# Create async engine with connection pooling
engine = create_async_engine(
    str(settings.SQLALCHEMY_DATABASE_URI),
    echo=False,  # Set to True for SQL debugging
    future=True,
    pool_size=5,
    max_overflow=10,  # Burst capacity
    pool_pre_ping=True,  # Auto-reconnect on failure
    pool_recycle=3600,  # Recycle connections hourly
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Dependency for getting database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
