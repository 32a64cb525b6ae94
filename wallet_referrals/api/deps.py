from typing import Optional
from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from wallet_referrals.core.security import AuthenticatedIdentity, verify_token
from wallet_referrals.core.status_cache import StatusCache, get_status_cache
from wallet_referrals.db.database import get_db
from wallet_referrals.db.models import Admin

security = HTTPBearer(auto_error=False)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedIdentity:
    """Get the verified identity from the bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    identity = verify_token(credentials.credentials)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return identity


async def is_admin(identity: AuthenticatedIdentity, db: AsyncSession, cache: StatusCache) -> bool:
    """Admin membership for the identity, cached per email"""
    cached = await cache.get("admin", identity.email)
    if cached is not None:
        return bool(cached.get("isAdmin"))

    result = await db.execute(select(Admin.email).where(func.lower(Admin.email) == identity.email))
    admin = result.scalar_one_or_none() is not None

    await cache.set("admin", identity.email, {"isAdmin": admin})
    return admin


async def require_admin(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache),
) -> AuthenticatedIdentity:
    """Require the caller to be listed in the admins table"""
    if not await is_admin(identity, db, cache):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return identity
