"""API endpoints for referrer accounts and the codes they own."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from wallet_referrals.api.deps import get_current_identity
from wallet_referrals.api.responses import failure_response
from wallet_referrals.core.security import AuthenticatedIdentity
from wallet_referrals.core.status_cache import StatusCache, get_status_cache
from wallet_referrals.core.timeutils import to_naive_utc
from wallet_referrals.db.database import get_db
from wallet_referrals.schemas.referrals import (
    CreateCodeRequest,
    ReferralCodeListResponse,
    ReferralCodeResponse,
    UpdateCodeRequest,
)
from wallet_referrals.services.referral_stats_service import ReferralStatsService
from wallet_referrals.services.referrer_registry import ReferrerRegistry, serialize_code

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/become")
async def become_referrer(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """Ask to become a referrer."""
    try:
        result = await ReferrerRegistry(db, cache).request_referrer(identity)
    except Exception as e:
        logger.error(f"Error submitting referrer request for {identity.email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to submit referrer request")

    return {
        "success": True,
        "status": result.status,
        "message": result.message,
        "referrerId": result.referrer.id,
    }


@router.get("/status")
async def get_referrer_status(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    return await ReferrerRegistry(db, cache).get_status(identity)


@router.get("/codes", response_model=ReferralCodeListResponse)
async def list_codes(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    """Codes owned by the caller, newest first."""
    result = await ReferrerRegistry(db).list_codes(identity)
    if not result.success:
        return failure_response(result.error, result.message)
    return ReferralCodeListResponse(
        codes=[ReferralCodeResponse.model_validate(code) for code in result.codes]
    )


@router.post("/codes")
async def create_code(
    payload: CreateCodeRequest,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """Create a generated code for the caller, up to the per-referrer quota."""
    expires_at = to_naive_utc(payload.expires_at) if payload.expires_at else None
    try:
        result = await ReferrerRegistry(db, cache).create_code(
            identity, label=payload.label, expires_at=expires_at
        )
    except Exception as e:
        logger.error(f"Error creating referral code for {identity.email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create code")

    if not result.success:
        return failure_response(result.error, result.message)
    return {"success": True, "code": serialize_code(result.code)}


@router.patch("/codes")
async def update_code(
    payload: UpdateCodeRequest,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """Activate, deactivate or relabel one of the caller's codes."""
    try:
        result = await ReferrerRegistry(db, cache).update_code(
            identity, payload.code, is_active=payload.is_active, label=payload.label
        )
    except Exception as e:
        logger.error(f"Error updating referral code {payload.code}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update code")

    if not result.success:
        return failure_response(result.error, result.message)
    return {"success": True, "code": serialize_code(result.code)}


@router.get("/stats")
async def get_stats(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db)
):
    """Per-code usage, UTM breakdown and recent referrals for the caller."""
    try:
        result = await ReferralStatsService(db).get_stats(identity)
    except Exception as e:
        logger.error(f"Error fetching referral stats for {identity.email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to get referral stats")

    if not result.success:
        return failure_response(result.error, result.message)
    return result.stats
