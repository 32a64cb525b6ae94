"""
API endpoints for referral visits, single-code requests and conversion.

@module referrals
@since 1.0.0
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from wallet_referrals.api.deps import get_current_identity
from wallet_referrals.api.responses import failure_response
from wallet_referrals.core.config import settings
from wallet_referrals.core.fingerprint import extract_request_metadata
from wallet_referrals.core.rate_limiter import limiter
from wallet_referrals.core.security import AuthenticatedIdentity
from wallet_referrals.core.status_cache import StatusCache, get_status_cache
from wallet_referrals.db.database import get_db
from wallet_referrals.schemas.referrals import (
    AvailabilityResponse,
    CodeRequest,
    ConvertRequest,
    MatchVisitRequest,
    TrackVisitRequest,
)
from wallet_referrals.services.attribution_service import AttributionService
from wallet_referrals.services.code_generator import CUSTOM_CODE_MAX_LENGTH, normalize_code
from wallet_referrals.services.code_request_service import CodeRequestService
from wallet_referrals.services.referrer_registry import _iso
from wallet_referrals.services.visit_matcher import VisitMatcher
from wallet_referrals.services.visit_tracker import VisitTracker

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/track-visit")
@limiter.limit(settings.VISIT_RATE_LIMIT)
async def track_visit(
    request: Request,
    payload: TrackVisitRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Record a referral click for later probabilistic matching.

    No authentication required. IP and user-agent are read from the request
    headers, never from the body.
    """
    request_meta = extract_request_metadata(request.headers)
    data = payload.referral_data
    fingerprint = payload.fingerprint

    result = await VisitTracker(db).track(
        normalize_code(data.ref),
        request_meta,
        screen_resolution=fingerprint.screen_resolution if fingerprint else None,
        tag=data.tag,
        source=data.source,
        full_params=data.full_params,
    )
    if not result.success:
        return {"success": False, "error": result.error, "message": result.message}
    return {"success": True, "visitId": result.visit_id}


@router.post("/match-visit")
@limiter.limit(settings.VISIT_RATE_LIMIT)
async def match_visit(
    request: Request,
    payload: Optional[MatchVisitRequest] = None,
    db: AsyncSession = Depends(get_db)
):
    """Resolve the caller's fingerprint to a single pending visit, consuming it."""
    request_meta = extract_request_metadata(request.headers)
    fingerprint = payload.fingerprint if payload else None

    result = await VisitMatcher(db).match(
        request_meta,
        screen_resolution=fingerprint.screen_resolution if fingerprint else None,
    )
    if not result.matched:
        return {"matched": False, "reason": result.reason}

    referral_data = dict(result.referral_data)
    referral_data["capturedAt"] = _iso(referral_data["capturedAt"])
    return {"matched": True, "referralData": referral_data}


@router.get("/check", response_model=AvailabilityResponse)
async def check_code(
    code: str = Query(..., min_length=1, max_length=CUSTOM_CODE_MAX_LENGTH),
    db: AsyncSession = Depends(get_db)
):
    """Whether a self-chosen code can still be requested."""
    available = await CodeRequestService(db).check_availability(code)
    return AvailabilityResponse(available=available)


@router.post("/request")
async def request_code(
    payload: CodeRequest,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """Request a referral code for the caller, pending admin approval."""
    try:
        result = await CodeRequestService(db, cache).request_code(identity, payload.code)
    except Exception as e:
        logger.error(f"Error requesting referral code for {identity.email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to request referral code")

    if not result.success:
        return failure_response(result.error, result.message, status_code=status.HTTP_200_OK)

    return {
        "success": True,
        "status": result.status,
        "code": result.code.code,
        "requestedAt": _iso(result.code.created_at),
    }


@router.get("/status")
async def get_code_status(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """Status of the caller's code request."""
    return await CodeRequestService(db, cache).get_status(identity)


@router.post("/convert")
async def convert_referral(
    payload: ConvertRequest,
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """
    Attribute the caller's signup to a referral code.

    The code comes either directly or from referral data returned by
    ``match-visit``; the identity always comes from the verified token.
    """
    data = payload.referral_data
    if data is not None:
        conversion = dict(
            code=data.ref,
            captured_at=data.captured_at,
            tag=data.tag,
            source=data.source,
            full_params=data.full_params,
        )
    else:
        conversion = dict(code=payload.code, captured_at=payload.captured_at)

    try:
        result = await AttributionService(db, cache).convert(
            identity, wallet_address=payload.wallet_address, **conversion
        )
    except Exception as e:
        logger.error(f"Error converting referral for {identity.email}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to attribute referral")

    response = {"success": True, "attributed": result.attributed}
    if result.attributed:
        response["codeUsed"] = result.code_used
    else:
        response["reason"] = result.reason
    return response
