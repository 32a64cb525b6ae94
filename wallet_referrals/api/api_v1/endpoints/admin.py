"""
Admin endpoints for the referrer and code approval workflow.

@module admin
@since 1.0.0
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from wallet_referrals.api.deps import get_current_identity, is_admin, require_admin
from wallet_referrals.api.responses import failure_response
from wallet_referrals.core.security import AuthenticatedIdentity
from wallet_referrals.core.status_cache import StatusCache, get_status_cache
from wallet_referrals.db.database import get_db
from wallet_referrals.schemas.admin import AdminCheckResponse, AdminCodeAction, AdminReferrerAction
from wallet_referrals.services.code_request_service import CodeRequestService
from wallet_referrals.services.referrer_registry import ReferrerRegistry, _iso

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/check", response_model=AdminCheckResponse)
async def check_admin(
    identity: AuthenticatedIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """Whether the caller has admin access."""
    return AdminCheckResponse(is_admin=await is_admin(identity, db, cache))


@router.get("/referrers")
async def list_referrers(
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await ReferrerRegistry(db).list_referrers()


@router.patch("/referrers")
async def update_referrer(
    payload: AdminReferrerAction,
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """
    Approve, reject or toggle notifications for a referrer.

    @param payload - Referrer id and action
    @returns {"success": true, "status": ...} or a failure body
    """
    registry = ReferrerRegistry(db, cache)
    referrer_id = str(payload.referrer_id)

    try:
        if payload.action == "approve":
            result = await registry.approve_referrer(referrer_id)
        elif payload.action == "reject":
            result = await registry.reject_referrer(referrer_id)
        else:
            result = await registry.set_notifications(
                referrer_id, enabled=payload.action == "enable_notifications"
            )
    except Exception as e:
        logger.error(f"Admin action {payload.action} on referrer {referrer_id} failed: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update referrer")

    if not result.success:
        return failure_response(result.error, result.message)

    logger.info(f"Admin {admin.email} applied {payload.action} to referrer {referrer_id}")
    response = {"success": True, "status": result.status}
    if result.referrer is not None:
        response["referrerId"] = result.referrer.id
        response["approvedAt"] = _iso(result.referrer.approved_at)
    return response


@router.get("/codes")
async def list_code_requests(
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    return await CodeRequestService(db).list_code_requests()


@router.patch("/codes")
async def update_code_request(
    payload: AdminCodeAction,
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: StatusCache = Depends(get_status_cache)
):
    """
    Approve, reject or reassign a code request.

    An approval that collides with an approved code of another owner returns
    409 with the conflict and the actions that resolve it.
    """
    service = CodeRequestService(db, cache)

    try:
        if payload.action == "approve":
            result = await service.approve_code(payload.code_id)
        elif payload.action == "reject":
            result = await service.reject_code(payload.code_id)
        else:
            result = await service.reassign_code(payload.code_id)
    except Exception as e:
        logger.error(f"Admin action {payload.action} on code request {payload.code_id} failed: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update code request")

    if not result.success:
        extra = {"conflict": result.conflict} if result.conflict else {}
        return failure_response(result.error, result.message, **extra)

    logger.info(f"Admin {admin.email} applied {payload.action} to code request {payload.code_id}")
    response = {"success": True, "status": result.status}
    if result.code is not None:
        response["code"] = result.code.code
        response["approvedAt"] = _iso(result.code.approved_at)
    return response
