from fastapi import APIRouter

from wallet_referrals.api.api_v1.endpoints import health, referrals, referrers, admin

api_router = APIRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(referrals.router, prefix="/referrals", tags=["referrals"])
api_router.include_router(referrers.router, prefix="/referrers", tags=["referrers"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
