from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from fastapi import Request
from wallet_referrals.core.config import settings
from wallet_referrals.core.fingerprint import UNKNOWN, get_client_ip
import logging

logger = logging.getLogger(__name__)


def get_rate_limit_key(request: Request) -> str:
    """Key on the same client IP the visit tracker records, falling back to the socket peer"""
    ip_address = get_client_ip(request.headers)
    if ip_address == UNKNOWN:
        return get_remote_address(request)
    return ip_address


# Redis-backed in shared environments, in-memory when Redis is not configured
if settings.STATUS_CACHE_ENABLED and settings.REDIS_URL:
    storage_uri = settings.REDIS_URL
else:
    storage_uri = "memory://"
    logger.warning("Redis not configured, using in-memory rate limiting (not suitable for multiple workers)")

limiter = Limiter(
    key_func=get_rate_limit_key,
    storage_uri=storage_uri,
    strategy="moving-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


def setup_rate_limiter(app):
    """Setup rate limiter middleware and exception handlers"""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    return app
