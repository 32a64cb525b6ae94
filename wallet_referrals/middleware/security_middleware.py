from fastapi import Request
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from wallet_referrals.core.config import settings
import logging


# Configure logging for security events
security_logger = logging.getLogger("security")
security_logger.setLevel(logging.INFO)


def _peer(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to limit request body size"""

    def __init__(self, app: ASGIApp, max_request_size: int = 64 * 1024):
        super().__init__(app)
        self.max_request_size = max_request_size

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            if int(content_length) > self.max_request_size:
                security_logger.warning(
                    f"Request too large: {content_length} bytes from {_peer(request)}"
                )
                return JSONResponse(
                    status_code=413,
                    content={"success": False, "error": "request_too_large", "message": "Request too large"}
                )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'self'"

        return response


class SecurityLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log denied admin and auth-protected requests"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if response.status_code in (401, 403):
            security_logger.warning(
                f"Denied request: {response.status_code} {request.method} {request.url.path} from {_peer(request)}"
            )
        elif response.status_code == 429:
            security_logger.warning(
                f"Rate limited: {request.method} {request.url.path} from {_peer(request)}"
            )

        return response


def add_security_middleware(app):
    """Add security middleware to FastAPI app"""
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(SecurityLoggingMiddleware)

    # Trusted host middleware - use specific hosts in production
    allowed_hosts = settings.ALLOWED_HOSTS if settings.ALLOWED_HOSTS else ["*"]
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

    return app
