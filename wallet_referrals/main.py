import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware

from wallet_referrals.api.api_v1.api import api_router
from wallet_referrals.core.config import settings
from wallet_referrals.core.rate_limiter import setup_rate_limiter
from wallet_referrals.core.scheduler import start_scheduler, shutdown_scheduler
from wallet_referrals.core.status_cache import status_cache
from wallet_referrals.middleware.security_middleware import add_security_middleware

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
# Wallet Referrals API

Referral attribution for the wallet growth program:
- **Visits**: record referral clicks and match them to later signups from the same device
- **Codes**: request, approve and manage referral codes
- **Attribution**: first-attribution-wins conversion on signup
- **Admin**: approval workflow for referrers and code requests

## Authentication
Authenticated endpoints take the identity provider's JWT:
```
Authorization: Bearer <your-token>
```
    """,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "referrals", "description": "Visit tracking, matching and conversion"},
        {"name": "referrers", "description": "Referrer accounts and their codes"},
        {"name": "admin", "description": "Approval workflow"},
        {"name": "health", "description": "Service health checks"}
    ]
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Reject invalid input with the first violation only"""
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        message = str(first.get("msg", message)).removeprefix("Value error, ")
        location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
        if location:
            message = f"{'.'.join(location)}: {message}"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": "invalid_request", "message": message},
    )


cors_origins = [str(origin) for origin in settings.BACKEND_CORS_ORIGINS] if settings.BACKEND_CORS_ORIGINS else ["http://localhost:3000"]

# MIDDLEWARE ORDER (applied in reverse, so last added = first executed):
# 1. Security middleware (includes TrustedHost)
app = add_security_middleware(app)

# 2. CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
)

# 3. Rate limiting for decorated visit endpoints
app = setup_rate_limiter(app)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health", include_in_schema=False)
async def health_check():
    return {"status": "healthy", "service": "api"}


@app.head("/health", include_in_schema=False)
async def health_check_head():
    return Response(status_code=200)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup"""
    logger.info(f"Starting {settings.PROJECT_NAME} {settings.VERSION} ({settings.ENVIRONMENT})")
    logger.info(f"   CORS Origins: {len(cors_origins)} configured")
    logger.info(f"   Status cache: {'enabled' if settings.STATUS_CACHE_ENABLED else 'disabled'}")
    logger.info(f"   Probabilistic matching: {'enabled' if settings.PROBABILISTIC_MATCHING_ENABLED else 'disabled'}")

    try:
        start_scheduler()
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")
        logger.warning("Continuing startup without background jobs; expired visits are still filtered at match time")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on shutdown"""
    try:
        shutdown_scheduler()
    except Exception as e:
        logger.error(f"Error stopping scheduler: {e}")

    await status_cache.close()
