from typing import Any, List, Optional, Union
import json
import logging
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    PROJECT_NAME: str = "Wallet Referrals API"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # CORS Origins - restrict in production
    # Use Union[str, List[str]] to prevent Pydantic from auto-parsing as JSON
    BACKEND_CORS_ORIGINS: Union[str, List[str]] = []
    ALLOWED_HOSTS: List[str] = ["*"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if v is None or v == "" or v == '""':
            return []

        if isinstance(v, str):
            # Remove outer quotes if the platform added them
            v = v.strip('"').strip("'")
            if not v:
                return []

            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning(
                        f"Failed to parse BACKEND_CORS_ORIGINS as JSON: {e}. Using comma-split fallback."
                    )
                    v = v.strip("[]")
                    return [i.strip().strip('"').strip("'") for i in v.split(",") if i.strip()]

            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, list):
            return v

        logger.warning(f"Unexpected type for BACKEND_CORS_ORIGINS: {type(v)}. Defaulting to []")
        return []

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "wallet_referrals"
    POSTGRES_PORT: str = "5432"
    SQLALCHEMY_DATABASE_URI: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("SQLALCHEMY_DATABASE_URI", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str], info) -> Any:
        if isinstance(v, str) and v:
            # PaaS providers hand out postgresql:// but the async engine needs asyncpg
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+asyncpg://", 1)
            return v
        values = info.data
        return f"postgresql+asyncpg://{values.get('POSTGRES_USER')}:{values.get('POSTGRES_PASSWORD')}@{values.get('POSTGRES_SERVER')}:{values.get('POSTGRES_PORT')}/{values.get('POSTGRES_DB')}"

    # Redis (owner-scoped status cache)
    REDIS_URL: str = "redis://localhost:6379/0"
    STATUS_CACHE_ENABLED: bool = False
    STATUS_CACHE_TTL_SECONDS: int = 5 * 60
    ADMIN_CACHE_TTL_SECONDS: int = 10 * 60

    # JWT issued by the authentication provider
    SECRET_KEY: str = "test"  # Must be set via environment variable - NEVER hardcode in production!
    ALGORITHM: str = "HS256"

    # Rate Limiting for the public visit endpoints
    RATE_LIMIT_ENABLED: bool = True
    VISIT_RATE_LIMIT: str = "30/minute"

    # Probabilistic matching
    PROBABILISTIC_MATCHING_ENABLED: bool = True
    MATCH_WINDOW_MINUTES: int = 10
    MAX_PENDING_PER_IP: int = 10
    STRICT_USER_AGENT_MATCH: bool = True
    USER_AGENT_MAX_LENGTH: int = 512

    # Referral codes and attribution
    REFERRAL_EXPIRY_DAYS: int = 30
    MAX_CODES_PER_REFERRER: int = 20
    RECENT_REFERRALS_LIMIT: int = 50

    # Expired pending visit cleanup
    PENDING_VISIT_CLEANUP_ENABLED: bool = False
    PENDING_VISIT_CLEANUP_INTERVAL_MINUTES: int = 30

    # Logging
    LOG_LEVEL: str = "INFO"

    # Environment
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        extra="ignore",
        env_parse_none_str="null"
    )


try:
    settings = Settings()
    logger.info("Settings loaded successfully")
except Exception as e:
    import os
    logger.error("=" * 70)
    logger.error("FATAL: Failed to load Settings configuration")
    logger.error(f"Error: {type(e).__name__}: {e}")
    logger.error("Environment variables (sanitized):")
    for key in ["BACKEND_CORS_ORIGINS", "SQLALCHEMY_DATABASE_URI", "REDIS_URL", "ENVIRONMENT"]:
        value = os.environ.get(key, "<NOT SET>")
        logger.error(f"  {key}: {value}")
    logger.error("=" * 70)
    raise
