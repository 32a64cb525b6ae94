from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging
from jose import jwt, JWTError
from wallet_referrals.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Verified identity supplied by the authentication provider."""
    email: str
    user_id: str


def create_access_token(
    user_id: str,
    email: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create access token carrying the identity claims"""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode: Dict[str, Any] = {
        "exp": expire,
        "sub": str(user_id),
        "email": email,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _extract_email(payload: Dict[str, Any]) -> Optional[str]:
    email = payload.get("email")
    if email:
        return email

    # Some providers only list the email among verified credentials
    for credential in payload.get("verified_credentials") or []:
        if not isinstance(credential, dict):
            continue
        if credential.get("format") == "email" or credential.get("email"):
            if credential.get("email"):
                return credential["email"]
    return None


def verify_token(token: str) -> Optional[AuthenticatedIdentity]:
    """Verify and decode token into an identity"""
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except JWTError as e:
        logger.debug(f"Token verification failed: {e}")
        return None

    user_id = payload.get("sub")
    email = _extract_email(payload)
    if not user_id or not email:
        logger.warning(f"Token missing identity claims (sub={bool(user_id)}, email={bool(email)})")
        return None

    return AuthenticatedIdentity(email=email.lower(), user_id=str(user_id))
