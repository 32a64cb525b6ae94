"""
Referral code generation and format validation.

Generated codes are six characters drawn from a 32-symbol alphabet that
leaves out visually ambiguous characters (0/O, 1/I/l), giving roughly a
billion possible codes.

@module code_generator
@since 1.0.0
"""

import re
import secrets
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from wallet_referrals.db.models import ReferralCode

logger = logging.getLogger(__name__)

CHARSET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6
MAX_GENERATION_ATTEMPTS = 10

# Self-chosen codes predate the generated format and are still honored
CUSTOM_CODE_MAX_LENGTH = 20
CUSTOM_CODE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class CodeGenerationError(RuntimeError):
    """Raised when no free code was found within the attempt budget."""


def generate_code() -> str:
    """Draw a random code. Uniqueness is not checked."""
    return "".join(secrets.choice(CHARSET) for _ in range(CODE_LENGTH))


def normalize_code(code: str) -> str:
    """Codes are case-insensitive for user input."""
    return code.strip().upper()


def is_valid_code_format(code: Optional[str]) -> bool:
    """
    Check a generated-style code without touching the database.

    @param code - Candidate code, any case
    @returns True if the code has the generated length and charset
    """
    if not code or not isinstance(code, str):
        return False
    if len(code) != CODE_LENGTH:
        return False
    return all(char in CHARSET for char in code.upper())


def is_valid_custom_code(code: Optional[str]) -> bool:
    """Self-chosen codes: 1-20 letters, digits, underscores or hyphens."""
    if not code or not isinstance(code, str):
        return False
    if len(code) > CUSTOM_CODE_MAX_LENGTH:
        return False
    return bool(CUSTOM_CODE_PATTERN.match(code))


async def generate_unique_code(db: AsyncSession, max_attempts: int = MAX_GENERATION_ATTEMPTS) -> str:
    """
    Generate a code not held by any registry record, approved or pending.

    @param db - Database session
    @param max_attempts - Collision retries before giving up
    @returns Unused code
    @throws CodeGenerationError - If every attempt collided
    """
    for attempt in range(1, max_attempts + 1):
        code = generate_code()
        stmt = select(ReferralCode.id).where(ReferralCode.code == code).limit(1)
        result = await db.execute(stmt)
        if result.scalar_one_or_none() is None:
            return code
        logger.debug(f"Referral code collision on attempt {attempt}: {code}")

    logger.error(f"Failed to generate unique referral code after {max_attempts} attempts")
    raise CodeGenerationError(
        f"Failed to generate unique referral code after {max_attempts} attempts"
    )
