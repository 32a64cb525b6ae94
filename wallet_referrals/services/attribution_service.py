"""
Referral attribution recording.

First attribution wins: once an identity has a ``UserReferral`` every later
conversion is a no-op reporting ``already_attributed``.

@module attribution_service
@since 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, update, or_

from wallet_referrals.core.config import settings
from wallet_referrals.core.security import AuthenticatedIdentity
from wallet_referrals.core.status_cache import StatusCache
from wallet_referrals.core.timeutils import utcnow, to_naive_utc
from wallet_referrals.db.models import Referrer, ReferralCode, UserReferral
from wallet_referrals.services.code_generator import normalize_code

logger = logging.getLogger(__name__)

UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign")


@dataclass(frozen=True)
class ConversionResult:
    attributed: bool
    reason: Optional[str] = None
    code_used: Optional[str] = None
    referral_id: Optional[str] = None


def is_expired(captured_at: datetime, now: Optional[datetime] = None) -> bool:
    """Whether a captured referral is older than the attribution window."""
    now = now or utcnow()
    return now - to_naive_utc(captured_at) > timedelta(days=settings.REFERRAL_EXPIRY_DAYS)


def extract_utm(full_params: Optional[Dict[str, str]]) -> Dict[str, Optional[str]]:
    params = full_params or {}
    return {name: (params.get(name) or None) for name in UTM_FIELDS}


class AttributionService:
    """
    Records the referral that brought a new identity in.

    @class AttributionService
    @since 1.0.0
    """

    def __init__(self, db: AsyncSession, cache: Optional[StatusCache] = None):
        self.db = db
        self.cache = cache or StatusCache()

    async def _resolve_code(self, code: str, now: datetime) -> tuple:
        """
        Find the approved record for a code.

        @returns (record, None) when usable, otherwise (None, reason)
        """
        stmt = select(ReferralCode).where(ReferralCode.code == code)
        result = await self.db.execute(stmt)
        records = list(result.scalars().all())

        approved = next((r for r in records if r.is_approved), None)
        if approved is None:
            return None, ("code_not_approved" if records else "not_found")
        if not approved.is_active:
            return None, "code_inactive"
        if approved.expires_at is not None and approved.expires_at < now:
            return None, "code_expired"
        return approved, None

    async def has_attribution(self, identity: AuthenticatedIdentity) -> bool:
        stmt = select(UserReferral.id).where(
            or_(
                UserReferral.user_email == identity.email,
                UserReferral.user_id == identity.user_id,
            )
        ).limit(1)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def convert(
        self,
        identity: AuthenticatedIdentity,
        code: str,
        captured_at: Optional[datetime] = None,
        tag: Optional[str] = None,
        source: Optional[str] = None,
        full_params: Optional[Dict[str, str]] = None,
        wallet_address: Optional[str] = None,
    ) -> ConversionResult:
        """
        Attribute the identity to a referral code.

        Checks run in order (expiry, code approval, existing attribution) and
        the first failing one is reported. The attribution insert and the
        code's usage increment commit together.

        @param identity - Verified signed-up identity
        @param code - Referral code carried by the link or a matched visit
        @param captured_at - When the referral was captured; defaults to now
        @param tag - Optional campaign tag
        @param source - Optional campaign source
        @param full_params - All captured link parameters (UTM values are read from here)
        @param wallet_address - Optional wallet address of the new user
        @returns ConversionResult
        """
        now = utcnow()
        referred_at = to_naive_utc(captured_at) if captured_at else now

        if is_expired(referred_at, now):
            logger.info(f"Referral for {identity.email} expired (captured {referred_at.isoformat()})")
            return ConversionResult(attributed=False, reason="expired")

        normalized = normalize_code(code)
        record, reason = await self._resolve_code(normalized, now)
        if record is None:
            logger.info(f"Referral for {identity.email} not attributed, code {normalized}: {reason}")
            return ConversionResult(attributed=False, reason=reason)

        if await self.has_attribution(identity):
            logger.info(f"User {identity.email} already has a referral attribution")
            return ConversionResult(attributed=False, reason="already_attributed")

        code_id = record.id
        referrer_id = record.referrer_id
        referrer_email = (await self.db.execute(
            select(Referrer.email).where(Referrer.id == referrer_id)
        )).scalar_one_or_none()
        params = dict(full_params or {})
        referral = UserReferral(
            user_email=identity.email,
            user_id=identity.user_id,
            wallet_address=wallet_address or None,
            code_used=normalized,
            referrer_id=referrer_id,
            custom_tag=tag or None,
            source=source or None,
            full_params=params,
            referred_at=referred_at,
            converted_at=now,
            **extract_utm(params),
        )

        try:
            self.db.add(referral)
            await self.db.execute(
                update(ReferralCode)
                .where(ReferralCode.id == code_id)
                .values(usage_count=ReferralCode.usage_count + 1)
            )
            await self.db.commit()
        except IntegrityError:
            # A concurrent conversion for the same identity committed first
            await self.db.rollback()
            logger.info(f"Concurrent conversion for {identity.email} already attributed")
            return ConversionResult(attributed=False, reason="already_attributed")
        except Exception:
            await self.db.rollback()
            raise

        # The referrer's cached status carries per-code usage counts
        if referrer_email:
            await self.cache.invalidate(referrer_email)
        logger.info(f"Referral attributed: {identity.email} -> {normalized} (referrer {referrer_id})")
        return ConversionResult(attributed=True, code_used=normalized, referral_id=referral.id)
