"""
Statistics for approved referrers: per-code usage, UTM breakdown and recent
referrals with masked emails.

@module referral_stats_service
@since 1.0.0
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from wallet_referrals.core.config import settings
from wallet_referrals.core.security import AuthenticatedIdentity
from wallet_referrals.db.models import ReferralCode, UserReferral
from wallet_referrals.services.referrer_registry import ReferrerRegistry, _iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatsResult:
    success: bool
    stats: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    message: Optional[str] = None


def mask_email(email: str) -> str:
    """
    Mask an email address for display to the referrer.

    "user@example.com" -> "u***@e***.com"
    """
    local, _, domain = email.partition("@")
    if not domain:
        return "***@***.***"

    parts = domain.split(".")
    first = local[:1] or "*"
    if len(parts) < 2 or not parts[1]:
        return f"{first}***@***"

    return f"{first}***@{parts[0][:1] or '*'}***.{parts[1]}"


def _sorted_counts(values: Iterable[Optional[str]]) -> List[Dict[str, Any]]:
    counts = Counter(values)
    return [
        {"value": value, "count": count}
        for value, count in sorted(counts.items(), key=lambda item: item[1], reverse=True)
    ]


def aggregate_utm(referrals: List[UserReferral]) -> Dict[str, List[Dict[str, Any]]]:
    """Count referrals per UTM value, highest first; missing values are counted under None."""
    return {
        "source": _sorted_counts(r.utm_source or None for r in referrals),
        "medium": _sorted_counts(r.utm_medium or None for r in referrals),
        "campaign": _sorted_counts(r.utm_campaign or None for r in referrals),
    }


class ReferralStatsService:
    """
    Read-only statistics over a referrer's codes and attributions.

    @class ReferralStatsService
    @since 1.0.0
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = ReferrerRegistry(db)

    async def get_stats(self, identity: AuthenticatedIdentity) -> StatsResult:
        """
        Stats for the identity's referrer account.

        @param identity - Verified referrer
        @returns StatsResult, or a not_referrer / not_approved failure
        """
        referrer = await self.registry.get_referrer_by_email(identity.email)
        if referrer is None:
            return StatsResult(success=False, error="not_referrer", message="You are not a referrer")
        if not referrer.is_approved:
            return StatsResult(success=False, error="not_approved",
                               message="Your referrer account is pending approval")
        return StatsResult(success=True, stats=await self.build_stats(referrer.id))

    async def build_stats(self, referrer_id: str) -> Dict[str, Any]:
        codes_result = await self.db.execute(
            select(ReferralCode)
            .where(ReferralCode.referrer_id == referrer_id)
            .order_by(ReferralCode.usage_count.desc(), ReferralCode.id)
        )
        codes = list(codes_result.scalars().all())

        referrals_result = await self.db.execute(
            select(UserReferral)
            .where(UserReferral.referrer_id == referrer_id)
            .order_by(UserReferral.converted_at.desc())
        )
        referrals = list(referrals_result.scalars().all())

        recent = referrals[:settings.RECENT_REFERRALS_LIMIT]
        logger.debug(f"Stats for referrer {referrer_id}: {len(codes)} codes, {len(referrals)} referrals")

        return {
            "referrerId": referrer_id,
            "totalReferrals": len(referrals),
            "codeStats": [
                {
                    "code": c.code,
                    "label": c.label,
                    "usageCount": c.usage_count,
                    "isActive": c.is_active,
                    "expiresAt": _iso(c.expires_at),
                }
                for c in codes
            ],
            "utmBreakdown": aggregate_utm(referrals),
            "recentReferrals": [
                {
                    "id": r.id,
                    "userEmail": mask_email(r.user_email),
                    "codeUsed": r.code_used,
                    "utmSource": r.utm_source,
                    "utmMedium": r.utm_medium,
                    "utmCampaign": r.utm_campaign,
                    "convertedAt": _iso(r.converted_at),
                }
                for r in recent
            ],
        }
