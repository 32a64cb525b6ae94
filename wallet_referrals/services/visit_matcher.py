"""
Probabilistic matching of a signup to a pending referral visit.

Every ambiguous path reports "unmatched" instead of guessing; callers fall
back to the code carried in the link itself.

@module visit_matcher
@since 1.0.0
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from wallet_referrals.core.config import settings
from wallet_referrals.core.fingerprint import RequestMetadata
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.models import PendingReferralVisit

logger = logging.getLogger(__name__)

NO_MATCH = "no_match"
MULTIPLE_MATCHES = "multiple_matches"
DISABLED = "disabled"


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    referral_data: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @classmethod
    def unmatched(cls, reason: str) -> "MatchResult":
        return cls(matched=False, reason=reason)


def narrow_candidates(
    visits: List[PendingReferralVisit],
    user_agent: str,
    screen_resolution: Optional[str] = None,
    strict_user_agent: bool = True,
) -> List[PendingReferralVisit]:
    """
    Filter same-IP candidates down by user-agent, then by screen resolution.

    The resolution filter is only applied when more than one candidate is
    left, and is discarded when it would eliminate every candidate.
    """
    candidates = visits
    if strict_user_agent:
        candidates = [v for v in candidates if v.user_agent == user_agent]

    if screen_resolution and len(candidates) > 1:
        by_screen = [v for v in candidates if v.screen_resolution == screen_resolution]
        logger.debug(
            f"Screen resolution filter {screen_resolution}: {len(candidates)} -> {len(by_screen)}"
        )
        if by_screen:
            candidates = by_screen

    return candidates


class VisitMatcher:
    """
    Resolves a request fingerprint to zero, one, or several pending visits.

    @class VisitMatcher
    @since 1.0.0
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def match(
        self,
        request_meta: RequestMetadata,
        screen_resolution: Optional[str] = None,
    ) -> MatchResult:
        """
        Match the caller to exactly one unexpired pending visit.

        A unique match is consumed (deleted) so the same click cannot be
        attributed twice. Lookup failures report ``no_match``.

        @param request_meta - IP and truncated user-agent read from headers
        @param screen_resolution - Optional client-reported secondary signal
        @returns MatchResult
        """
        if not settings.PROBABILISTIC_MATCHING_ENABLED:
            return MatchResult.unmatched(DISABLED)

        if not request_meta.has_ip:
            logger.warning("Visit match skipped, could not determine client IP")
            return MatchResult.unmatched(NO_MATCH)

        try:
            return await self._match(request_meta, screen_resolution)
        except Exception as e:
            logger.error(f"Visit match failed for ip {request_meta.ip_address}: {str(e)}")
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback after failed visit match also failed: {rollback_error}")
            return MatchResult.unmatched(NO_MATCH)

    async def _match(self, request_meta: RequestMetadata, screen_resolution: Optional[str]) -> MatchResult:
        stmt = (
            select(PendingReferralVisit)
            .where(
                PendingReferralVisit.ip_address == request_meta.ip_address,
                PendingReferralVisit.expires_at > utcnow(),
            )
            .order_by(PendingReferralVisit.created_at.desc())
            .limit(settings.MAX_PENDING_PER_IP)
        )
        result = await self.db.execute(stmt)
        visits = list(result.scalars().all())

        logger.debug(f"Found {len(visits)} pending visits for ip {request_meta.ip_address}")
        if not visits:
            return MatchResult.unmatched(NO_MATCH)

        candidates = narrow_candidates(
            visits,
            request_meta.user_agent,
            screen_resolution=screen_resolution,
            strict_user_agent=settings.STRICT_USER_AGENT_MATCH,
        )

        if not candidates:
            logger.info(f"No pending visit matches the user-agent for ip {request_meta.ip_address}")
            return MatchResult.unmatched(NO_MATCH)

        if len(candidates) > 1:
            # Leave the rows alone: they expire on their own or match individually later
            logger.info(
                f"Ambiguous match for ip {request_meta.ip_address}: "
                f"{len(candidates)} candidates ({', '.join(v.referral_code for v in candidates)})"
            )
            return MatchResult.unmatched(MULTIPLE_MATCHES)

        visit = candidates[0]
        referral_data = {
            "ref": visit.referral_code,
            "tag": visit.custom_tag,
            "source": visit.source,
            "fullParams": dict(visit.full_params or {}),
            "capturedAt": visit.created_at,
        }

        deleted = await self.db.execute(
            delete(PendingReferralVisit).where(PendingReferralVisit.id == visit.id)
        )
        await self.db.commit()

        if deleted.rowcount == 0:
            # A concurrent request consumed this visit first
            logger.info(f"Pending visit {visit.id} was consumed by a concurrent match")
            return MatchResult.unmatched(NO_MATCH)

        logger.info(f"Matched pending visit {visit.id} to code {visit.referral_code}")
        return MatchResult(matched=True, referral_data=referral_data)
