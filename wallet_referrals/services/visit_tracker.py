"""
Pending referral visit tracking.

Records an unauthenticated referral click together with the server-observed
fingerprint, so a signup from the installed app can later be matched back to
it when browser storage did not carry over.

@module visit_tracker
@since 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from wallet_referrals.core.config import settings
from wallet_referrals.core.fingerprint import RequestMetadata
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.models import PendingReferralVisit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrackResult:
    success: bool
    visit_id: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None


class VisitTracker:
    """
    Stores time-boxed fingerprint + code tuples.

    Tracking is best-effort: failures are logged and reported, never raised.

    @class VisitTracker
    @since 1.0.0
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def track(
        self,
        code: str,
        request_meta: RequestMetadata,
        screen_resolution: Optional[str] = None,
        tag: Optional[str] = None,
        source: Optional[str] = None,
        full_params: Optional[Dict[str, str]] = None,
    ) -> TrackResult:
        """
        Store one pending visit expiring after the match window.

        @param code - Referral code from the visited link
        @param request_meta - IP and truncated user-agent read from headers
        @param screen_resolution - Optional client-reported secondary signal
        @param tag - Optional campaign tag
        @param source - Optional campaign source
        @param full_params - All captured link parameters
        @returns TrackResult with the visit id on success
        """
        if not settings.PROBABILISTIC_MATCHING_ENABLED:
            logger.debug("Visit tracking skipped, probabilistic matching disabled")
            return TrackResult(success=False, error="disabled",
                               message="Probabilistic matching is disabled")

        if not request_meta.has_ip:
            logger.warning("Visit not tracked, could not determine client IP")
            return TrackResult(success=False, error="no_ip",
                               message="Could not determine client IP address")

        now = utcnow()
        visit = PendingReferralVisit(
            referral_code=code,
            ip_address=request_meta.ip_address,
            user_agent=request_meta.user_agent,
            screen_resolution=screen_resolution or None,
            custom_tag=tag or None,
            source=source or None,
            full_params=dict(full_params or {}),
            created_at=now,
            expires_at=now + timedelta(minutes=settings.MATCH_WINDOW_MINUTES),
        )

        try:
            self.db.add(visit)
            await self.db.commit()
        except Exception as e:
            logger.error(f"Failed to store pending visit for code {code}: {str(e)}")
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback after failed visit insert also failed: {rollback_error}")
            return TrackResult(success=False, error="tracking_failed",
                               message="Visit could not be recorded")

        logger.info(
            f"Stored pending visit {visit.id} for code {code} "
            f"(ip={request_meta.ip_address}, screen={screen_resolution or '-'}, "
            f"window={settings.MATCH_WINDOW_MINUTES}m)"
        )
        return TrackResult(success=True, visit_id=visit.id)
