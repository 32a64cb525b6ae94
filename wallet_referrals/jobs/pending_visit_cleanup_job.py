"""
Background job for deleting expired pending referral visits.

Matching already ignores expired visits, so this job only keeps the table
small; it is disabled unless ``PENDING_VISIT_CLEANUP_ENABLED`` is set.

@module pending_visit_cleanup_job
@since 1.0.0
"""

import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete

from wallet_referrals.core.config import settings
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.database import get_db
from wallet_referrals.db.models import PendingReferralVisit

logger = logging.getLogger(__name__)


async def delete_expired_visits(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Delete every pending visit whose match window has closed.

    @param db - Database session
    @param now - Reference time, defaults to the current UTC time
    @returns Number of deleted visits
    """
    result = await db.execute(
        delete(PendingReferralVisit).where(PendingReferralVisit.expires_at <= (now or utcnow()))
    )
    await db.commit()
    return result.rowcount or 0


class PendingVisitCleanupJob:
    """
    Periodic cleanup of expired pending visits.

    @class PendingVisitCleanupJob
    @since 1.0.0
    """

    def __init__(self):
        self.is_running = False

    async def run_cleanup(self, db: Optional[AsyncSession] = None) -> int:
        """
        Execute one cleanup pass.

        @param db - Session to use; a new one is opened when omitted
        @returns Number of deleted visits
        """
        if self.is_running:
            logger.warning("Pending visit cleanup already running, skipping")
            return 0

        self.is_running = True
        start_time = utcnow()
        deleted = 0

        try:
            if db is not None:
                deleted = await delete_expired_visits(db)
            else:
                async for session in get_db():
                    deleted = await delete_expired_visits(session)
                    break

            duration = (utcnow() - start_time).total_seconds()
            logger.info(f"Pending visit cleanup removed {deleted} expired visits in {duration:.2f}s")
            return deleted

        except Exception as e:
            logger.error(f"Pending visit cleanup failed: {str(e)}")
            raise

        finally:
            self.is_running = False


# Global job instance
pending_visit_cleanup_job = PendingVisitCleanupJob()


def schedule_pending_visit_cleanup(scheduler) -> None:
    """
    Schedule the cleanup job with APScheduler.

    @param scheduler - APScheduler instance
    """
    if not settings.PENDING_VISIT_CLEANUP_ENABLED:
        logger.info("Pending visit cleanup disabled, not scheduling")
        return

    scheduler.add_job(
        func=pending_visit_cleanup_job.run_cleanup,
        trigger="interval",
        minutes=settings.PENDING_VISIT_CLEANUP_INTERVAL_MINUTES,
        id="pending_visit_cleanup",
        name="Pending Referral Visit Cleanup",
        replace_existing=True
    )

    logger.info(
        f"Pending visit cleanup scheduled every {settings.PENDING_VISIT_CLEANUP_INTERVAL_MINUTES} minutes"
    )
