"""
Test suite for the pending visit cleanup job.

@module test_pending_visit_cleanup_job
@since 1.0.0
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock
from sqlalchemy import select

from wallet_referrals.core.config import settings
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.models import PendingReferralVisit
from wallet_referrals.jobs.pending_visit_cleanup_job import (
    PendingVisitCleanupJob,
    delete_expired_visits,
    schedule_pending_visit_cleanup,
)


def make_visit(code, expires_in_minutes):
    now = utcnow()
    return PendingReferralVisit(
        referral_code=code,
        ip_address="203.0.113.7",
        user_agent="Mozilla/5.0",
        full_params={},
        created_at=now - timedelta(minutes=5),
        expires_at=now + timedelta(minutes=expires_in_minutes),
    )


class TestCleanup:

    async def test_only_expired_visits_are_deleted(self, db):
        db.add_all([make_visit("OLD1", -30), make_visit("OLD2", -1), make_visit("LIVE", 5)])
        await db.commit()

        deleted = await delete_expired_visits(db)

        assert deleted == 2
        remaining = (await db.execute(select(PendingReferralVisit.referral_code))).scalars().all()
        assert remaining == ["LIVE"]

    async def test_run_cleanup_with_session(self, db):
        db.add(make_visit("OLD1", -10))
        await db.commit()
        job = PendingVisitCleanupJob()

        assert await job.run_cleanup(db) == 1
        assert job.is_running is False

    async def test_overlapping_run_is_skipped(self, db):
        db.add(make_visit("OLD1", -10))
        await db.commit()
        job = PendingVisitCleanupJob()
        job.is_running = True

        assert await job.run_cleanup(db) == 0
        assert len((await db.execute(select(PendingReferralVisit))).scalars().all()) == 1


class TestScheduling:

    def test_disabled_job_is_not_scheduled(self, monkeypatch):
        monkeypatch.setattr(settings, "PENDING_VISIT_CLEANUP_ENABLED", False)
        scheduler = MagicMock()

        schedule_pending_visit_cleanup(scheduler)

        scheduler.add_job.assert_not_called()

    def test_enabled_job_runs_on_interval(self, monkeypatch):
        monkeypatch.setattr(settings, "PENDING_VISIT_CLEANUP_ENABLED", True)
        monkeypatch.setattr(settings, "PENDING_VISIT_CLEANUP_INTERVAL_MINUTES", 15)
        scheduler = MagicMock()

        schedule_pending_visit_cleanup(scheduler)

        scheduler.add_job.assert_called_once()
        kwargs = scheduler.add_job.call_args.kwargs
        assert kwargs["trigger"] == "interval"
        assert kwargs["minutes"] == 15
        assert kwargs["id"] == "pending_visit_cleanup"
