"""Background jobs module."""

from wallet_referrals.jobs.pending_visit_cleanup_job import schedule_pending_visit_cleanup

__all__ = [
    'schedule_pending_visit_cleanup'
]
