"""
APScheduler configuration for background maintenance jobs.

@module scheduler
@since 1.0.0
"""

import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def _job_listener(event):
    if event.exception:
        logger.error(
            f"Job {event.job_id} failed with exception: {event.exception}",
            exc_info=event.exception
        )
    else:
        logger.debug(f"Job {event.job_id} executed successfully")


def get_scheduler() -> AsyncIOScheduler:
    """
    Get or create the global scheduler instance.

    @returns APScheduler instance
    """
    global _scheduler

    if _scheduler is None:
        _scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300
            },
            timezone='UTC'
        )
        _scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        logger.info("APScheduler initialized with AsyncIOScheduler")

    return _scheduler


def start_scheduler() -> None:
    """
    Schedule all background jobs and start the scheduler.

    Must run inside the application's event loop (startup event).
    """
    try:
        scheduler = get_scheduler()

        from wallet_referrals.jobs import schedule_pending_visit_cleanup

        schedule_pending_visit_cleanup(scheduler)

        scheduler.start()

        jobs = scheduler.get_jobs()
        logger.info(f"Background job scheduler started with {len(jobs)} jobs")
        for job in jobs:
            logger.info(f"  - {job.name} (ID: {job.id}) - Next run: {job.next_run_time}")

    except Exception as e:
        logger.error(f"Failed to start scheduler: {str(e)}")
        raise


def shutdown_scheduler() -> None:
    global _scheduler

    if _scheduler is not None:
        try:
            logger.info("Shutting down background job scheduler...")
            _scheduler.shutdown(wait=True)
            _scheduler = None
            logger.info("Background job scheduler shut down successfully")

        except Exception as e:
            logger.error(f"Error during scheduler shutdown: {str(e)}")
            raise
