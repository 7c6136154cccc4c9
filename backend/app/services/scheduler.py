"""Maintenance scheduler for expiring short-lived auth state."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings

logger = logging.getLogger(__name__)


async def sweep_auth_sessions_task():
    """Drop pending SSO sessions whose browser never came back."""
    from app.services.auth_sessions import auth_sessions

    try:
        await auth_sessions.sweep_expired()
    except Exception as e:
        # INTENTIONAL: Sweep errors should not crash the scheduler.
        logger.error(f"Error sweeping SSO sessions: {e}")


async def purge_login_codes_task():
    """Delete expired one-time login codes."""
    from app.database import db_session
    from app.services.login_codes import login_codes

    try:
        async with db_session() as db:
            await login_codes.purge_expired(db)
    except Exception as e:
        # INTENTIONAL: Purge errors should not crash the scheduler.
        logger.error(f"Error purging login codes: {e}")


class MaintenanceScheduler:
    """Runs periodic cleanup of pending SSO sessions and login codes."""

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self.sweep_job_id = "auth_session_sweep"
        self.purge_job_id = "login_code_purge"

    def start(
        self,
        sweep_seconds: int | None = None,
        purge_minutes: int | None = None,
    ):
        """
        Start the scheduler.

        Args:
            sweep_seconds: Pending session sweep interval (defaults to settings)
            purge_minutes: Login code purge interval (defaults to settings)
        """
        sweep_seconds = sweep_seconds or settings.auth_session_sweep_seconds
        purge_minutes = purge_minutes or settings.login_code_purge_minutes
        try:
            self.scheduler.add_job(
                sweep_auth_sessions_task,
                trigger=IntervalTrigger(seconds=sweep_seconds),
                id=self.sweep_job_id,
                name="Expired SSO session sweep",
                replace_existing=True,
            )
            self.scheduler.add_job(
                purge_login_codes_task,
                trigger=IntervalTrigger(minutes=purge_minutes),
                id=self.purge_job_id,
                name="Expired login code purge",
                replace_existing=True,
            )

            self.scheduler.start()
            logger.info(
                f"Scheduler started: session sweep every {sweep_seconds}s, "
                f"login code purge every {purge_minutes}m"
            )

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def get_next_run_time(self, job_id: str):
        job = self.scheduler.get_job(job_id)
        if job:
            return job.next_run_time
        return None
