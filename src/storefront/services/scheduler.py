"""
Background scheduling for the Storefront backend.

Runs with the API process (started from the FastAPI lifespan) and provides:
- Periodic marketplace sync of channels whose interval has elapsed
- Daily approval of affiliate commissions past the hold period
"""

from datetime import datetime
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, JobExecutionEvent

from storefront.database.connection import get_db_context
from storefront.services.affiliate_service import AffiliateService
from storefront.services.marketplace_sync import MarketplaceSyncService
from storefront.utils.config import SchedulerConfig, get_config
from storefront.utils.exceptions import SchedulingError
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


MARKETPLACE_SYNC_JOB_ID = "marketplace_sync_due_channels"
COMMISSION_APPROVAL_JOB_ID = "affiliate_commission_approval"


def run_marketplace_sync() -> Dict[str, Any]:
    """Sync every channel that is due; one session per run."""
    with get_db_context() as db:
        result = MarketplaceSyncService(db).sync_due_channels()
    logger.info(f"Scheduled marketplace sync: {result['message']} {result['totals']}")
    return result


def run_commission_approval() -> int:
    """Approve pending commissions whose hold period has passed."""
    with get_db_context() as db:
        approved = AffiliateService(db).approve_pending_commissions()
    logger.info(f"Scheduled commission approval: {approved} commission(s) approved")
    return approved


class SchedulingService:
    """
    APScheduler wrapper owning the application's recurring jobs.

    Job functions are synchronous; the asyncio executor runs them in the
    event loop's default thread pool so requests are not blocked.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None):
        """
        Initialize scheduling service.

        Args:
            config: Scheduler configuration (defaults to the global config)
        """
        self.config = config or get_config().scheduler
        self.scheduler = self._create_scheduler()
        self.last_results: Dict[str, Dict[str, Any]] = {}
        logger.info("SchedulingService initialized")

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure APScheduler instance."""
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 60
        }

        scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

        scheduler.add_listener(self._job_executed_listener, EVENT_JOB_EXECUTED)
        scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)

        return scheduler

    def register_jobs(self) -> None:
        """Add the marketplace sync and commission approval jobs."""
        try:
            self.scheduler.add_job(
                run_marketplace_sync,
                IntervalTrigger(minutes=self.config.marketplace_sync_interval_minutes),
                id=MARKETPLACE_SYNC_JOB_ID,
                name="Marketplace sync of due channels",
                replace_existing=True,
            )
            self.scheduler.add_job(
                run_commission_approval,
                CronTrigger(hour=self.config.commission_approval_hour, minute=0),
                id=COMMISSION_APPROVAL_JOB_ID,
                name="Affiliate commission approval",
                replace_existing=True,
            )
        except ValueError as e:
            raise SchedulingError(f"Failed to add scheduled jobs: {e}")

        logger.info(
            f"Scheduled jobs registered: sync every {self.config.marketplace_sync_interval_minutes} min, "
            f"commission approval daily at {self.config.commission_approval_hour:02d}:00 UTC"
        )

    def start(self) -> None:
        """Register jobs and start the scheduler; must run inside an event loop."""
        if self.scheduler.running:
            return
        self.register_jobs()
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        """Running flag, jobs with their next run time and last outcomes."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run: Optional[datetime] = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
            })
        return {
            "running": self.scheduler.running,
            "jobs": jobs,
            "last_results": self.last_results,
        }

    def _job_executed_listener(self, event: JobExecutionEvent):
        self.last_results[event.job_id] = {
            "status": "success",
            "finished_at": datetime.utcnow().isoformat(),
        }
        logger.debug(f"Job {event.job_id} executed")

    def _job_error_listener(self, event: JobExecutionEvent):
        self.last_results[event.job_id] = {
            "status": "failed",
            "finished_at": datetime.utcnow().isoformat(),
            "error": str(event.exception),
        }
        logger.error(f"Job {event.job_id} failed: {event.exception}")


# Global scheduler instance
_scheduler: Optional[SchedulingService] = None


def get_scheduler() -> SchedulingService:
    """Get global scheduling service."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SchedulingService()
    return _scheduler
