import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings

if TYPE_CHECKING:
    from app.services.orchestrator import GameOrchestrator

logger = logging.getLogger(__name__)


class SchedulerService:
    """Runs the periodic room and session sweeps."""

    def __init__(self):
        self.scheduler = None
        self.orchestrator: Optional["GameOrchestrator"] = None
        self._initialize_scheduler()

    def _initialize_scheduler(self):
        """Initialize the APScheduler instance."""
        jobstores = {
            'default': MemoryJobStore(),
        }
        # Sweeps mutate the registries and must run on the event loop
        executors = {
            'default': AsyncIOExecutor(),
        }
        job_defaults = {
            'coalesce': True,
            'max_instances': 1
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults
        )
        logger.info("Scheduler service initialized")

    def start(self, orchestrator: "GameOrchestrator"):
        """Start the scheduler."""
        self.orchestrator = orchestrator
        if self.scheduler and not self.scheduler.running:
            self.scheduler.start()
            self._setup_recurring_jobs()
            logger.info("Scheduler service started")

    def shutdown(self):
        """Shutdown the scheduler."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler service stopped")
            # A stopped AsyncIOScheduler stays bound to its old event loop
            self._initialize_scheduler()

    def _setup_recurring_jobs(self):
        """Set up the recurring cleanup jobs."""
        self.scheduler.add_job(
            func=self._cleanup_inactive_rooms,
            trigger=IntervalTrigger(minutes=settings.ROOM_CLEANUP_INTERVAL_MINUTES),
            id='inactive_room_cleanup',
            name='Inactive Room Cleanup',
            replace_existing=True
        )

        self.scheduler.add_job(
            func=self._cleanup_inactive_sessions,
            trigger=IntervalTrigger(minutes=settings.SESSION_CLEANUP_INTERVAL_MINUTES),
            id='inactive_session_cleanup',
            name='Inactive Session Cleanup',
            replace_existing=True
        )

        logger.info("Recurring cleanup jobs scheduled")

    async def _cleanup_inactive_rooms(self):
        if not self.orchestrator:
            return
        try:
            await self.orchestrator.sweep_inactive_rooms()
        except Exception as e:
            logger.error(f"Error cleaning up inactive rooms: {e}", exc_info=True)

    async def _cleanup_inactive_sessions(self):
        if not self.orchestrator:
            return
        try:
            await self.orchestrator.sweep_inactive_sessions()
        except Exception as e:
            logger.error(f"Error cleaning up inactive sessions: {e}", exc_info=True)

    def get_scheduled_jobs(self) -> List[Dict[str, Any]]:
        """Get list of all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger)
            })
        return jobs


# Global scheduler service instance
scheduler_service = SchedulerService()
