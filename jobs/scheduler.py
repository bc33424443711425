"""Background job scheduler for the Deal Escrow Bot"""

import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore

from config import Config
from services.pending_interactions import PendingInteractionRegistry
from services.reconciliation_poller import DealReconciliationPoller

logger = logging.getLogger(__name__)

POLL_JOB_ID = "poll_deals"
SWEEP_JOB_ID = "sweep_pending_interactions"


class DealScheduler:
    """Runs the reconciliation poll and pending-interaction expiry on fixed intervals"""

    def __init__(self, poller: DealReconciliationPoller, registry: PendingInteractionRegistry, settings=Config):
        self.poller = poller
        self.registry = registry
        self.settings = settings

        job_defaults = {
            'coalesce': True,  # A slow tick never piles up behind itself
            'max_instances': 1,
            'misfire_grace_time': 30,
        }
        self.scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': AsyncIOExecutor()},
            job_defaults=job_defaults,
            timezone='UTC',
        )

    def setup_jobs(self):
        """Register all scheduled jobs"""
        self.scheduler.add_job(
            self.poll_deals,
            trigger=IntervalTrigger(seconds=self.settings.POLL_INTERVAL_SECONDS),
            id=POLL_JOB_ID,
            name="Reconcile Deal Status With Chain",
            replace_existing=True,
        )

        if self.settings.PENDING_INTERACTION_TTL_SECONDS > 0:
            self.scheduler.add_job(
                self.sweep_pending_interactions,
                trigger=IntervalTrigger(
                    seconds=self.settings.PENDING_SWEEP_INTERVAL_SECONDS,
                    start_date=datetime.now().replace(second=30, microsecond=0),
                ),
                id=SWEEP_JOB_ID,
                name="Expire Unanswered Signing Requests",
                replace_existing=True,
            )
        else:
            logger.warning("⚠️ Pending interaction expiry disabled (PENDING_INTERACTION_TTL_SECONDS=0)")

        logger.info(f"📅 Scheduled jobs: {[job.id for job in self.scheduler.get_jobs()]}")

    async def poll_deals(self):
        """One reconciliation tick; errors never escape into the scheduler"""
        try:
            await self.poller.run_once()
        except Exception as e:
            logger.error(f"❌ POLL_LOOP_ERROR: {e}")

    async def sweep_pending_interactions(self):
        try:
            expired = await self.registry.sweep_expired(self.settings.PENDING_INTERACTION_TTL_SECONDS)
            if expired:
                logger.info(f"🧹 Expired {len(expired)} unanswered signing requests, {len(self.registry)} still pending")
        except Exception as e:
            logger.error(f"❌ PENDING_SWEEP_ERROR: {e}")

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ Deal scheduler started")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("🛑 Deal scheduler stopped")
