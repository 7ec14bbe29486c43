"""
APScheduler setup for the recheck loop.

Two recurring jobs: the recheck tick (manual jobs, then automatic dispatch)
every ``dispatch_every_minutes`` and the daily maintenance run at 02:00.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore

from farewatch.config import get_settings
from farewatch.database import SessionLocal
from farewatch.services.alert_dispatcher import EmailAlertDispatcher
from farewatch.services.monitor import RecheckMonitor
from farewatch.services.price_checker import build_price_checker
from farewatch.services.scheduling import dispatch_cadence_minutes

# Configure logging
logger = logging.getLogger(__name__)

# Global scheduler and monitor instances
scheduler: Optional[AsyncIOScheduler] = None
monitor: Optional[RecheckMonitor] = None

settings = get_settings()


def get_monitor() -> RecheckMonitor:
    """Get or create the global monitor instance."""
    global monitor
    if monitor is None:
        monitor = RecheckMonitor(
            settings=settings,
            session_factory=SessionLocal,
            price_checker=build_price_checker(settings),
            alert_dispatcher=EmailAlertDispatcher(settings),
        )
    return monitor


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the global scheduler instance."""
    global scheduler
    if scheduler is None:
        logger.info(f"Scheduler using timezone: {settings.timezone}")

        scheduler = AsyncIOScheduler(
            jobstores={'default': MemoryJobStore()},
            timezone=settings.timezone
        )

        _setup_scheduled_jobs(scheduler)

    return scheduler


def _setup_scheduled_jobs(target: AsyncIOScheduler):
    """Register the recheck tick and the maintenance job."""
    cadence = dispatch_cadence_minutes(settings.dispatch_every_minutes)

    target.add_job(
        recheck_tick,
        trigger=IntervalTrigger(minutes=cadence),
        id='recheck_tick',
        name=f'Recheck Tick (every {cadence} min)',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    target.add_job(
        maintenance_job,
        trigger=CronTrigger(hour=2, minute=0),
        id='maintenance',
        name='Daily Maintenance (2:00 AM)',
        replace_existing=True,
        max_instances=1,
    )

    logger.info("Scheduled jobs configured:")
    logger.info(f"  - Recheck tick: every {cadence} min (manual jobs, then due trips)")
    logger.info("  - Maintenance: 2:00 AM daily (local time)")


async def recheck_tick():
    await get_monitor().tick()


async def maintenance_job():
    """Delete old jobs and alerts, forget stale failures."""
    logger.info("Starting scheduled maintenance")
    try:
        await get_monitor().run_maintenance()
    except Exception as e:
        logger.error(f"Error in maintenance job: {e}")


async def start_scheduler():
    """Start the scheduler (call this from FastAPI startup)."""
    scheduler_instance = get_scheduler()

    if not scheduler_instance.running:
        # Startup cleanup before the first tick
        await maintenance_job()

        scheduler_instance.start()
        get_monitor().start()
        logger.info("APScheduler started successfully")

        # Log next job times
        for job in scheduler_instance.get_jobs():
            next_run = job.next_run_time
            logger.info(f"Next '{job.name}': {next_run}")
    else:
        logger.warning("Scheduler already running")


async def stop_scheduler():
    """Stop admitting ticks, then drain in-flight checks (call this from FastAPI shutdown)."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler stopped")
        scheduler = None

    if monitor is not None:
        abandoned = await monitor.shutdown(settings.shutdown_timeout_seconds)
        if abandoned:
            logger.warning(f"Abandoned {abandoned} running checks")


def get_scheduler_status(target: Optional[RecheckMonitor] = None) -> dict:
    """Monitor status plus the next run of each scheduled job."""
    status = (target or get_monitor()).get_status()

    jobs = []
    if scheduler is not None and scheduler.running:
        for job in scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            })
    else:
        status["is_running"] = False

    status["jobs"] = jobs
    return status
