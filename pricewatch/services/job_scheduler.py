"""
Cron scheduling for the price-refresh and alert-check jobs
"""
import logging
from typing import Any, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from pricewatch.core.config import ALERT_CHECK_JOB, PRICE_REFRESH_JOB, settings as default_settings
from pricewatch.services.alert_scheduler import AlertScheduler
from pricewatch.services.price_ingestor import PriceIngestor

logger = logging.getLogger(__name__)

CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week")


def build_cron_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build a trigger from a cron expression

    Five fields are standard crontab; six fields carry a leading seconds field.
    """
    fields = expression.split()
    if len(fields) == 5:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    if len(fields) == 6:
        values = dict(zip(("second",) + CRON_FIELDS, fields))
        return CronTrigger(timezone=timezone, **values)
    raise ValueError(f"Cron expression must have 5 or 6 fields, got {len(fields)}: {expression!r}")


def job_executed_listener(event):
    logger.info(f"Job {event.job_id} executed at {event.scheduled_run_time}")


def job_error_listener(event):
    logger.error(f"Job {event.job_id} failed: {event.exception}")


def job_skipped_listener(event):
    logger.warning(f"Job {event.job_id} skipped at {event.scheduled_run_time}: previous run still in progress")


class JobScheduler:
    """Registers the two periodic jobs on an asyncio scheduler"""

    def __init__(
        self,
        ingestor: PriceIngestor,
        alert_scheduler: AlertScheduler,
        settings=default_settings,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.ingestor = ingestor
        self.alert_scheduler = alert_scheduler
        self.settings = settings
        self.scheduler = scheduler or AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
            timezone="UTC",
        )
        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)
        self.scheduler.add_listener(job_skipped_listener, EVENT_JOB_MAX_INSTANCES)

    def register_jobs(self):
        """Add (or replace) both jobs using the configured schedules"""
        jobs = {
            PRICE_REFRESH_JOB: (self.ingestor.refresh_prices, "Price Refresh"),
            ALERT_CHECK_JOB: (self.alert_scheduler.run_pass, "Alert Check"),
        }
        for job_id, (func, name) in jobs.items():
            schedule = self.settings.get_job_schedule(job_id)
            trigger = build_cron_trigger(schedule["cron"], schedule["timezone"])
            self.scheduler.add_job(
                func,
                trigger=trigger,
                id=job_id,
                name=name,
                replace_existing=True,
            )
            logger.info(f"Scheduled {job_id} with cron '{schedule['cron']}' ({schedule['timezone']})")

    def start(self):
        if self.scheduler.running:
            logger.warning("Job scheduler is already running")
            return
        self.register_jobs()
        self.scheduler.start()
        logger.info("Job scheduler started")

    def shutdown(self, wait: bool = True):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Job scheduler shutdown complete")

    def get_jobs(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            }
            for job in self.scheduler.get_jobs()
        ]
