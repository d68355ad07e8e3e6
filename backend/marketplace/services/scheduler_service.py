"""
Scheduler Service - named background jobs on APScheduler

Jobs are registered paused and run on a BackgroundScheduler thread once
started. A job that raises is logged and recorded on its entry; it is not
retried and nothing is persisted across restarts.

Author: TM3
Date: 2026-02-26
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from marketplace.core.exceptions import ApiError
from marketplace.services.batch_loyalty_service import BatchLoyaltyService
from marketplace.services.currency_service import CurrencyService
from marketplace.services.email_service import EmailService
from marketplace.services.loyalty_service import LoyaltyService
from marketplace.services.report_service import ReportService

logger = logging.getLogger(__name__)


# ============================================================================
# Job tasks
# ============================================================================

def process_email_queue_task():
    return EmailService.process_email_queue()


def expire_loyalty_points_task():
    return BatchLoyaltyService.process_batch_expired_points().to_dict()


def cleanup_expired_redemptions_task():
    return LoyaltyService.expire_old_redemptions()


def update_currency_rates_task():
    return CurrencyService.update_exchange_rates()


def cleanup_old_reports_task():
    return ReportService.cleanup_old_reports()


# name -> (cron expression, description, task)
DEFAULT_JOBS = {
    "process_email_queue": ("*/5 * * * *", "Process email queue every 5 minutes", process_email_queue_task),
    "expire_loyalty_points": ("0 0 * * *", "Expire old loyalty points daily at midnight",
                              expire_loyalty_points_task),
    "cleanup_expired_redemptions": ("0 2 * * *", "Clean up expired redemptions daily at 2 AM",
                                    cleanup_expired_redemptions_task),
    "update_currency_rates": ("0 6 * * *", "Update currency exchange rates daily at 6 AM",
                              update_currency_rates_task),
    "cleanup_old_reports": ("0 1 * * *", "Clean up old report files daily at 1 AM", cleanup_old_reports_task),
}


def validate_cron_expression(expression: str) -> bool:
    """True when expression is a valid 5-field crontab expression"""
    try:
        CronTrigger.from_crontab(expression)
        return True
    except (ValueError, TypeError):
        return False


@dataclass
class JobEntry:
    name: str
    cron_expression: str
    description: str
    task: Callable[[], Any]
    custom: bool = False
    last_run: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0


class SchedulerService:
    """Registry of named cron jobs"""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None):
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._jobs: Dict[str, JobEntry] = {}

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    def init_scheduler(self) -> None:
        """Register the default jobs (paused) and start the scheduler thread"""
        logger.info("Initializing scheduler with default jobs")
        for name, (expression, description, task) in DEFAULT_JOBS.items():
            if name not in self._jobs:
                self._register(JobEntry(name=name, cron_expression=expression,
                                        description=description, task=task))
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")

    def start_all_jobs(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
        for name in self._jobs:
            self.start_job(name)
        logger.info(f"Started {len(self._jobs)} scheduled jobs")

    def stop_all_jobs(self) -> None:
        for name in self._jobs:
            self.stop_job(name)
        logger.info("All scheduled jobs stopped")

    # ------------------------------------------------------------------------
    # Single jobs
    # ------------------------------------------------------------------------

    def _register(self, entry: JobEntry) -> None:
        self._scheduler.add_job(
            self._execute,
            CronTrigger.from_crontab(entry.cron_expression, timezone="UTC"),
            args=[entry.name],
            id=entry.name,
            name=entry.description,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=None,
        )
        self._jobs[entry.name] = entry

    def _entry(self, name: str) -> JobEntry:
        entry = self._jobs.get(name)
        if not entry:
            raise ApiError(f"Job not found: {name}", 404)
        return entry

    def _execute(self, name: str) -> bool:
        entry = self._jobs.get(name)
        if not entry:
            logger.error(f"Unknown job: {name}")
            return False

        started = datetime.utcnow()
        entry.last_run = started
        entry.run_count += 1
        try:
            result = entry.task()
        except Exception as e:
            entry.last_error = str(e)
            logger.error(f"Job {name} failed: {e}", exc_info=True)
            return False

        entry.last_error = None
        elapsed = (datetime.utcnow() - started).total_seconds()
        logger.info(f"Job {name} finished in {elapsed:.2f}s: {result}")
        return True

    def is_running(self, name: str) -> bool:
        job = self._scheduler.get_job(name)
        return bool(job and getattr(job, "next_run_time", None))

    def start_job(self, name: str) -> bool:
        self._entry(name)
        if self.is_running(name):
            return True
        self._scheduler.resume_job(name)
        logger.info(f"Started job: {name}")
        return True

    def stop_job(self, name: str) -> bool:
        self._entry(name)
        if not self.is_running(name):
            return True
        self._scheduler.pause_job(name)
        logger.info(f"Stopped job: {name}")
        return True

    def run_job_now(self, name: str) -> bool:
        """Run the job synchronously in the calling thread; False when it failed"""
        self._entry(name)
        logger.info(f"Running job now: {name}")
        return self._execute(name)

    # ------------------------------------------------------------------------
    # Custom jobs
    # ------------------------------------------------------------------------

    def add_custom_job(self, name: str, cron_expression: str, task: Callable[[], Any],
                       description: str = "", start: bool = True) -> Dict:
        if name in self._jobs:
            raise ApiError(f"Job with name {name} already exists", 400)
        if not validate_cron_expression(cron_expression):
            raise ApiError(f"Invalid cron expression: {cron_expression}", 400)

        self._register(JobEntry(name=name, cron_expression=cron_expression,
                                description=description or name, task=task, custom=True))
        if start:
            self.start_job(name)
        logger.info(f"Added custom job: {name} ({cron_expression})")
        return self.get_job_status()[name]

    def remove_custom_job(self, name: str) -> None:
        entry = self._entry(name)
        if not entry.custom:
            raise ApiError(f"Job {name} is a built-in job and cannot be removed", 400)
        if self._scheduler.get_job(name):
            self._scheduler.remove_job(name)
        del self._jobs[name]
        logger.info(f"Removed custom job: {name}")

    # ------------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------------

    def get_job_status(self) -> Dict[str, Dict[str, Any]]:
        status = {}
        for name, entry in self._jobs.items():
            job = self._scheduler.get_job(name)
            next_run = getattr(job, "next_run_time", None) if job else None
            status[name] = {
                "running": next_run is not None,
                "description": entry.description,
                "cron_expression": entry.cron_expression,
                "custom": entry.custom,
                "last_run": entry.last_run,
                "next_run": next_run,
                "last_error": entry.last_error,
                "run_count": entry.run_count,
            }
        return status

    def get_available_jobs(self) -> List[str]:
        return list(self._jobs)


def task_for(job_type: str) -> Callable[[], Any]:
    """Task of a built-in job, reused by custom jobs created over HTTP"""
    if job_type not in DEFAULT_JOBS:
        raise ApiError(f"Unknown job type: {job_type}. Use one of {', '.join(DEFAULT_JOBS)}", 400)
    return DEFAULT_JOBS[job_type][2]


scheduler_service = SchedulerService()
