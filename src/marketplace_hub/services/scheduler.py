"""
Scheduling service for token maintenance jobs.

Runs the token lifecycle jobs on an APScheduler background scheduler:
- Hourly refresh of credentials inside the lead window
- Daily purge of stale failed/expired refresh records
- Health check every 5 minutes
- Per-tenant expiry monitor every 30 minutes

Jobs are declared with cron expressions, either 5-field crontab or
6-field with a leading seconds field.
"""

import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from marketplace_hub.services.token_manager import TokenLifecycleManager
from marketplace_hub.utils.exceptions import SchedulingError
from marketplace_hub.utils.logger import get_logger
from marketplace_hub.utils.timeutils import utcnow

logger = get_logger(__name__)

TOKEN_REFRESH_SCHEDULE = "0 0 * * * *"
TOKEN_CLEANUP_SCHEDULE = "0 0 2 * * *"
HEALTH_CHECK_SCHEDULE = "0 */5 * * * *"
STATUS_MONITOR_SCHEDULE = "0 */30 * * * *"

# Health check logs at info level above this many tenants awaiting refresh
NEEDS_REFRESH_NOTICE_THRESHOLD = 5

CRITICAL_WINDOW = timedelta(hours=24)
WARNING_WINDOW = timedelta(hours=48)


def parse_cron(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build a CronTrigger from a 5- or 6-field cron expression.

    Raises:
        SchedulingError: If the expression is malformed
    """
    fields = expression.split()
    try:
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=day_of_week,
                timezone=timezone,
            )
        if len(fields) == 5:
            return CronTrigger.from_crontab(expression, timezone=timezone)
    except ValueError as e:
        raise SchedulingError(f"Invalid cron expression {expression!r}: {e}")

    raise SchedulingError(f"Invalid cron expression {expression!r}: expected 5 or 6 fields")


@dataclass
class SchedulerStats:
    """Scheduler state snapshot."""
    is_running: bool
    job_count: int
    next_job_time: Optional[datetime]
    last_job_time: Optional[datetime]


@dataclass
class _JobEntry:
    job_id: str
    name: str
    expression: str
    func: Callable[[], Any]


class SchedulerService:
    """
    Periodic token maintenance on a background thread pool.

    A fresh APScheduler instance is built on every start, since a shut down
    scheduler cannot be restarted. Registered jobs survive stop/start.
    """

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        timezone: str = "UTC",
        max_workers: int = 10,
        shutdown_timeout: float = 30,
    ):
        """
        Initialize scheduling service.

        Args:
            token_manager: Token lifecycle manager the default jobs drive
            timezone: Timezone cron expressions are evaluated in
            max_workers: Thread pool size for job execution
            shutdown_timeout: Seconds stop() waits for in-flight jobs
        """
        self.token_manager = token_manager
        self.timezone = timezone
        self.max_workers = max_workers
        self.shutdown_timeout = shutdown_timeout

        self.scheduler: Optional[BackgroundScheduler] = None
        self._jobs: Dict[str, _JobEntry] = {}
        self._lock = threading.RLock()
        self._idle = threading.Condition()
        self._active = 0
        self._last_run: Optional[datetime] = None

        for name, expression, func in (
            ("token_refresh", TOKEN_REFRESH_SCHEDULE, self.run_token_refresh_now),
            ("token_cleanup", TOKEN_CLEANUP_SCHEDULE, self.run_cleanup_now),
            ("token_health_check", HEALTH_CHECK_SCHEDULE, self.check_token_health),
            ("token_status_monitor", STATUS_MONITOR_SCHEDULE, self.monitor_token_status),
        ):
            self.add_job(expression, func, name)

        logger.info("SchedulerService initialized")

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def _create_scheduler(self) -> BackgroundScheduler:
        """Create and configure APScheduler instance."""
        scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": ThreadPoolExecutor(self.max_workers)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 30,
            },
            timezone=self.timezone,
        )
        scheduler.add_listener(self._job_executed_listener, EVENT_JOB_EXECUTED)
        scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)
        return scheduler

    def _schedule(self, entry: _JobEntry) -> None:
        self.scheduler.add_job(
            func=self._run_job,
            trigger=parse_cron(entry.expression, self.timezone),
            args=[entry.name, entry.func],
            id=entry.job_id,
            name=entry.name,
            replace_existing=True,
        )

    # Lifecycle

    def start(self) -> None:
        """Register all jobs and start the scheduler. No-op when running."""
        with self._lock:
            if self.is_running:
                logger.debug("Scheduler already running")
                return

            try:
                self.scheduler = self._create_scheduler()
                for entry in self._jobs.values():
                    self._schedule(entry)
                self.scheduler.start()
            except SchedulingError:
                raise
            except Exception as e:
                logger.error(f"Failed to start scheduler: {e}")
                raise SchedulingError(f"Scheduler start failed: {e}")

        logger.info(f"Scheduler started with {len(self._jobs)} jobs")

    def stop(self) -> None:
        """
        Stop accepting work and wait for in-flight jobs.

        Waits up to ``shutdown_timeout`` seconds; running jobs are never
        interrupted, a timeout only logs a warning.
        """
        with self._lock:
            if not self.is_running:
                return
            logger.info("Stopping scheduler")
            self.scheduler.shutdown(wait=False)

        with self._idle:
            finished = self._idle.wait_for(lambda: self._active == 0, timeout=self.shutdown_timeout)

        if finished:
            logger.info("Scheduler stopped gracefully")
        else:
            logger.warning(
                f"Scheduler stop timed out after {self.shutdown_timeout}s "
                f"with {self._active} job(s) still running"
            )

    # Job management

    def add_job(self, expression: str, func: Callable[[], Any], name: Optional[str] = None) -> str:
        """
        Register a job; it is scheduled immediately when running.

        Args:
            expression: 5- or 6-field cron expression
            func: Zero-argument callable
            name: Job name, also used as the job id when given

        Returns:
            Job id

        Raises:
            SchedulingError: If the expression is malformed
        """
        parse_cron(expression, self.timezone)
        job_id = name or uuid.uuid4().hex
        entry = _JobEntry(job_id=job_id, name=name or job_id, expression=expression, func=func)

        with self._lock:
            self._jobs[job_id] = entry
            if self.is_running:
                self._schedule(entry)

        logger.info(f"Added scheduled job: {entry.name} ({expression})")
        return job_id

    def remove_job(self, job_id: str) -> None:
        """
        Unregister a job.

        Raises:
            SchedulingError: If the job is unknown
        """
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                raise SchedulingError(f"Unknown job: {job_id}")
            if self.is_running and self.scheduler.get_job(job_id) is not None:
                self.scheduler.remove_job(job_id)

        logger.info(f"Removed scheduled job: {job_id}")

    def job_entries(self) -> List[Dict[str, Any]]:
        """Registered jobs with their next run time (None while stopped)."""
        entries = []
        with self._lock:
            for entry in self._jobs.values():
                job = self.scheduler.get_job(entry.job_id) if self.is_running else None
                entries.append({
                    "job_id": entry.job_id,
                    "name": entry.name,
                    "schedule": entry.expression,
                    "next_run_time": job.next_run_time if job is not None else None,
                })
        return entries

    def stats(self) -> SchedulerStats:
        entries = self.job_entries()
        upcoming = [e["next_run_time"] for e in entries if e["next_run_time"] is not None]
        return SchedulerStats(
            is_running=self.is_running,
            job_count=len(entries),
            next_job_time=min(upcoming) if upcoming else None,
            last_job_time=self._last_run,
        )

    # Execution

    def _run_job(self, name: str, func: Callable[[], Any]) -> Any:
        """Run a job, tracking in-flight count and logging failures."""
        with self._idle:
            self._active += 1
        try:
            return func()
        except Exception as e:
            logger.error(f"Scheduled job {name} failed: {e}", exc_info=True)
            return None
        finally:
            self._last_run = utcnow()
            with self._idle:
                self._active -= 1
                self._idle.notify_all()

    def _job_executed_listener(self, event: JobExecutionEvent):
        """Handle job execution events."""
        logger.debug(f"Job executed: {event.job_id}")

    def _job_error_listener(self, event: JobExecutionEvent):
        """Handle job error events."""
        logger.error(f"Job error: {event.job_id} - {event.exception}")

    # Token jobs

    def run_token_refresh_now(self):
        """Refresh every due token now."""
        return self.token_manager.refresh_due_tokens()

    def run_cleanup_now(self, retention_days: Optional[int] = None) -> int:
        """Purge stale failed/expired refresh records now."""
        logger.info("Starting token cleanup job...")
        deleted = self.token_manager.purge_old_records(retention_days)
        logger.info("Token cleanup job completed")
        return deleted

    def check_token_health(self) -> Dict[str, int]:
        """Count tenants by credential state and log the result."""
        statuses = self.token_manager.all_statuses()

        expired = sum(1 for s in statuses if s.is_expired)
        needs_refresh = sum(1 for s in statuses if s.needs_refresh and not s.is_expired)
        active = len(statuses) - expired - needs_refresh

        logger.debug(
            f"Token health check - Active: {active}, Needs refresh: {needs_refresh}, Expired: {expired}"
        )
        if expired > 0:
            logger.warning(f"Found {expired} expired tokens that need attention")
        if needs_refresh > NEEDS_REFRESH_NOTICE_THRESHOLD:
            logger.info(f"{needs_refresh} tokens need refresh")

        return {"active": active, "needs_refresh": needs_refresh, "expired": expired}

    def monitor_token_status(self) -> Dict[str, int]:
        """Classify each tenant's expiry as critical, warning or healthy."""
        statuses = self.token_manager.all_statuses()
        counts = {"critical": 0, "warning": 0, "healthy": 0, "total": len(statuses)}

        for status in statuses:
            if status.is_expired or status.time_to_expiry < CRITICAL_WINDOW:
                counts["critical"] += 1
                logger.warning(
                    f"Critical: token for company {status.company_id} expires at "
                    f"{status.token_expiry} (status={status.status})"
                )
            elif status.time_to_expiry < WARNING_WINDOW:
                counts["warning"] += 1
            else:
                counts["healthy"] += 1

        logger.info(
            f"Token status monitor - Total: {counts['total']}, Critical: {counts['critical']}, "
            f"Warning: {counts['warning']}, Healthy: {counts['healthy']}"
        )
        return counts
