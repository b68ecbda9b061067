"""
Job scheduler for the periodic scan jobs.

Wraps an APScheduler ``BackgroundScheduler`` so that each job run is
recorded and isolated: a run that raises is logged and reported, and the
next firing happens normally. Runs are never retried; the next scheduled
run plays that role.
"""

import logging
import threading
from typing import Optional, Callable, Dict, Any, List
from datetime import datetime, timedelta
from enum import Enum
from dataclasses import dataclass, field

import pytz
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_MISSED, EVENT_JOB_MAX_INSTANCES
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from imunia_alerts.utils.error_handler import ErrorSeverity, report_error


class JobStatus(str, Enum):
    """Job execution status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    MISSED = "missed"


@dataclass
class JobExecution:
    """Record of a job execution."""
    job_id: str
    scheduled_time: datetime
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: JobStatus = JobStatus.PENDING
    result: Optional[Any] = None
    error: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def is_completed(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        result = self.result.to_dict() if hasattr(self.result, 'to_dict') else self.result
        return {
            'job_id': self.job_id,
            'scheduled_time': self.scheduled_time.isoformat(),
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'status': self.status.value,
            'duration_seconds': self.duration_seconds,
            'result': result,
            'error': self.error
        }


@dataclass
class JobConfig:
    """Configuration for a cron-triggered job."""
    name: str
    function: Callable[[], Any]
    cron_expression: str
    timezone: str = "Africa/Dakar"
    max_instances: int = 1
    misfire_grace_time: int = 300
    coalesce: bool = True
    enabled: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)

    def build_trigger(self) -> CronTrigger:
        """
        Build the APScheduler trigger.

        Raises:
            ValueError: If the cron expression is invalid
        """
        return CronTrigger.from_crontab(self.cron_expression, timezone=pytz.timezone(self.timezone))


class JobScheduler:
    """Owns the scheduler and its job handles; ``start``/``stop`` control the lifecycle."""

    HISTORY_LIMIT = 100

    def __init__(self,
                 timezone: str = "Africa/Dakar",
                 max_workers: int = 2,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize job scheduler.

        Args:
            timezone: Default timezone for scheduling
            max_workers: Maximum number of concurrent jobs
            logger: Logger instance
        """
        self.timezone = pytz.timezone(timezone)
        self.logger = logger or logging.getLogger(__name__)

        self.scheduler = BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': ThreadPoolExecutor(max_workers=max_workers)},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 300
            },
            timezone=self.timezone
        )

        self._lock = threading.Lock()
        self.job_configs: Dict[str, JobConfig] = {}
        self.job_executions: List[JobExecution] = []
        self.running_jobs: Dict[str, JobExecution] = {}

        self.stats = {
            'jobs_scheduled': 0,
            'jobs_executed': 0,
            'jobs_failed': 0,
            'jobs_missed': 0,
            'jobs_skipped_overlap': 0,
            'total_execution_time': 0.0,
            'last_reset': datetime.now()
        }

        self._setup_event_listeners()

        self.logger.info("Job scheduler initialized")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start the scheduler."""
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.info("Job scheduler started")
        else:
            self.logger.warning("Job scheduler is already running")

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if self.scheduler.running:
            self.logger.info("Shutting down job scheduler...")
            self.scheduler.shutdown(wait=wait)
            self.logger.info("Job scheduler shutdown complete")

    def add_job(self, config: JobConfig) -> Optional[str]:
        """
        Add a job to the scheduler.

        Args:
            config: Job configuration

        Returns:
            Job ID, or None if the job is disabled

        Raises:
            ValueError: If the cron expression is invalid
        """
        if not config.enabled:
            self.logger.info(f"Job {config.name} is disabled, skipping")
            return None

        trigger = config.build_trigger()

        job = self.scheduler.add_job(
            self._wrap_job_function(config),
            trigger=trigger,
            id=config.name,
            name=config.name,
            max_instances=config.max_instances,
            misfire_grace_time=config.misfire_grace_time,
            coalesce=config.coalesce,
            replace_existing=True
        )

        self.job_configs[config.name] = config
        self.stats['jobs_scheduled'] += 1

        next_run = getattr(job, 'next_run_time', None)
        self.logger.info(
            f"Job '{config.name}' scheduled with cron '{config.cron_expression}'",
            extra={
                "job_id": job.id,
                "next_run": next_run.isoformat() if next_run else None
            }
        )

        return job.id

    def remove_job(self, job_id: str):
        """Remove a job from the scheduler."""
        self.scheduler.remove_job(job_id)
        self.job_configs.pop(job_id, None)
        self.logger.info(f"Job '{job_id}' removed")

    def pause_job(self, job_id: str):
        """Pause a job."""
        self.scheduler.pause_job(job_id)
        self.logger.info(f"Job '{job_id}' paused")

    def resume_job(self, job_id: str):
        """Resume a paused job."""
        self.scheduler.resume_job(job_id)
        self.logger.info(f"Job '{job_id}' resumed")

    def run_job_now(self, job_id: str) -> bool:
        """
        Ask the running scheduler to fire a job immediately.

        Args:
            job_id: Job identifier

        Returns:
            True if job was triggered
        """
        job = self.scheduler.get_job(job_id)
        if not job:
            self.logger.error(f"Job '{job_id}' not found")
            return False

        job.modify(next_run_time=datetime.now(self.timezone))
        self.logger.info(f"Job '{job_id}' scheduled to run immediately")
        return True

    def execute_job(self, job_id: str) -> JobExecution:
        """
        Run a registered job synchronously in the calling thread.

        Args:
            job_id: Job identifier

        Returns:
            The recorded JobExecution

        Raises:
            KeyError: If no job with this id was added
        """
        config = self.job_configs[job_id]
        return self._wrap_job_function(config)()

    def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a job."""
        job = self.scheduler.get_job(job_id)
        if not job:
            return None

        latest_execution = None
        for execution in reversed(self.job_executions):
            if execution.job_id == job_id:
                latest_execution = execution
                break

        next_run = getattr(job, 'next_run_time', None)
        config = self.job_configs.get(job_id)

        return {
            'job_id': job_id,
            'name': job.name,
            'cron_expression': config.cron_expression if config else None,
            'next_run_time': next_run.isoformat() if next_run else None,
            'is_running': job_id in self.running_jobs,
            'latest_execution': latest_execution.to_dict() if latest_execution else None
        }

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """Get scheduler statistics."""
        executed = self.stats['jobs_executed']
        success_rate = (executed - self.stats['jobs_failed']) / executed if executed else 0.0
        avg_execution_time = self.stats['total_execution_time'] / executed if executed else 0.0

        return {
            'scheduler_running': self.scheduler.running,
            'total_jobs': len(self.scheduler.get_jobs()),
            'running_jobs': len(self.running_jobs),
            'stats': {
                **self.stats,
                'last_reset': self.stats['last_reset'].isoformat(),
                'success_rate': success_rate,
                'avg_execution_time_seconds': avg_execution_time
            },
            'last_updated': datetime.now().isoformat()
        }

    def _wrap_job_function(self, config: JobConfig) -> Callable[[], JobExecution]:
        """Wrap job function with run recording and failure isolation."""

        def wrapped_function() -> JobExecution:
            execution = JobExecution(
                job_id=config.name,
                scheduled_time=datetime.now(self.timezone)
            )

            with self._lock:
                self.running_jobs[config.name] = execution
                self.job_executions.append(execution)

            execution.start_time = datetime.now()
            execution.status = JobStatus.RUNNING

            self.logger.info(f"Starting job '{config.name}'", extra={"job_id": config.name})

            try:
                result = config.function()

                execution.status = JobStatus.COMPLETED
                execution.result = result

                summary = result.to_dict() if hasattr(result, 'to_dict') else result
                self.logger.info(
                    f"Job '{config.name}' completed: {summary}",
                    extra={"job_id": config.name, "result": summary}
                )

            except Exception as e:
                execution.status = JobStatus.FAILED
                execution.error = str(e)

                with self._lock:
                    self.stats['jobs_failed'] += 1

                self.logger.error(
                    f"Job '{config.name}' failed: {e}",
                    extra={"job_id": config.name, "error": str(e)},
                    exc_info=True
                )
                report_error(e, component=f"job.{config.name}", severity=ErrorSeverity.HIGH,
                             context={'job_id': config.name})

            finally:
                execution.end_time = datetime.now()
                execution.duration_seconds = (execution.end_time - execution.start_time).total_seconds()

                with self._lock:
                    self.stats['jobs_executed'] += 1
                    self.stats['total_execution_time'] += execution.duration_seconds
                    self.running_jobs.pop(config.name, None)
                    if len(self.job_executions) > self.HISTORY_LIMIT:
                        self.job_executions = self.job_executions[-self.HISTORY_LIMIT:]

            return execution

        return wrapped_function

    def _setup_event_listeners(self):
        """Setup APScheduler event listeners."""

        def job_missed(event):
            with self._lock:
                self.stats['jobs_missed'] += 1
                self.job_executions.append(JobExecution(
                    job_id=event.job_id,
                    scheduled_time=event.scheduled_run_time,
                    status=JobStatus.MISSED
                ))
            self.logger.warning(f"Job missed: {event.job_id} at {event.scheduled_run_time}")

        def max_instances_reached(event):
            with self._lock:
                self.stats['jobs_skipped_overlap'] += 1
            self.logger.warning(f"Previous run of '{event.job_id}' still in progress, skipping this firing")

        self.scheduler.add_listener(job_missed, EVENT_JOB_MISSED)
        self.scheduler.add_listener(max_instances_reached, EVENT_JOB_MAX_INSTANCES)

    def export_job_history(self, hours: int = 24) -> List[Dict[str, Any]]:
        """
        Export job execution history.

        Args:
            hours: Number of hours of history to export

        Returns:
            List of job execution records
        """
        cutoff_time = datetime.now() - timedelta(hours=hours)

        return [
            execution.to_dict()
            for execution in self.job_executions
            if execution.start_time and execution.start_time > cutoff_time
        ]

    def health_check(self) -> Dict[str, Any]:
        """Perform scheduler health check."""
        issues = []

        if not self.scheduler.running:
            issues.append("Scheduler is not running")

        recent_executions = [
            e for e in self.job_executions
            if e.start_time and e.start_time > datetime.now() - timedelta(hours=24)
        ]

        if recent_executions:
            failed = [e for e in recent_executions if e.is_failed]
            failure_rate = len(failed) / len(recent_executions)
            if failure_rate > 0.5:
                issues.append(f"High failure rate: {failure_rate:.1%}")

        return {
            'healthy': not issues,
            'issues': issues,
            'running_jobs': len(self.running_jobs),
            'recent_executions': len(recent_executions),
            'scheduler_running': self.scheduler.running,
            'timestamp': datetime.now().isoformat()
        }


STOCK_JOB_ID = "stock_expiration"
APPOINTMENT_JOB_ID = "appointment_reminder"


def create_notification_scheduler(stock_job: Callable[[], Any],
                                  appointment_job: Callable[[], Any],
                                  stock_cron: str = "0 8 * * *",
                                  appointment_cron: str = "0 * * * *",
                                  timezone: str = "Africa/Dakar",
                                  max_workers: int = 2,
                                  misfire_grace_time: int = 300,
                                  logger: Optional[logging.Logger] = None) -> JobScheduler:
    """
    Create a scheduler with the stock expiration and appointment reminder triggers.

    Args:
        stock_job: Callable running the stock expiration scan
        appointment_job: Callable running the appointment reminder scan
        stock_cron: Cron expression for the stock scan
        appointment_cron: Cron expression for the appointment scan
        timezone: Timezone for both triggers
        max_workers: Thread pool size
        misfire_grace_time: Seconds a late firing is still executed
        logger: Logger instance

    Returns:
        Configured, not yet started, JobScheduler
    """
    scheduler = JobScheduler(timezone=timezone, max_workers=max_workers, logger=logger)

    scheduler.add_job(JobConfig(
        name=STOCK_JOB_ID,
        function=stock_job,
        cron_expression=stock_cron,
        timezone=timezone,
        misfire_grace_time=misfire_grace_time,
        metadata={'description': 'Vaccine stock expiration alerts'}
    ))

    scheduler.add_job(JobConfig(
        name=APPOINTMENT_JOB_ID,
        function=appointment_job,
        cron_expression=appointment_cron,
        timezone=timezone,
        misfire_grace_time=misfire_grace_time,
        metadata={'description': 'Vaccination appointment reminders'}
    ))

    return scheduler
