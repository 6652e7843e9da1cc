import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session, sessionmaker

from config import Settings
from database import session_scope
from errors import JobAlreadyRunning
from monitoring import QueryMonitor
from services import ArchiveResult, ArchiveService, ArchiveStats

logger = logging.getLogger(__name__)

ARCHIVAL_JOB = "archival"
METRICS_RESET_JOB = "metrics_reset"
MAINTENANCE_JOB = "maintenance"


@dataclass(frozen=True)
class JobSpec:
    id: str
    cron: str
    misfire_grace_time: int = 3600


DEFAULT_JOBS: tuple[JobSpec, ...] = (
    # 1st of the month, 02:00
    JobSpec(ARCHIVAL_JOB, "0 2 1 * *"),
    # Sundays at midnight
    JobSpec(METRICS_RESET_JOB, "0 0 * * 0", misfire_grace_time=300),
    # 15th of the month, 03:00
    JobSpec(MAINTENANCE_JOB, "0 3 15 * *"),
)


@dataclass
class SchedulerConfig:
    enabled: bool
    timezone: str = "UTC"
    jobs: tuple[JobSpec, ...] = field(default_factory=lambda: DEFAULT_JOBS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        return cls(
            enabled=settings.scheduled_tasks_enabled, timezone=settings.timezone
        )


@dataclass
class MaintenanceResult:
    stats: ArchiveStats
    cleaned_count: int


class SchedulerManager:
    def __init__(
        self,
        config: SchedulerConfig,
        session_factory: sessionmaker[Session],
        settings: Settings,
        monitor: QueryMonitor,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.settings = settings
        self.monitor = monitor
        self.scheduler = BackgroundScheduler(timezone=config.timezone)
        self._bodies: dict[str, Callable[[], object]] = {
            ARCHIVAL_JOB: self._archival_body,
            METRICS_RESET_JOB: self._metrics_reset_body,
            MAINTENANCE_JOB: self._maintenance_body,
        }
        self._locks = {spec.id: threading.Lock() for spec in config.jobs}

    def _run_job(self, job_id: str, source: str = "scheduled") -> None:
        lock = self._locks[job_id]
        if not lock.acquire(blocking=False):
            logger.warning(f"scheduler_run: job={job_id} source={source} skipped=in_flight")
            return
        try:
            logger.info(f"scheduler_run: job={job_id} source={source}")
            result = self._bodies[job_id]()
            logger.info(f"scheduler_run: job={job_id} source={source} result={result}")
        except Exception:
            logger.exception(f"scheduler_run: job={job_id} source={source} failed")
        finally:
            lock.release()

    def _run_manual(self, job_id: str, body: Callable[[], object]):
        lock = self._locks[job_id]
        if not lock.acquire(blocking=False):
            raise JobAlreadyRunning(
                f"Job '{job_id}' is already running", details={"job": job_id}
            )
        try:
            logger.info(f"scheduler_run: job={job_id} source=manual")
            result = body()
            logger.info(f"scheduler_run: job={job_id} source=manual result={result}")
            return result
        except Exception:
            logger.error(f"scheduler_run: job={job_id} source=manual failed")
            raise
        finally:
            lock.release()

    def _archival_body(self, retention_years: Optional[int] = None) -> ArchiveResult:
        years = (
            retention_years
            if retention_years is not None
            else self.settings.data_retention_years
        )
        with session_scope(self.session_factory) as session:
            service = ArchiveService(session, self.monitor)
            return service.archive_old_data(years, self.settings.archive_batch_size)

    def _metrics_reset_body(self) -> None:
        self.monitor.reset_metrics()

    def _maintenance_body(self) -> MaintenanceResult:
        with session_scope(self.session_factory) as session:
            service = ArchiveService(session, self.monitor)
            stats = service.get_archive_stats()
            logger.info(
                f"maintenance: archived_records={stats.total_archived_records} "
                f"size={stats.size_estimate}"
            )
            cleaned = 0
            if self.settings.cleanup_old_archives:
                cleaned = service.cleanup_old_archives(self.settings.max_archive_years)
            return MaintenanceResult(stats=stats, cleaned_count=cleaned)

    def trigger_archival(self, retention_years: Optional[int] = None) -> ArchiveResult:
        return self._run_manual(
            ARCHIVAL_JOB, lambda: self._archival_body(retention_years)
        )

    def trigger_maintenance(self) -> MaintenanceResult:
        return self._run_manual(MAINTENANCE_JOB, self._maintenance_body)

    def start(self) -> None:
        for spec in self.config.jobs:
            trigger = CronTrigger.from_crontab(spec.cron, timezone=self.config.timezone)
            self.scheduler.add_job(
                self._run_job,
                trigger,
                args=[spec.id],
                id=spec.id,
                replace_existing=True,
                misfire_grace_time=spec.misfire_grace_time,
                max_instances=1,
                coalesce=True,
            )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(f"Scheduler started with jobs={[spec.id for spec in self.config.jobs]}")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.remove_all_jobs()
            logger.info("Scheduler stopped; all jobs removed")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")

    def status(self) -> dict[str, object]:
        running = self.scheduler.running
        jobs = []
        for spec in self.config.jobs:
            job = self.scheduler.get_job(spec.id) if running else None
            next_run = getattr(job, "next_run_time", None) if job else None
            jobs.append(
                {
                    "id": spec.id,
                    "cron": spec.cron,
                    "scheduled": next_run is not None,
                    "in_flight": self._locks[spec.id].locked(),
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
        return {
            "enabled": self.config.enabled,
            "environment": self.settings.environment,
            "running": running,
            "total_tasks": len(jobs),
            "running_tasks": sum(1 for job in jobs if job["scheduled"]),
            "jobs": jobs,
        }
