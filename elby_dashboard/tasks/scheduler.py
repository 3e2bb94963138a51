"""
In-process scheduler for the periodic jobs.

Each job gets its own loop that sleeps until the next cron match. A per-job
lock guarantees that two runs of the same job never overlap, whether
started by the loop or on demand through run_job().
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from croniter import croniter
from sqlalchemy.ext.asyncio import async_sessionmaker

from elby_dashboard.core.config import Settings
from elby_dashboard.core.sdms_config import utcnow
from elby_dashboard.integrations.sdms.audit import SyncLogWriter
from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.integrations.sdms.errors import BatchResult
from .jobs import (
    ScheduledJob,
    ComputeUserMetricsTask,
    AggregateSchoolMetricsTask,
    RefreshSDMSCacheTask,
    CleanupOldMetricsTask,
    AutoLinkByEmailTask,
)


logger = logging.getLogger(__name__)


class TaskScheduler:
    """Runs ScheduledJobs on their cron schedules."""

    def __init__(self, jobs: Iterable[ScheduledJob]):
        self.jobs: Dict[str, ScheduledJob] = {job.name: job for job in jobs}
        self._locks: Dict[str, asyncio.Lock] = {name: asyncio.Lock() for name in self.jobs}
        self._running_tasks: Dict[str, asyncio.Task] = {}
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        logger.info("Starting task scheduler")
        self._shutdown_event.clear()
        for name in self.jobs:
            self._running_tasks[name] = asyncio.create_task(self._job_loop(name))
        logger.info(f"Task scheduler started with {len(self.jobs)} jobs")

    async def stop(self) -> None:
        logger.info("Stopping task scheduler")
        self._shutdown_event.set()

        for task_name, task in self._running_tasks.items():
            if not task.done():
                logger.info(f"Cancelling task: {task_name}")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._running_tasks.clear()
        logger.info("Task scheduler stopped")

    def next_run(self, name: str, now: Optional[datetime] = None) -> datetime:
        return croniter(self.jobs[name].schedule, now or utcnow()).get_next(datetime)

    async def run_job(self, name: str) -> Optional[Union[BatchResult, Dict[str, int]]]:
        """
        Run one job now. Returns None without running it when a previous run
        of the same job is still in progress. Raises KeyError for unknown jobs.
        """
        job = self.jobs[name]
        lock = self._locks[name]
        if lock.locked():
            logger.warning(f"Job {name} is already running, skipping")
            return None

        async with lock:
            started = utcnow()
            logger.info(f"Running job {name}")
            result = await job.execute()
            elapsed = (utcnow() - started).total_seconds()
            logger.info(f"Job {name} finished in {elapsed:.1f}s")
            return result

    async def _job_loop(self, name: str) -> None:
        logger.info(f"Started loop for job {name}")

        while not self._shutdown_event.is_set():
            delay = max(0.0, (self.next_run(name) - utcnow()).total_seconds())
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
                break  # Shutdown event was set
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_job(name)
            except Exception as e:
                logger.error(f"Job {name} failed: {e}", exc_info=True)

        logger.info(f"Loop for job {name} stopped")


def build_jobs(
    settings: Settings,
    session_factory: async_sessionmaker,
    client: Optional[SDMSClient],
    audit: Optional[SyncLogWriter] = None,
) -> List[ScheduledJob]:
    """
    Wire every scheduled job from settings. Without an SDMS client only the
    metrics and cleanup jobs are scheduled.
    """
    cache_config = settings.cache_config()
    metrics_config = settings.metrics_config()
    jobs: List[ScheduledJob] = [
        ComputeUserMetricsTask(session_factory, metrics_config),
        AggregateSchoolMetricsTask(session_factory, metrics_config),
        CleanupOldMetricsTask(session_factory, settings.retention_config()),
    ]
    if client is None:
        logger.warning("No SDMS client configured, skipping SDMS refresh and auto-link jobs")
        return jobs

    jobs.append(RefreshSDMSCacheTask(session_factory, client, cache_config, audit))
    jobs.append(AutoLinkByEmailTask(
        session_factory, client, cache_config, settings.auto_link_config(), audit
    ))
    return jobs
