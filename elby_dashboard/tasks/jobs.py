"""
Scheduled jobs: metrics computation, school aggregation, SDMS cache
refresh, retention cleanup and email-based auto-linking.

Every job opens its own database session and isolates per-item failures,
so one bad user, school or course never aborts the run.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from elby_dashboard.core.sdms_config import (
    CacheConfig, MetricsConfig, RetentionConfig, AutoLinkConfig, utcnow
)
from elby_dashboard.integrations.sdms.audit import SyncLogWriter
from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.integrations.sdms.errors import BatchResult
from elby_dashboard.models.host import User
from elby_dashboard.models.metrics import UserMetrics, SchoolMetrics, PeriodType
from elby_dashboard.models.sdms import School, UserLink, UserType, SyncStatus
from elby_dashboard.models.sync_log import SyncLogEntry
from elby_dashboard.services.metrics import (
    MetricsCalculator, SchoolAggregator, week_bounds, month_bounds
)
from elby_dashboard.services.sync import SDMSSyncService


logger = logging.getLogger(__name__)

NUMERIC_EMAIL_PREFIX = re.compile(r"^[0-9]+@")

# One hourly cycle; the first run of a new week falls inside it
WEEK_CATCH_UP_WINDOW = timedelta(hours=1)


class ScheduledJob(ABC):
    """A job the TaskScheduler runs on a cron schedule."""

    name: str
    schedule: str

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    @abstractmethod
    async def execute(self) -> Union[BatchResult, Dict[str, int]]:
        pass


class ComputeUserMetricsTask(ScheduledJob):
    """
    Hourly at :15, recompute the current week's user metrics.

    Activity logged after the last run of a week would otherwise never reach
    that week's rows, so the first run after Monday 00:00 also recomputes
    the week that just ended. Time spent is the session-gap estimate, a
    lower bound rather than wall-clock time.
    """

    name = "compute_user_metrics"
    schedule = "15 * * * *"

    def __init__(self, session_factory, metrics_config: MetricsConfig, clock=utcnow):
        super().__init__(session_factory, clock)
        self.metrics_config = metrics_config

    async def execute(self) -> BatchResult:
        now = self.clock()
        week_start, week_end = week_bounds(now)
        periods = [(week_start, week_end)]
        if now - week_start < WEEK_CATCH_UP_WINDOW:
            periods.insert(0, (week_start - timedelta(days=7), week_start))

        result = BatchResult(name=self.name)
        async with self.session_factory() as db:
            calculator = MetricsCalculator(db, self.metrics_config)
            for start, end in periods:
                logger.info(f"Computing user metrics for {start:%Y-%m-%d} to {end:%Y-%m-%d}")
                result.merge(await calculator.compute_for_period(start, end))

        logger.info(f"User metrics computation complete: {result.to_dict()}")
        return result


class AggregateSchoolMetricsTask(ScheduledJob):
    """Daily at 02:00, roll user metrics up for the current week and month."""

    name = "aggregate_school_metrics"
    schedule = "0 2 * * *"

    def __init__(self, session_factory, metrics_config: MetricsConfig, clock=utcnow):
        super().__init__(session_factory, clock)
        self.metrics_config = metrics_config

    async def execute(self) -> BatchResult:
        now = self.clock()
        result = BatchResult(name=self.name)

        async with self.session_factory() as db:
            aggregator = SchoolAggregator(db, self.metrics_config)
            for period_type, (start, end) in (
                (PeriodType.WEEKLY, week_bounds(now)),
                (PeriodType.MONTHLY, month_bounds(now)),
            ):
                logger.info(f"Aggregating {period_type.value} school metrics for {start:%Y-%m-%d} to {end:%Y-%m-%d}")
                result.merge(await aggregator.aggregate_all(start, end, period_type, now))

        logger.info(f"School metrics aggregation complete: {result.to_dict()}")
        return result


class RefreshSDMSCacheTask(ScheduledJob):
    """Daily at 03:00, force-refresh the oldest stale users and schools."""

    name = "refresh_sdms_cache"
    schedule = "0 3 * * *"

    def __init__(
        self,
        session_factory,
        client: SDMSClient,
        cache_config: CacheConfig,
        audit: Optional[SyncLogWriter] = None,
        clock=utcnow,
    ):
        super().__init__(session_factory, clock)
        self.client = client
        self.cache_config = cache_config
        self.audit = audit

    async def execute(self) -> BatchResult:
        threshold = self.clock() - self.cache_config.ttl
        result = BatchResult(name=self.name)

        async with self.session_factory() as db:
            service = SDMSSyncService(
                db, self.client, self.cache_config, self.audit, triggered_by="scheduled"
            )

            stale_users = await db.execute(
                select(UserLink.user_id)
                .where(
                    or_(UserLink.last_synced < threshold, UserLink.last_synced.is_(None)),
                    UserLink.user_type.is_not(None),
                )
                .order_by(UserLink.last_synced.asc())
                .limit(self.cache_config.refresh_user_batch)
            )
            for user_id in stale_users.scalars().all():
                try:
                    link = await service.refresh_user(user_id, force=True)
                except Exception as e:
                    logger.error(f"Failed to refresh user {user_id}: {e}")
                    await db.rollback()
                    result.record_failure(f"user {user_id}", e)
                    continue
                if link is None:
                    result.record_skip()
                else:
                    result.record_success()

            stale_schools = await db.execute(
                select(School.school_code)
                .where(or_(School.last_synced < threshold, School.last_synced.is_(None)))
                .order_by(School.last_synced.asc())
                .limit(self.cache_config.refresh_school_batch)
            )
            for school_code in stale_schools.scalars().all():
                try:
                    school = await service.sync_school(school_code, force=True)
                except Exception as e:
                    logger.error(f"Failed to refresh school {school_code}: {e}")
                    await db.rollback()
                    result.record_failure(f"school {school_code}", e)
                    continue
                if school is None:
                    result.record_skip()
                else:
                    result.record_success()

        logger.info(f"SDMS cache refresh complete: {result.to_dict()}")
        return result


class CleanupOldMetricsTask(ScheduledJob):
    """Sundays at 04:00, purge metrics and sync log entries past retention."""

    name = "cleanup_old_metrics"
    schedule = "0 4 * * 0"

    def __init__(self, session_factory, retention: RetentionConfig, clock=utcnow):
        super().__init__(session_factory, clock)
        self.retention = retention

    async def execute(self) -> Dict[str, int]:
        now = self.clock()
        weekly_threshold = now - timedelta(days=self.retention.weekly_metrics_days)
        monthly_threshold = now - timedelta(days=self.retention.monthly_metrics_days)
        log_threshold = now - timedelta(days=self.retention.sync_log_days)

        deleted: Dict[str, int] = {}
        async with self.session_factory() as db:
            for model, label in ((UserMetrics, "user_metrics"), (SchoolMetrics, "school_metrics")):
                for period_type, threshold in (
                    (PeriodType.WEEKLY, weekly_threshold),
                    (PeriodType.MONTHLY, monthly_threshold),
                ):
                    outcome = await db.execute(
                        delete(model).where(
                            model.period_type == period_type.value,
                            model.period_start < threshold,
                        )
                    )
                    deleted[f"{period_type.value}_{label}"] = outcome.rowcount

            outcome = await db.execute(
                delete(SyncLogEntry).where(SyncLogEntry.created_at < log_threshold)
            )
            deleted["sync_log"] = outcome.rowcount
            await db.commit()

        logger.info(f"Cleanup complete: {deleted}")
        return deleted


class AutoLinkByEmailTask(ScheduledJob):
    """
    Daily at 01:30, link unlinked users whose institutional email starts
    with their SDMS code (``<digits>@<domain>``). Students are tried
    before staff. A user whose lookup hits a remote HTTP 500 is flagged
    with a failed placeholder link so later runs skip it.
    """

    name = "auto_link_by_email"
    schedule = "30 1 * * *"

    def __init__(
        self,
        session_factory,
        client: SDMSClient,
        cache_config: CacheConfig,
        auto_link: AutoLinkConfig,
        audit: Optional[SyncLogWriter] = None,
        clock=utcnow,
    ):
        super().__init__(session_factory, clock)
        self.client = client
        self.cache_config = cache_config
        self.auto_link = auto_link
        self.audit = audit

    async def execute(self) -> BatchResult:
        result = BatchResult(name=self.name)
        flagged = 0

        async with self.session_factory() as db:
            service = SDMSSyncService(
                db, self.client, self.cache_config, self.audit, triggered_by="scheduled"
            )
            candidates = await self._candidates(db)

            for user_id, email in candidates:
                sdms_code = email.split("@", 1)[0]
                try:
                    link = await service.link_user(user_id, sdms_code, UserType.STUDENT)
                    if link is None:
                        link = await service.link_user(user_id, sdms_code, UserType.STAFF)
                except Exception as e:
                    logger.error(f"Failed to link user {user_id} ({email}): {e}")
                    await db.rollback()
                    result.record_failure(f"user {user_id}", e)
                    if getattr(e, "status_code", None) == 500:
                        if await self._flag_user(db, user_id, sdms_code, str(e)):
                            flagged += 1
                    continue

                if link is None:
                    logger.info(f"No SDMS record for user {user_id} ({email})")
                    result.record_skip()
                else:
                    result.record_success()

        logger.info(
            f"Auto-link by email: {result.succeeded} linked, {result.failed} failed, "
            f"{flagged} flagged out of {len(candidates)} unlinked users"
        )
        return result

    async def _candidates(self, db) -> List[tuple]:
        domains = [domain.lower() for domain in self.auto_link.email_domains]
        if not domains:
            return []

        rows = await db.execute(
            select(User.id, User.email)
            .outerjoin(UserLink, UserLink.user_id == User.id)
            .where(
                UserLink.id.is_(None),
                User.deleted.is_(False),
                or_(*[User.email.ilike(f"%@{domain}") for domain in domains]),
            )
            .order_by(User.id)
        )
        matching = [
            (user_id, email.lower())
            for user_id, email in rows.all()
            if NUMERIC_EMAIL_PREFIX.match(email)
        ]
        return matching[:self.auto_link.batch_size]

    async def _flag_user(self, db, user_id: int, sdms_code: str, error: str) -> bool:
        existing = await db.execute(select(UserLink.id).where(UserLink.user_id == user_id))
        if existing.scalar_one_or_none() is not None:
            return False

        db.add(UserLink(
            user_id=user_id,
            sdms_id=sdms_code,
            user_type=None,
            sync_status=SyncStatus.ERROR,
            sync_error=error,
            last_synced=self.clock(),
        ))
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Could not flag user {user_id}: {e}")
            return False
        logger.info(f"Flagged user {user_id} ({sdms_code}), will not retry")
        return True
