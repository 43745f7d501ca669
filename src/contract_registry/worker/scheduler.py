"""Daily scheduler for the registry jobs.

Each schedule fires once per local calendar day, at the first check after
its configured time of day in the registry timezone. The enqueued job
carries that date as its "today" payload, so retries and late executions
evaluate the same day the job was scheduled for.

A schedule is skipped when a job of its type is still pending or running,
or when a job for the same date already exists (e.g. after a restart).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, tzinfo
from typing import TYPE_CHECKING

from sqlalchemy import select

from contract_registry.db.models.jobs import Job
from contract_registry.services.job_queue import JobQueueService, JobType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from contract_registry.core.config import JobSettings, Settings

logger = logging.getLogger(__name__)


@dataclass
class DailySchedule:
    """A job enqueued once a day.

    Attributes:
        job_type: Type of job to enqueue.
        run_at: Local time of day after which the job is due.
        queue: Queue to enqueue the job on.
        priority: Job priority (lower = higher priority).
        max_attempts: Attempts before the job is dead-lettered.
        enabled: Whether this schedule is active.
        last_scheduled_for: Local date of the last enqueued job.
    """

    job_type: str
    run_at: time
    queue: str = "scheduled"
    priority: int = 100
    max_attempts: int = 3
    enabled: bool = True
    last_scheduled_for: date | None = None

    @classmethod
    def from_settings(cls, job_type: JobType, job_settings: JobSettings) -> DailySchedule:
        return cls(
            job_type=job_type.value,
            run_at=job_settings.run_at,
            queue=job_settings.queue,
            max_attempts=job_settings.max_attempts,
            enabled=job_settings.enabled,
        )


def build_schedules(settings: Settings) -> list[DailySchedule]:
    """The two registry schedules: transition scan, then renewals."""
    return [
        DailySchedule.from_settings(JobType.REGISTRY_TRANSITIONS, settings.transitions_job),
        DailySchedule.from_settings(JobType.REGISTRY_RENEWALS, settings.renewals_job),
    ]


class Scheduler:
    """Enqueues daily registry jobs that are due.

    Example:
        scheduler = Scheduler(session, ZoneInfo("Europe/Rome"))
        scheduler.add_schedule(DailySchedule("registry_transitions", time(6, 0)))
        await scheduler.tick()
        await session.commit()
    """

    def __init__(self, session: AsyncSession, timezone: tzinfo = UTC) -> None:
        self.session = session
        self.timezone = timezone
        self._schedules: list[DailySchedule] = []
        self._job_queue = JobQueueService(session)

    def add_schedule(self, schedule: DailySchedule) -> None:
        self._schedules.append(schedule)
        logger.debug(
            "Added schedule: job_type=%s, run_at=%s",
            schedule.job_type,
            schedule.run_at.isoformat(),
        )

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Enqueue every schedule that is due.

        Args:
            now: Current instant; defaults to the wall clock.

        Returns:
            Job types that were enqueued.
        """
        local_now = (now or datetime.now(UTC)).astimezone(self.timezone)
        today = local_now.date()
        scheduled: list[str] = []

        for schedule in self._schedules:
            if not self._is_due(schedule, local_now):
                continue

            if await self._job_queue.has_active_job(schedule.job_type):
                logger.debug(
                    "Skipping schedule - active job exists: job_type=%s",
                    schedule.job_type,
                )
                continue

            if await self._has_job_for_date(schedule.job_type, today):
                schedule.last_scheduled_for = today
                continue

            try:
                await self._job_queue.enqueue(
                    job_type=schedule.job_type,
                    payload={"today": today.isoformat()},
                    queue=schedule.queue,
                    priority=schedule.priority,
                    max_attempts=schedule.max_attempts,
                )
            except Exception as e:
                logger.exception(
                    "Failed to schedule job: job_type=%s, error=%s",
                    schedule.job_type,
                    e,
                )
                continue

            schedule.last_scheduled_for = today
            scheduled.append(schedule.job_type)
            logger.info(
                "Scheduled job: job_type=%s, queue=%s, today=%s",
                schedule.job_type,
                schedule.queue,
                today.isoformat(),
            )

        return scheduled

    def _is_due(self, schedule: DailySchedule, local_now: datetime) -> bool:
        if not schedule.enabled:
            return False
        if schedule.last_scheduled_for == local_now.date():
            return False
        return local_now.time() >= schedule.run_at

    async def _has_job_for_date(self, job_type: str, today: date) -> bool:
        stmt = (
            select(Job.job_id)
            .where(
                Job.job_type == job_type,
                Job.payload_json["today"].astext == today.isoformat(),
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None


async def run_scheduler_loop(
    session_factory: async_sessionmaker[AsyncSession],
    schedules: list[DailySchedule],
    timezone: tzinfo = UTC,
    check_interval: float = 60.0,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Check schedules every check_interval seconds until shutdown.

    The schedule objects are shared across ticks, so the last scheduled
    date survives between checks.
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    logger.info(
        "Scheduler starting: check_interval=%ss, schedules=%d",
        check_interval,
        len(schedules),
    )

    while not shutdown_event.is_set():
        try:
            async with session_factory() as session:
                scheduler = Scheduler(session, timezone)
                for schedule in schedules:
                    scheduler.add_schedule(schedule)

                scheduled = await scheduler.tick()
                if scheduled:
                    await session.commit()
        except Exception as e:
            logger.exception("Error in scheduler loop: %s", e)

        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=check_interval)

    logger.info("Scheduler stopped")
