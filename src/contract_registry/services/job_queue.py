"""PostgreSQL-backed job queue for the registry's recurring jobs.

Workers claim rows with SELECT ... FOR UPDATE SKIP LOCKED, so any number of
them can poll the same table without processing a job twice. A job that
raises is retried with exponential backoff until max_attempts, then parked
as FAILED where an operator can re-trigger it.

Usage:
    async with get_async_session() as session:
        queue = JobQueueService(session, default_queue="scheduled")
        job_id = await queue.enqueue(JobType.REGISTRY_TRANSITIONS, {"today": "2025-01-08"})
        await session.commit()
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from contract_registry.db.models.base import JobStatus
from contract_registry.db.models.jobs import Job

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)


class JobType(str, Enum):
    """Job types understood by the worker."""

    REGISTRY_TRANSITIONS = "registry_transitions"
    REGISTRY_RENEWALS = "registry_renewals"


class JobQueueError(Exception):
    """Base exception for job queue operations."""

    pass


class JobNotFoundError(JobQueueError):
    """Raised when a job cannot be found."""

    pass


def _job_type_value(job_type: str | JobType) -> str:
    return job_type.value if isinstance(job_type, JobType) else job_type


class JobQueueService:
    """Job queue operations on one session.

    The service only flushes; callers own the commit.

    Attributes:
        session: SQLAlchemy async session for database operations.
        default_queue: Queue used when none is given.
        default_max_attempts: Attempts before a job is dead-lettered.
        default_base_backoff: Base of the exponential retry delay, in seconds.
    """

    def __init__(
        self,
        session: AsyncSession,
        default_queue: str = "default",
        default_max_attempts: int = 3,
        default_base_backoff: int = 60,
    ) -> None:
        self.session = session
        self.default_queue = default_queue
        self.default_max_attempts = default_max_attempts
        self.default_base_backoff = default_base_backoff

    async def enqueue(
        self,
        job_type: str | JobType,
        payload: dict[str, Any] | None = None,
        run_at: datetime | None = None,
        queue: str | None = None,
        priority: int = 100,
        max_attempts: int | None = None,
    ) -> uuid.UUID:
        """Add a job to the queue.

        Args:
            job_type: Selects the handler.
            payload: Data passed to the handler.
            run_at: Earliest execution time. Defaults to now.
            queue: Queue name. Defaults to default_queue.
            priority: Lower runs first.
            max_attempts: Defaults to default_max_attempts.

        Returns:
            UUID of the created job.

        Raises:
            JobQueueError: If the job cannot be stored.
        """
        job_type_value = _job_type_value(job_type)

        job = Job(
            job_type=job_type_value,
            status=JobStatus.PENDING,
            run_at=run_at or datetime.now(UTC),
            payload_json=payload,
            queue=queue or self.default_queue,
            priority=priority,
            attempts=0,
            max_attempts=max_attempts or self.default_max_attempts,
            base_backoff_seconds=self.default_base_backoff,
        )

        try:
            self.session.add(job)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to enqueue job: %s", str(e))
            raise JobQueueError(f"Failed to enqueue job: {e}") from e

        logger.info(
            "Job enqueued: job_id=%s, job_type=%s, queue=%s, run_at=%s",
            job.job_id,
            job_type_value,
            job.queue,
            job.run_at.isoformat(),
        )
        return job.job_id

    async def claim_job(
        self,
        worker_id: str,
        queue: str | None = None,
        job_types: list[str] | None = None,
    ) -> Job | None:
        """Claim the next due job of queue, or return None.

        Raises:
            JobQueueError: If the claim query fails.
        """
        now = datetime.now(UTC)

        stmt = (
            select(Job)
            .where(
                Job.queue == (queue or self.default_queue),
                Job.status == JobStatus.PENDING,
                Job.run_at <= now,
            )
            .order_by(Job.priority, Job.run_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if job_types:
            stmt = stmt.where(Job.job_type.in_(job_types))

        try:
            result = await self.session.execute(stmt)
            job = result.scalar_one_or_none()
            if job is None:
                return None

            job.status = JobStatus.RUNNING
            job.locked_at = now
            job.locked_by = worker_id
            job.started_at = now
            job.attempts += 1

            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to claim job: %s", str(e))
            raise JobQueueError(f"Failed to claim job: {e}") from e

        logger.info(
            "Job claimed: job_id=%s, worker_id=%s, job_type=%s, attempt=%d/%d",
            job.job_id,
            worker_id,
            job.job_type,
            job.attempts,
            job.max_attempts,
        )
        return job

    async def complete_job(
        self,
        job_id: uuid.UUID,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Mark a job as completed and store its result.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobQueueError: If the update fails.
        """
        now = datetime.now(UTC)

        try:
            job = await self._require_job(job_id)

            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.result_json = result
            job.duration_ms = _elapsed_ms(job, now)
            job.locked_at = None
            job.locked_by = None

            await self.session.flush()
        except JobNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("Failed to complete job %s: %s", job_id, str(e))
            raise JobQueueError(f"Failed to complete job: {e}") from e

        logger.info(
            "Job completed: job_id=%s, job_type=%s, duration_ms=%s",
            job_id,
            job.job_type,
            job.duration_ms,
        )

    async def fail_job(self, job_id: uuid.UUID, error: str) -> bool:
        """Record a failed attempt.

        The job is rescheduled after base_backoff * 2^(attempts-1) seconds,
        or moved to FAILED once attempts reaches max_attempts.

        Returns:
            True if the job will be retried, False if it is dead-lettered.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobQueueError: If the update fails.
        """
        now = datetime.now(UTC)

        try:
            job = await self._require_job(job_id)

            job.last_error = error
            job.locked_at = None
            job.locked_by = None

            if job.attempts >= job.max_attempts:
                job.status = JobStatus.FAILED
                job.completed_at = now
                job.duration_ms = _elapsed_ms(job, now)
                await self.session.flush()

                logger.warning(
                    "Job dead-lettered: job_id=%s, job_type=%s, attempts=%d, error=%s",
                    job_id,
                    job.job_type,
                    job.attempts,
                    error,
                )
                return False

            backoff_seconds = job.base_backoff_seconds * (2 ** (job.attempts - 1))
            job.run_at = now + timedelta(seconds=backoff_seconds)
            job.status = JobStatus.PENDING
            await self.session.flush()

        except JobNotFoundError:
            raise
        except SQLAlchemyError as e:
            logger.error("Failed to fail job %s: %s", job_id, str(e))
            raise JobQueueError(f"Failed to fail job: {e}") from e

        logger.info(
            "Job scheduled for retry: job_id=%s, job_type=%s, attempt=%d/%d, retry_at=%s",
            job_id,
            job.job_type,
            job.attempts,
            job.max_attempts,
            job.run_at.isoformat(),
        )
        return True

    async def retry_failed_job(self, job_id: uuid.UUID) -> None:
        """Move a FAILED job back to PENDING with a fresh attempt budget.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobQueueError: If the job is not FAILED.
        """
        try:
            job = await self._require_job(job_id)

            if job.status != JobStatus.FAILED:
                raise JobQueueError(
                    f"Can only retry FAILED jobs, current status: {job.status.value}"
                )

            job.status = JobStatus.PENDING
            job.run_at = datetime.now(UTC)
            job.attempts = 0
            job.completed_at = None
            job.last_error = None
            job.duration_ms = None

            await self.session.flush()
        except JobQueueError:
            raise
        except SQLAlchemyError as e:
            logger.error("Failed to retry job %s: %s", job_id, str(e))
            raise JobQueueError(f"Failed to retry job: {e}") from e

        logger.info("Failed job queued for retry: job_id=%s, job_type=%s", job_id, job.job_type)

    async def has_active_job(self, job_type: str | JobType) -> bool:
        """Check for a PENDING or RUNNING job of job_type."""
        stmt = select(func.count()).where(
            Job.job_type == _job_type_value(job_type),
            Job.status.in_(ACTIVE_STATUSES),
        )
        result = await self.session.execute(stmt)
        return (result.scalar() or 0) > 0

    async def get_failed_jobs(
        self,
        job_type: str | JobType | None = None,
        limit: int = 100,
    ) -> list[Job]:
        """Dead-lettered jobs, most recent first."""
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.FAILED)
            .order_by(Job.completed_at.desc())
            .limit(limit)
        )
        if job_type:
            stmt = stmt.where(Job.job_type == _job_type_value(job_type))

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def cleanup_stale_jobs(self, stale_threshold_seconds: int = 600) -> int:
        """Release RUNNING jobs whose lock is older than the threshold.

        Returns:
            Number of jobs put back to PENDING.
        """
        now = datetime.now(UTC)
        threshold = now - timedelta(seconds=stale_threshold_seconds)

        stmt = (
            update(Job)
            .where(
                Job.status == JobStatus.RUNNING,
                Job.locked_at < threshold,
            )
            .values(
                status=JobStatus.PENDING,
                locked_at=None,
                locked_by=None,
                run_at=now,
            )
            .returning(Job.job_id)
        )

        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error("Failed to cleanup stale jobs: %s", str(e))
            raise JobQueueError(f"Failed to cleanup stale jobs: {e}") from e

        stale_job_ids = list(result.scalars().all())
        if stale_job_ids:
            logger.warning("Reset %d stale jobs: %s", len(stale_job_ids), stale_job_ids)
        return len(stale_job_ids)

    async def _require_job(self, job_id: uuid.UUID) -> Job:
        result = await self.session.execute(select(Job).where(Job.job_id == job_id))
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job


def _elapsed_ms(job: Job, now: datetime) -> int | None:
    if job.started_at is None:
        return None
    return int((now - job.started_at).total_seconds() * 1000)
