"""Registry worker entry point.

The worker process runs two loops until SIGTERM/SIGINT:
- the scheduler, which enqueues the daily registry jobs when they are due
- the job loop, which claims due jobs, dispatches them to their handler,
  and applies the retry policy when a handler raises
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, NoReturn

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contract_registry.services.job_queue import JobQueueService, JobType

if TYPE_CHECKING:
    from contract_registry.core.config import Settings
    from contract_registry.db.models.jobs import Job

logger = logging.getLogger(__name__)

JobHandler = Callable[[AsyncSession, "Job"], Coroutine[Any, Any, dict[str, Any] | None]]


@dataclass
class WorkerConfig:
    """Configuration for the worker process.

    Attributes:
        worker_id: Unique identifier for this worker instance.
        poll_interval: Seconds between job queue polls when idle.
        queues: Queue names to process.
        job_types: Job types to process. Empty means all types.
        stale_job_threshold_seconds: How long before a running job is considered stale.
        shutdown_timeout: Seconds to wait for graceful shutdown.
        run_scheduler: Whether this process also runs the daily scheduler.
        scheduler_interval: Seconds between scheduler checks.
    """

    worker_id: str = field(default_factory=lambda: f"worker-{uuid.uuid4().hex[:8]}")
    poll_interval: float = 5.0
    queues: list[str] = field(default_factory=lambda: ["scheduled"])
    job_types: list[str] = field(default_factory=list)
    stale_job_threshold_seconds: int = 1800
    shutdown_timeout: float = 30.0
    run_scheduler: bool = True
    scheduler_interval: float = 60.0


class Worker:
    """Processes jobs from the PostgreSQL queue.

    Example:
        worker = Worker(WorkerConfig(), get_session_factory())
        worker.register_handler(JobType.REGISTRY_TRANSITIONS, handler)
        await worker.start()
    """

    def __init__(
        self,
        config: WorkerConfig,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self.config = config
        self._session_factory = session_factory
        self._shutdown_event = asyncio.Event()
        self._handlers: dict[str, JobHandler] = {}
        self._started_at: datetime | None = None
        self._jobs_processed = 0
        self._jobs_failed = 0

    def register_handler(self, job_type: str | JobType, handler: JobHandler) -> None:
        type_str = job_type.value if isinstance(job_type, JobType) else job_type
        self._handlers[type_str] = handler
        logger.debug("Registered handler for job_type=%s", type_str)

    async def start(self) -> None:
        """Process jobs until stop() is called."""
        self._started_at = datetime.now(UTC)
        logger.info(
            "Worker starting: worker_id=%s, queues=%s",
            self.config.worker_id,
            self.config.queues,
        )

        try:
            await self._run_loop()
        finally:
            logger.info(
                "Worker stopped: worker_id=%s, processed=%d, failed=%d, uptime=%s",
                self.config.worker_id,
                self._jobs_processed,
                self._jobs_failed,
                self._get_uptime(),
            )

    async def stop(self) -> None:
        """Request graceful shutdown of the worker."""
        logger.info("Worker shutdown requested: worker_id=%s", self.config.worker_id)
        self._shutdown_event.set()

    async def _run_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                for queue in self.config.queues:
                    if self._shutdown_event.is_set():
                        break
                    await self._process_queue(queue)

                if not self._shutdown_event.is_set():
                    await self._cleanup_stale_jobs()

                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.config.poll_interval,
                    )

            except Exception as e:
                logger.exception("Error in worker loop: %s", e)
                await asyncio.sleep(1.0)

    async def _process_queue(self, queue: str) -> None:
        """Claim and run at most one job from queue."""
        async with self._session_factory() as session:
            job_queue = JobQueueService(session, default_queue=queue)

            job = await job_queue.claim_job(
                worker_id=self.config.worker_id,
                queue=queue,
                job_types=self.config.job_types or None,
            )
            if job is None:
                return

            # Commit the claim so the RUNNING status is visible while the handler runs
            await session.commit()

            job_id = job.job_id
            job_type = job.job_type
            logger.info(
                "Processing job: job_id=%s, job_type=%s, attempt=%d/%d",
                job_id,
                job_type,
                job.attempts,
                job.max_attempts,
            )

            handler = self._handlers.get(job_type)
            if handler is None:
                error_msg = f"No handler registered for job_type={job_type}"
                logger.error(error_msg)
                await job_queue.fail_job(job_id, error_msg)
                await session.commit()
                self._jobs_failed += 1
                return

            try:
                result = await handler(session, job)
                await job_queue.complete_job(job_id, result)
                await session.commit()
                self._jobs_processed += 1

            except Exception as e:
                logger.exception(
                    "Job failed: job_id=%s, job_type=%s, error=%s",
                    job_id,
                    job_type,
                    e,
                )
                await session.rollback()

                async with self._session_factory() as fail_session:
                    fail_queue = JobQueueService(fail_session)
                    will_retry = await fail_queue.fail_job(job_id, str(e))
                    await fail_session.commit()

                if not will_retry:
                    self._jobs_failed += 1

    async def _cleanup_stale_jobs(self) -> None:
        async with self._session_factory() as session:
            job_queue = JobQueueService(session)
            count = await job_queue.cleanup_stale_jobs(
                stale_threshold_seconds=self.config.stale_job_threshold_seconds
            )
            if count > 0:
                await session.commit()

    def _get_uptime(self) -> str:
        """Uptime as a human-readable string."""
        if self._started_at is None:
            return "0s"
        delta = datetime.now(UTC) - self._started_at
        hours, remainder = divmod(int(delta.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        if minutes > 0:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"


_shutdown_event: asyncio.Event | None = None
_shutdown_loop: asyncio.AbstractEventLoop | None = None


def _handle_shutdown(signum: int, _frame: object) -> None:
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None and _shutdown_loop is not None:
        _shutdown_loop.call_soon_threadsafe(_shutdown_event.set)


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def build_worker_config(settings: Settings) -> WorkerConfig:
    """Build WorkerConfig from settings and worker environment variables.

    Environment variables:
        WORKER_ID: Unique worker identifier (auto-generated if not set)
        WORKER_POLL_INTERVAL: Seconds between polls (default: 5)
        WORKER_STALE_THRESHOLD: Seconds before a running job is considered stale (default: 1800)
        WORKER_SHUTDOWN_TIMEOUT: Seconds for graceful shutdown (default: 30)
        WORKER_RUN_SCHEDULER: Run the daily scheduler in this process (default: true)
    """
    queues = list(dict.fromkeys([settings.transitions_job.queue, settings.renewals_job.queue]))

    return WorkerConfig(
        worker_id=os.environ.get("WORKER_ID", f"worker-{uuid.uuid4().hex[:8]}"),
        poll_interval=float(os.environ.get("WORKER_POLL_INTERVAL", "5")),
        queues=queues,
        stale_job_threshold_seconds=int(os.environ.get("WORKER_STALE_THRESHOLD", "1800")),
        shutdown_timeout=float(os.environ.get("WORKER_SHUTDOWN_TIMEOUT", "30")),
        run_scheduler=_env_flag("WORKER_RUN_SCHEDULER", True),
    )


def register_default_handlers(worker: Worker) -> None:
    """Register the registry job handlers."""
    from contract_registry.worker.handlers.registry import (
        run_automatic_renewals_handler,
        run_scheduled_transitions_handler,
    )

    worker.register_handler(JobType.REGISTRY_TRANSITIONS, run_scheduled_transitions_handler)
    worker.register_handler(JobType.REGISTRY_RENEWALS, run_automatic_renewals_handler)


async def _async_main(shutdown_event: asyncio.Event) -> None:
    from contract_registry.core.settings import get_settings
    from contract_registry.db import close_engine, get_session_factory
    from contract_registry.worker.scheduler import build_schedules, run_scheduler_loop

    settings = get_settings()
    config = build_worker_config(settings)
    session_factory = get_session_factory()

    worker = Worker(config, session_factory)
    register_default_handlers(worker)

    tasks = [asyncio.create_task(worker.start())]
    if config.run_scheduler:
        tasks.append(
            asyncio.create_task(
                run_scheduler_loop(
                    session_factory,
                    build_schedules(settings),
                    timezone=settings.tzinfo,
                    check_interval=config.scheduler_interval,
                    shutdown_event=shutdown_event,
                )
            )
        )

    await shutdown_event.wait()
    await worker.stop()

    try:
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=config.shutdown_timeout)
    except TimeoutError:
        logger.warning("Worker did not stop within timeout, forcing shutdown")
        for task in tasks:
            task.cancel()
    finally:
        await close_engine()


def run() -> NoReturn:
    """Run the worker process."""
    from contract_registry.core.settings import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info("%s worker starting...", settings.app_name)

    async def _run_with_event() -> None:
        global _shutdown_event, _shutdown_loop
        _shutdown_loop = asyncio.get_running_loop()
        _shutdown_event = asyncio.Event()
        await _async_main(_shutdown_event)

    try:
        asyncio.run(_run_with_event())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("Registry worker shutdown complete")
    sys.exit(0)


if __name__ == "__main__":
    run()
