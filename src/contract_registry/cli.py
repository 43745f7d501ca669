"""Operator commands for the registry jobs.

Usage:
    contract-registry enqueue transitions [--today 2025-01-08]
    contract-registry enqueue renewals
    contract-registry list-failed
    contract-registry retry-failed JOB_ID
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date

from contract_registry.core.settings import get_settings
from contract_registry.db import close_engine, get_async_session
from contract_registry.services.job_queue import JobQueueError, JobQueueService, JobType

logger = logging.getLogger(__name__)

JOB_TYPES = {
    "transitions": JobType.REGISTRY_TRANSITIONS,
    "renewals": JobType.REGISTRY_RENEWALS,
}


async def enqueue_job(kind: str, today: date | None) -> uuid.UUID:
    """Enqueue a registry job right away."""
    settings = get_settings()
    job_settings = settings.transitions_job if kind == "transitions" else settings.renewals_job
    payload = {"today": today.isoformat()} if today else None

    async with get_async_session() as session:
        queue = JobQueueService(session, default_queue=job_settings.queue)
        job_id = await queue.enqueue(
            JOB_TYPES[kind],
            payload=payload,
            max_attempts=job_settings.max_attempts,
        )
        await session.commit()
    return job_id


async def list_failed_jobs() -> list[tuple[str, str, str, str]]:
    """Dead-lettered registry jobs as (id, type, completed_at, error) rows."""
    async with get_async_session() as session:
        jobs = await JobQueueService(session).get_failed_jobs()
        return [
            (
                str(job.job_id),
                job.job_type,
                job.completed_at.isoformat() if job.completed_at else "-",
                job.last_error or "",
            )
            for job in jobs
        ]


async def retry_failed_job(job_id: uuid.UUID) -> None:
    async with get_async_session() as session:
        await JobQueueService(session).retry_failed_job(job_id)
        await session.commit()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contract-registry",
        description="Manage contract registry background jobs",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    enqueue = commands.add_parser("enqueue", help="Run a registry job now")
    enqueue.add_argument("kind", choices=sorted(JOB_TYPES))
    enqueue.add_argument(
        "--today",
        type=date.fromisoformat,
        help="Evaluation date (YYYY-MM-DD); defaults to the current date",
    )

    commands.add_parser("list-failed", help="List dead-lettered jobs")

    retry = commands.add_parser("retry-failed", help="Re-queue a dead-lettered job")
    retry.add_argument("job_id", type=uuid.UUID)

    return parser


async def _dispatch(args: argparse.Namespace) -> int:
    try:
        if args.command == "enqueue":
            job_id = await enqueue_job(args.kind, args.today)
            print(f"Enqueued {args.kind} job {job_id}")
        elif args.command == "list-failed":
            rows = await list_failed_jobs()
            if not rows:
                print("No failed jobs")
            for row in rows:
                print("\t".join(row))
        elif args.command == "retry-failed":
            await retry_failed_job(args.job_id)
            print(f"Job {args.job_id} queued for retry")
    except JobQueueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await close_engine()
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    args = build_parser().parse_args(argv)
    return asyncio.run(_dispatch(args))


if __name__ == "__main__":
    sys.exit(main())
