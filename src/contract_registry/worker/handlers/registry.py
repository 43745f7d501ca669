"""Registry job handlers.

registry_transitions runs the full scan (time-driven transitions, then
automatic renewals); registry_renewals runs the renewal processor alone.

Record changes go through a session of their own, committed per record by
SqlRecordStore, so they are independent of the worker's job transaction.
Digests are sent only after every state change is committed.

Expected job payload:
    today: (optional) ISO date to evaluate; defaults to the current date in
        the configured timezone
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from contract_registry.core.settings import get_settings
from contract_registry.db import get_async_session
from contract_registry.services.email import SmtpMailSender
from contract_registry.services.notifier import Notifier
from contract_registry.services.recipients import (
    NotificationConfigSnapshot,
    RecipientResolver,
    SqlDirectory,
)
from contract_registry.services.record_store import SqlRecordStore
from contract_registry.services.scanner import ScheduledTransitionScanner

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from contract_registry.core.config import JobSettings, Settings
    from contract_registry.db.models.jobs import Job
    from contract_registry.services.lifecycle import StateChangeResult

logger = logging.getLogger(__name__)


def resolve_today(job: Job, settings: Settings) -> date:
    """Evaluation date of a job.

    Raises:
        ValueError: If the payload carries a malformed date.
    """
    payload = job.payload_json or {}
    raw = payload.get("today")
    if raw:
        return date.fromisoformat(raw)
    return datetime.now(settings.tzinfo).date()


async def run_scheduled_transitions_handler(
    session: AsyncSession,
    job: Job,
) -> dict[str, Any] | None:
    """Handle registry_transitions jobs."""
    settings = get_settings()
    today = resolve_today(job, settings)

    async with get_async_session() as registry_session:
        scanner = ScheduledTransitionScanner(SqlRecordStore(registry_session))
        results = await scanner.run(today)

        return await _finish(registry_session, results, today, settings, settings.transitions_job)


async def run_automatic_renewals_handler(
    session: AsyncSession,
    job: Job,
) -> dict[str, Any] | None:
    """Handle registry_renewals jobs."""
    settings = get_settings()
    today = resolve_today(job, settings)

    async with get_async_session() as registry_session:
        scanner = ScheduledTransitionScanner(SqlRecordStore(registry_session))
        results = await scanner.run_automatic_renewals(today)

        return await _finish(registry_session, results, today, settings, settings.renewals_job)


async def _finish(
    session: AsyncSession,
    results: list[StateChangeResult],
    today: date,
    settings: Settings,
    job_settings: JobSettings,
) -> dict[str, Any]:
    """Send digests for results and build the job result."""
    digests: list[dict[str, Any]] = []

    if results and job_settings.send_email:
        digests = await _notify(session, results, settings)

    counts: dict[str, int] = {}
    for result in results:
        counts[result.new_state.value] = counts.get(result.new_state.value, 0) + 1

    logger.info(
        "Registry job complete: today=%s, changes=%d, by_state=%s",
        today.isoformat(),
        len(results),
        counts,
    )

    return {
        "today": today.isoformat(),
        "changes": len(results),
        "by_state": counts,
        "results": [result.as_dict() for result in results[:100]],
        "digests": digests,
    }


async def _notify(
    session: AsyncSession,
    results: list[StateChangeResult],
    settings: Settings,
) -> list[dict[str, Any]]:
    """Send digests; failures are logged and never fail the job."""
    try:
        snapshot = await NotificationConfigSnapshot.load(session)
        notifier = Notifier(
            RecipientResolver(snapshot, SqlDirectory(session)),
            snapshot,
            SmtpMailSender(settings.smtp),
            base_url=settings.base_url,
            timezone=settings.tzinfo,
        )
        outcomes = await notifier.notify(results)
    except Exception:
        logger.exception("Error sending registry notifications")
        return []

    return [
        {
            "code": outcome.code,
            "entries": outcome.entries,
            "recipients": outcome.recipients,
            "sent": outcome.sent,
            "error": outcome.error,
        }
        for outcome in outcomes
    ]
