"""Scheduled transition scan over the contract registry.

One pass loads the non-terminal records with an expiry date, applies the
time-driven state machine to each, persists every change on its own and then
hands the expiring records to the renewal processor. Running the pass twice
on the same day yields no further changes: each transition moves a record out
of the state that made it a candidate, and successors created by a renewal
wait for the next day's pass.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from contract_registry.services.lifecycle import StateChangeResult, next_state
from contract_registry.services.record_store import RecordStoreError
from contract_registry.services.renewal import RenewalProcessor, is_renewal_eligible

if TYPE_CHECKING:
    from datetime import date

    from contract_registry.services.lifecycle import RecordView
    from contract_registry.services.record_store import RecordStore

logger = logging.getLogger(__name__)


class ScheduledTransitionScanner:
    """Applies time-driven transitions and automatic renewals.

    Records are processed one at a time. A failure on a single record is
    logged and skipped; RecordStoreError aborts the pass so the job queue
    can retry it.

    Example:
        scanner = ScheduledTransitionScanner(SqlRecordStore(session))
        results = await scanner.run(today=date.today())
    """

    def __init__(
        self,
        store: RecordStore,
        renewal_processor: RenewalProcessor | None = None,
    ) -> None:
        self._store = store
        self._renewals = renewal_processor or RenewalProcessor(store)

    async def run(self, today: date) -> list[StateChangeResult]:
        """Run one full pass: state machine first, then renewals.

        Args:
            today: Evaluation date.

        Returns:
            Every committed transition, renewals included.
        """
        candidates = await self._store.query_non_terminal_with_expiry()
        logger.info("Scanning %d records for %s", len(candidates), today.isoformat())

        results: list[StateChangeResult] = []
        renewable: list[RecordView] = []

        for record in candidates:
            if record.renewal_date == today:
                # Successor created by a renewal on this day
                continue

            try:
                current = await self._apply_transition(record, today, results)
            except RecordStoreError:
                raise
            except Exception:
                logger.exception("Error evaluating record %s", record.id)
                continue

            if current is not None and is_renewal_eligible(current):
                renewable.append(current)

        transitions = len(results)
        results.extend(await self._renewals.process(renewable, today))

        logger.info(
            "Scan completed for %s: %d transitions, %d renewals",
            today.isoformat(),
            transitions,
            len(results) - transitions,
        )
        return results

    async def run_automatic_renewals(self, today: date) -> list[StateChangeResult]:
        """Renew the current renewal candidates without evaluating expiry."""
        candidates = await self._store.query_renewal_candidates()
        logger.info(
            "Processing %d renewal candidates for %s",
            len(candidates),
            today.isoformat(),
        )
        return await self._renewals.process(candidates, today)

    async def _apply_transition(
        self,
        record: RecordView,
        today: date,
        results: list[StateChangeResult],
    ) -> RecordView | None:
        """Apply next_state to one record.

        Returns:
            The record as it stands after this step, or None when another
            run changed it concurrently.
        """
        target = next_state(
            record.state,
            record.expiry_date,
            record.notice_window_days,
            today,
        )
        if target is None:
            return record

        if not await self._store.persist(record, record.state, target):
            return None

        results.append(StateChangeResult.for_record(record, target))
        logger.debug(
            "Record %s moved from %s to %s",
            record.id,
            record.state.value,
            target.value,
        )
        return dataclasses.replace(record, state=target)
