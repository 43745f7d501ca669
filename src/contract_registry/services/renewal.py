"""Automatic renewal of expiring registry records.

A record in EXPIRING_SOON or RENEWAL_PROPOSED that carries auto_renewal_days
is cloned into a successor: same descriptive fields, a fresh protocol number,
state ACTIVE and an expiry date pushed forward by auto_renewal_days calendar
days. The predecessor is closed as RENEWED and linked from the successor
through parent_record_id.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from contract_registry.db.models.base import RecordState
from contract_registry.services.lifecycle import RENEWABLE_STATES, StateChangeResult
from contract_registry.services.record_store import RecordStoreError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

    from contract_registry.services.lifecycle import RecordView
    from contract_registry.services.record_store import RecordStore

logger = logging.getLogger(__name__)


def is_renewal_eligible(record: RecordView) -> bool:
    """Check the fields that make a record a renewal candidate."""
    return (
        record.state in RENEWABLE_STATES
        and record.auto_renewal_days is not None
        and record.expiry_date is not None
    )


def successor_expiry(record: RecordView) -> date:
    """Expiry date of the successor of record."""
    return record.expiry_date + timedelta(days=record.auto_renewal_days)


class RenewalProcessor:
    """Creates successor records for renewal-eligible records.

    Example:
        processor = RenewalProcessor(SqlRecordStore(session))
        results = await processor.process(candidates, today=date(2025, 1, 8))
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def process(
        self,
        records: Iterable[RecordView],
        today: date,
    ) -> list[StateChangeResult]:
        """Renew every eligible record.

        A failure on one record is logged and the record is skipped. Store
        failures abort the whole batch.

        Returns:
            One result per renewed record.
        """
        results: list[StateChangeResult] = []

        for record in records:
            try:
                result = await self.renew(record, today)
            except RecordStoreError:
                raise
            except Exception:
                logger.exception("Error renewing record %s", record.id)
                continue

            if result is not None:
                results.append(result)

        if results:
            logger.info("Renewed %d records", len(results))

        return results

    async def renew(self, record: RecordView, today: date) -> StateChangeResult | None:
        """Renew a single record.

        Returns:
            The RENEWED transition of the predecessor, or None when the record
            is not eligible or already has a successor.
        """
        if not is_renewal_eligible(record):
            return None

        if record.renewal_date == today:
            logger.debug("Record %s was created by a renewal today", record.id)
            return None

        if await self._store.find_successor(record.id) is not None:
            logger.debug("Record %s already has a successor", record.id)
            return None

        successor = await self._store.create_successor(
            record,
            successor_expiry(record),
            today,
        )
        if successor is None:
            return None

        logger.info(
            "Record renewed: record_id=%s, successor_id=%s, protocol=%s, expiry=%s",
            record.id,
            successor.id,
            successor.protocol_number,
            successor.expiry_date,
        )

        return StateChangeResult.for_record(record, RecordState.RENEWED, successor=successor)
