"""Record store used by the lifecycle engine.

The engine talks to persistence only through the RecordStore protocol. The
SQL implementation commits every write on its own so that a pass interrupted
halfway leaves exactly the already-processed records changed:

- persist() is a conditional single-row UPDATE guarded by the expected state.
  When the row no longer holds that state another run got there first and
  the call returns False.
- create_successor() locks the predecessor row, re-checks for an existing
  successor, inserts the new record and closes the predecessor in one
  transaction. The unique constraint on parent_record_id backs this up.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import aliased

from contract_registry.db.models.base import RecordState
from contract_registry.db.models.records import ContractRecord
from contract_registry.services.lifecycle import (
    RENEWABLE_STATES,
    SYSTEM_ACTOR,
    TERMINAL_STATES,
    RecordView,
)
from contract_registry.services.protocol import generate_protocol_number, protocol_prefix

if TYPE_CHECKING:
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class RecordStoreError(Exception):
    """Raised when the record store cannot be read or written."""

    pass


@runtime_checkable
class RecordStore(Protocol):
    """Persistence operations needed by the scanner and the renewal processor."""

    async def query_non_terminal_with_expiry(self) -> list[RecordView]:
        """Return every non-terminal record that has an expiry date."""
        ...

    async def query_renewal_candidates(self) -> list[RecordView]:
        """Return records eligible for automatic renewal and not yet renewed."""
        ...

    async def persist(
        self,
        record: RecordView,
        expected_state: RecordState,
        new_state: RecordState,
    ) -> bool:
        """Move record to new_state if it still holds expected_state."""
        ...

    async def find_successor(self, predecessor_id: uuid.UUID) -> RecordView | None:
        """Return the record renewed from predecessor_id, if any."""
        ...

    async def create_successor(
        self,
        predecessor: RecordView,
        expiry_date: date,
        today: date,
    ) -> RecordView | None:
        """Create the successor and mark the predecessor RENEWED.

        Returns None when the predecessor was renewed or left a renewable
        state in the meantime.
        """
        ...


class SqlRecordStore:
    """RecordStore backed by the contract_records table.

    Every write commits the session it was given.

    Attributes:
        session: SQLAlchemy async session for database operations.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def query_non_terminal_with_expiry(self) -> list[RecordView]:
        query = (
            select(ContractRecord)
            .where(
                ContractRecord.state.not_in(TERMINAL_STATES),
                ContractRecord.expiry_date.is_not(None),
                ContractRecord.is_deleted.is_(False),
            )
            .order_by(ContractRecord.expiry_date, ContractRecord.id)
            .execution_options(populate_existing=True)
        )
        return await self._fetch_views(query, "scan candidates")

    async def query_renewal_candidates(self) -> list[RecordView]:
        successor = aliased(ContractRecord)
        query = (
            select(ContractRecord)
            .where(
                ContractRecord.state.in_(RENEWABLE_STATES),
                ContractRecord.expiry_date.is_not(None),
                ContractRecord.auto_renewal_days.is_not(None),
                ContractRecord.is_deleted.is_(False),
                ~exists().where(successor.parent_record_id == ContractRecord.id),
            )
            .order_by(ContractRecord.expiry_date, ContractRecord.id)
            .execution_options(populate_existing=True)
        )
        return await self._fetch_views(query, "renewal candidates")

    async def persist(
        self,
        record: RecordView,
        expected_state: RecordState,
        new_state: RecordState,
    ) -> bool:
        stmt = (
            update(ContractRecord)
            .where(
                ContractRecord.id == record.id,
                ContractRecord.state == expected_state,
                ContractRecord.is_deleted.is_(False),
            )
            .values(
                state=new_state,
                modified_at=datetime.now(UTC),
                modified_by=SYSTEM_ACTOR,
            )
            .execution_options(synchronize_session=False)
        )

        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to persist record %s: %s", record.id, str(e))
            raise RecordStoreError(f"Failed to persist record {record.id}: {e}") from e

        if result.rowcount != 1:
            logger.info(
                "Record %s no longer in state %s, skipped",
                record.id,
                expected_state.value,
            )
            return False

        return True

    async def find_successor(self, predecessor_id: uuid.UUID) -> RecordView | None:
        query = (
            select(ContractRecord)
            .where(ContractRecord.parent_record_id == predecessor_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise RecordStoreError(f"Failed to look up successor: {e}") from e

        successor = result.scalar_one_or_none()
        return RecordView.from_model(successor) if successor else None

    async def create_successor(
        self,
        predecessor: RecordView,
        expiry_date: date,
        today: date,
    ) -> RecordView | None:
        try:
            locked = await self._lock_record(predecessor.id)
            if locked is None or locked.state not in RENEWABLE_STATES:
                await self.session.rollback()
                return None

            if await self.find_successor(predecessor.id) is not None:
                await self.session.rollback()
                return None

            successor = ContractRecord(
                id=uuid.uuid4(),
                record_type=locked.record_type,
                protocol_number=await self._next_protocol_number(locked, today),
                state=RecordState.ACTIVE,
                expiry_date=expiry_date,
                notice_window_days=locked.notice_window_days,
                auto_renewal_days=locked.auto_renewal_days,
                parent_record_id=locked.id,
                counterparty_name=locked.counterparty_name,
                subject=locked.subject,
                amount=locked.amount,
                renewal_date=today,
                created_by=SYSTEM_ACTOR,
                is_deleted=False,
            )
            self.session.add(successor)

            locked.state = RecordState.RENEWED
            locked.modified_at = datetime.now(UTC)
            locked.modified_by = SYSTEM_ACTOR

            await self.session.flush()
            view = RecordView.from_model(successor)
            await self.session.commit()

        except IntegrityError as e:
            # Concurrent renewal of the same predecessor, or a protocol clash
            await self.session.rollback()
            logger.warning(
                "Successor for record %s not created: %s",
                predecessor.id,
                str(e.orig),
            )
            return None
        except RecordStoreError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to renew record %s: %s", predecessor.id, str(e))
            raise RecordStoreError(f"Failed to renew record {predecessor.id}: {e}") from e

        return view

    async def _lock_record(self, record_id: uuid.UUID) -> ContractRecord | None:
        query = (
            select(ContractRecord)
            .where(
                ContractRecord.id == record_id,
                ContractRecord.is_deleted.is_(False),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _next_protocol_number(self, record: ContractRecord, today: date) -> str:
        prefix = protocol_prefix(record.record_type, today)
        query = select(ContractRecord.protocol_number).where(
            ContractRecord.protocol_number.like(f"{prefix}%")
        )
        result = await self.session.execute(query)
        return generate_protocol_number(record.record_type, today, result.scalars().all())

    async def _fetch_views(self, query, what: str) -> list[RecordView]:
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error("Failed to load %s: %s", what, str(e))
            raise RecordStoreError(f"Failed to load {what}: {e}") from e

        return [RecordView.from_model(record) for record in result.scalars().all()]
