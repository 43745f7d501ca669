"""Tests for the SQL record store.

Sessions are mocked; these tests check the commit/rollback discipline and
the mapping of database errors, not the SQL itself.
"""

from datetime import date
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from contract_registry.db.models.base import RecordState, RecordType
from contract_registry.services.record_store import (
    RecordStore,
    RecordStoreError,
    SqlRecordStore,
)
from tests.factories import create_record


def orm_record(view, **overrides):
    """ORM-like object carrying the fields RecordView.from_model reads."""
    record = MagicMock()
    for name in (
        "id",
        "record_type",
        "state",
        "protocol_number",
        "expiry_date",
        "notice_window_days",
        "auto_renewal_days",
        "renewal_date",
        "parent_record_id",
        "counterparty_name",
        "subject",
        "amount",
    ):
        setattr(record, name, overrides.get(name, getattr(view, name)))
    return record


def scalar_result(value):
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    return result


def scalars_result(values):
    result = MagicMock()
    result.scalars.return_value.all.return_value = values
    return result


class TestQueries:
    """Tests for the candidate queries."""

    def test_satisfies_protocol(self, mock_session):
        assert isinstance(SqlRecordStore(mock_session), RecordStore)

    @pytest.mark.asyncio
    async def test_query_returns_views(self, mock_session):
        view = create_record(RecordState.ACTIVE, date(2025, 1, 10))
        mock_session.execute.return_value = scalars_result([orm_record(view)])

        records = await SqlRecordStore(mock_session).query_non_terminal_with_expiry()

        assert records == [view]

    @pytest.mark.asyncio
    async def test_query_error_is_wrapped(self, mock_session):
        mock_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(RecordStoreError, match="scan candidates"):
            await SqlRecordStore(mock_session).query_non_terminal_with_expiry()

    @pytest.mark.asyncio
    async def test_renewal_candidates(self, mock_session):
        view = create_record(RecordState.EXPIRING_SOON, date(2025, 1, 10), auto_renewal_days=30)
        mock_session.execute.return_value = scalars_result([orm_record(view)])

        assert await SqlRecordStore(mock_session).query_renewal_candidates() == [view]


class TestPersist:
    """Tests for the conditional state update."""

    @pytest.mark.asyncio
    async def test_persist_commits(self, mock_session):
        mock_session.execute.return_value = MagicMock(rowcount=1)
        record = create_record(RecordState.ACTIVE, date(2025, 1, 7))

        changed = await SqlRecordStore(mock_session).persist(
            record, RecordState.ACTIVE, RecordState.EXPIRED
        )

        assert changed is True
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_persist_conflict(self, mock_session):
        """No row matched the expected state: someone else changed the record."""
        mock_session.execute.return_value = MagicMock(rowcount=0)
        record = create_record(RecordState.ACTIVE, date(2025, 1, 7))

        changed = await SqlRecordStore(mock_session).persist(
            record, RecordState.ACTIVE, RecordState.EXPIRED
        )

        assert changed is False

    @pytest.mark.asyncio
    async def test_persist_error_rolls_back(self, mock_session):
        mock_session.execute.side_effect = OperationalError("UPDATE", {}, Exception("down"))
        record = create_record(RecordState.ACTIVE, date(2025, 1, 7))

        with pytest.raises(RecordStoreError):
            await SqlRecordStore(mock_session).persist(
                record, RecordState.ACTIVE, RecordState.EXPIRED
            )

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()


class TestCreateSuccessor:
    """Tests for successor creation."""

    @pytest.mark.asyncio
    async def test_creates_successor_and_closes_predecessor(self, mock_session):
        view = create_record(
            RecordState.EXPIRING_SOON,
            date(2025, 1, 10),
            auto_renewal_days=30,
            record_type=RecordType.CONTRACT,
        )
        locked = orm_record(view)
        mock_session.execute.side_effect = [
            scalar_result(locked),
            scalar_result(None),
            scalars_result(["CONTR-2025-0004"]),
        ]

        successor = await SqlRecordStore(mock_session).create_successor(
            view, date(2025, 2, 9), date(2025, 1, 8)
        )

        assert successor.state == RecordState.ACTIVE
        assert successor.expiry_date == date(2025, 2, 9)
        assert successor.parent_record_id == view.id
        assert successor.renewal_date == date(2025, 1, 8)
        assert successor.protocol_number == "CONTR-2025-0005"
        assert locked.state == RecordState.RENEWED
        assert locked.modified_by == "system"
        mock_session.add.assert_called_once()
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_predecessor_no_longer_renewable(self, mock_session):
        view = create_record(RecordState.EXPIRING_SOON, date(2025, 1, 10), auto_renewal_days=30)
        mock_session.execute.return_value = scalar_result(
            orm_record(view, state=RecordState.CANCELLED)
        )

        result = await SqlRecordStore(mock_session).create_successor(
            view, date(2025, 2, 9), date(2025, 1, 8)
        )

        assert result is None
        mock_session.add.assert_not_called()
        mock_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_existing_successor(self, mock_session):
        view = create_record(RecordState.EXPIRING_SOON, date(2025, 1, 10), auto_renewal_days=30)
        existing = orm_record(create_record(RecordState.ACTIVE, date(2025, 2, 9)))
        mock_session.execute.side_effect = [
            scalar_result(orm_record(view)),
            scalar_result(existing),
        ]

        result = await SqlRecordStore(mock_session).create_successor(
            view, date(2025, 2, 9), date(2025, 1, 8)
        )

        assert result is None
        mock_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_integrity_error_returns_none(self, mock_session):
        """A concurrent renewal trips the unique constraint on parent_record_id."""
        view = create_record(RecordState.EXPIRING_SOON, date(2025, 1, 10), auto_renewal_days=30)
        mock_session.execute.side_effect = [
            scalar_result(orm_record(view)),
            scalar_result(None),
            scalars_result([]),
        ]
        mock_session.flush.side_effect = IntegrityError("INSERT", {}, Exception("duplicate"))

        result = await SqlRecordStore(mock_session).create_successor(
            view, date(2025, 2, 9), date(2025, 1, 8)
        )

        assert result is None
        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self, mock_session):
        view = create_record(RecordState.EXPIRING_SOON, date(2025, 1, 10), auto_renewal_days=30)
        mock_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(RecordStoreError):
            await SqlRecordStore(mock_session).create_successor(
                view, date(2025, 2, 9), date(2025, 1, 8)
            )

        mock_session.rollback.assert_awaited()
