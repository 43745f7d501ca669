"""Contract registry lifecycle state machine.

Two kinds of transition move a record through its lifecycle:

- Time-driven: next_state() decides, from the expiry date, the notice window
  and today's date, whether a record becomes EXPIRING_SOON or EXPIRED. It is
  a pure function and never looks at wall-clock time.
- Human-driven: RecordLifecycleService.change_state() applies a user action
  (send, activate, suspend, cancel, propose renewal...) after checking it
  against HUMAN_TRANSITIONS.

The state graph:

    draft <-> in_review <-> sent -> active <-> suspended
                                      |
                                      v
                               expiring_soon <-> renewal_proposed
                                      |                |
                                      +-> renewed <----+   (renewal processor)
                                      +-> expired <----+   (expiry date passed)

    Every non-terminal state except expired-bound ones may go to cancelled.
    expired, renewed and cancelled are terminal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from contract_registry.db.models.base import RecordState, RecordType
from contract_registry.db.models.records import ContractRecord

if TYPE_CHECKING:
    from decimal import Decimal
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


TERMINAL_STATES = frozenset(
    {
        RecordState.EXPIRED,
        RecordState.RENEWED,
        RecordState.CANCELLED,
    }
)

# States the scheduled scan evaluates with next_state()
EXPIRABLE_STATES = frozenset(
    {
        RecordState.ACTIVE,
        RecordState.EXPIRING_SOON,
        RecordState.RENEWAL_PROPOSED,
    }
)

# States from which the renewal processor may create a successor
RENEWABLE_STATES = frozenset(
    {
        RecordState.EXPIRING_SOON,
        RecordState.RENEWAL_PROPOSED,
    }
)

HUMAN_TRANSITIONS: dict[RecordState, frozenset[RecordState]] = {
    RecordState.DRAFT: frozenset(
        {RecordState.IN_REVIEW, RecordState.SENT, RecordState.CANCELLED}
    ),
    RecordState.IN_REVIEW: frozenset(
        {RecordState.DRAFT, RecordState.SENT, RecordState.CANCELLED}
    ),
    RecordState.SENT: frozenset(
        {RecordState.IN_REVIEW, RecordState.ACTIVE, RecordState.CANCELLED}
    ),
    RecordState.ACTIVE: frozenset(
        {RecordState.EXPIRING_SOON, RecordState.SUSPENDED, RecordState.CANCELLED}
    ),
    RecordState.EXPIRING_SOON: frozenset(
        {
            RecordState.RENEWAL_PROPOSED,
            RecordState.ACTIVE,
            RecordState.EXPIRED,
            RecordState.CANCELLED,
        }
    ),
    RecordState.RENEWAL_PROPOSED: frozenset(
        {
            RecordState.EXPIRING_SOON,
            RecordState.RENEWED,
            RecordState.EXPIRED,
            RecordState.CANCELLED,
        }
    ),
    RecordState.SUSPENDED: frozenset({RecordState.ACTIVE, RecordState.CANCELLED}),
    RecordState.EXPIRED: frozenset(),
    RecordState.RENEWED: frozenset(),
    RecordState.CANCELLED: frozenset(),
}

STATE_LABELS: dict[RecordState, str] = {
    RecordState.DRAFT: "In bozza",
    RecordState.IN_REVIEW: "In revisione",
    RecordState.SENT: "Inviato",
    RecordState.ACTIVE: "Attivo",
    RecordState.EXPIRING_SOON: "In scadenza",
    RecordState.RENEWAL_PROPOSED: "In scadenza - Proposto rinnovo",
    RecordState.EXPIRED: "Scaduto",
    RecordState.RENEWED: "Rinnovato",
    RecordState.CANCELLED: "Annullato",
    RecordState.SUSPENDED: "Sospeso",
}

# Actor recorded in modified_by for engine-driven changes
SYSTEM_ACTOR = "system"


@dataclass(frozen=True, slots=True)
class RecordView:
    """Read-only view of a registry record, as seen by the engine.

    Carries only the scheduling and descriptive fields; audit and
    soft-delete columns stay with the persistence layer.
    """

    id: UUID
    record_type: RecordType
    state: RecordState
    protocol_number: str | None
    expiry_date: date | None
    notice_window_days: int
    auto_renewal_days: int | None
    parent_record_id: UUID | None
    counterparty_name: str | None
    subject: str
    amount: Decimal | None = None
    renewal_date: date | None = None

    @classmethod
    def from_model(cls, record: ContractRecord) -> RecordView:
        """Build a view from the ORM model."""
        return cls(
            id=record.id,
            record_type=record.record_type,
            state=record.state,
            protocol_number=record.protocol_number,
            expiry_date=record.expiry_date,
            notice_window_days=record.notice_window_days,
            auto_renewal_days=record.auto_renewal_days,
            parent_record_id=record.parent_record_id,
            counterparty_name=record.counterparty_name,
            subject=record.subject,
            amount=record.amount,
            renewal_date=record.renewal_date,
        )


@dataclass(frozen=True, slots=True)
class StateChangeResult:
    """One committed transition, collected during a scan pass for notification.

    Attributes:
        record_id: Record that changed state.
        old_state: State before the change.
        new_state: State after the change.
        expiry_date: Expiry date of the record.
        protocol_number: Protocol number of the record.
        subject: Subject of the record.
        counterparty_name: Counterparty of the record.
        successor_record_id: Successor created by a renewal.
        successor_protocol_number: Protocol number of that successor.
    """

    record_id: UUID
    old_state: RecordState
    new_state: RecordState
    expiry_date: date | None
    protocol_number: str | None
    subject: str
    counterparty_name: str | None
    successor_record_id: UUID | None = None
    successor_protocol_number: str | None = None

    @classmethod
    def for_record(
        cls,
        record: RecordView,
        new_state: RecordState,
        *,
        successor: RecordView | None = None,
    ) -> StateChangeResult:
        """Build the result for a transition of record into new_state."""
        return cls(
            record_id=record.id,
            old_state=record.state,
            new_state=new_state,
            expiry_date=record.expiry_date,
            protocol_number=record.protocol_number,
            subject=record.subject,
            counterparty_name=record.counterparty_name,
            successor_record_id=successor.id if successor else None,
            successor_protocol_number=successor.protocol_number if successor else None,
        )

    def as_dict(self) -> dict[str, Any]:
        """JSON-friendly form, stored in the job result."""
        return {
            "record_id": str(self.record_id),
            "old_state": self.old_state.value,
            "new_state": self.new_state.value,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "protocol_number": self.protocol_number,
            "successor_record_id": (
                str(self.successor_record_id) if self.successor_record_id else None
            ),
            "successor_protocol_number": self.successor_protocol_number,
        }


class InvalidTransitionError(Exception):
    """Raised when a human-initiated state change is not allowed."""

    def __init__(
        self,
        from_state: RecordState,
        to_state: RecordState,
        reason: str | None = None,
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or (
            f"Transition not allowed from {STATE_LABELS[from_state]} "
            f"to {STATE_LABELS[to_state]}"
        )
        super().__init__(self.reason)


class RecordNotFoundError(Exception):
    """Raised when a registry record does not exist."""

    def __init__(self, record_id: UUID) -> None:
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found")


def is_terminal(state: RecordState) -> bool:
    """Check if a state has no outgoing transitions."""
    return state in TERMINAL_STATES


def next_state(
    state: RecordState,
    expiry_date: date | None,
    notice_window_days: int,
    today: date,
) -> RecordState | None:
    """Decide the time-driven transition of a record.

    Args:
        state: Current state.
        expiry_date: Expiry date, or None when the record has none.
        notice_window_days: Days before expiry at which the record is
            flagged as expiring soon.
        today: Evaluation date.

    Returns:
        The target state, or None when nothing changes.
    """
    if expiry_date is None or state not in EXPIRABLE_STATES:
        return None

    # expiry_date == today is still a valid day; expiry starts the day after
    if expiry_date < today:
        return RecordState.EXPIRED

    days_left = (expiry_date - today).days
    if state == RecordState.ACTIVE and days_left <= notice_window_days:
        return RecordState.EXPIRING_SOON

    return None


def validate_transition(from_state: RecordState, to_state: RecordState) -> None:
    """Check a human-initiated state change.

    A change to the current state is accepted as a no-op.

    Raises:
        InvalidTransitionError: If the change is not allowed.
    """
    if from_state == to_state:
        return
    if to_state not in HUMAN_TRANSITIONS[from_state]:
        raise InvalidTransitionError(from_state, to_state)


class RecordLifecycleService:
    """Applies user-initiated state changes to registry records.

    Example:
        service = RecordLifecycleService(session)
        await service.change_state(record_id, RecordState.SUSPENDED, actor="u-42")
        await session.commit()
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_record(self, record_id: UUID) -> ContractRecord:
        """Load a record that is not soft-deleted.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        query = select(ContractRecord).where(
            ContractRecord.id == record_id,
            ContractRecord.is_deleted.is_(False),
        )
        result = await self._session.execute(query)
        record = result.scalar_one_or_none()

        if record is None:
            raise RecordNotFoundError(record_id)

        return record

    async def change_state(
        self,
        record_id: UUID,
        to_state: RecordState,
        *,
        actor: str,
    ) -> RecordState:
        """Move a record to to_state on behalf of a user.

        RENEWED is only reachable through the renewal processor, which
        creates the successor record in the same transaction.

        Args:
            record_id: Record to change.
            to_state: Requested state.
            actor: User performing the change, stored in modified_by.

        Returns:
            The state the record had before the change.

        Raises:
            RecordNotFoundError: If the record does not exist.
            InvalidTransitionError: If the change is not allowed.
        """
        record = await self.get_record(record_id)
        from_state = record.state

        if to_state == RecordState.RENEWED and from_state != RecordState.RENEWED:
            raise InvalidTransitionError(
                from_state,
                to_state,
                reason="Renewal must go through the renewal processor",
            )

        validate_transition(from_state, to_state)
        if from_state == to_state:
            return from_state

        record.state = to_state
        record.modified_at = datetime.now(UTC)
        record.modified_by = actor
        await self._session.flush()

        logger.info(
            "Record state changed",
            extra={
                "record_id": str(record_id),
                "from_state": from_state.value,
                "to_state": to_state.value,
                "actor": actor,
            },
        )
        return from_state
