"""Contract registry record model.

A record is a versioned quote or contract entry. Renewal chains link each
record to the predecessor it was renewed from through parent_record_id.
"""

from __future__ import annotations

import uuid
from datetime import date  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from decimal import Decimal  # noqa: TC003

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from contract_registry.db.models.base import (
    Base,
    OptionalTimestampTZ,
    RecordState,
    RecordType,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class ContractRecord(Base):
    """Quote or contract tracked by the registry.

    The lifecycle engine reads the scheduling fields and writes only
    state, modified_at and modified_by. Audit and soft-delete columns
    belong to the CRUD layer.
    """

    __tablename__ = "contract_records"

    id: Mapped[UUIDPrimaryKey]

    record_type: Mapped[RecordType] = mapped_column(
        Enum(RecordType, name="record_type", create_constraint=True, values_callable=enum_values),
        nullable=False,
    )

    # Assigned once, never changed afterwards
    protocol_number: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True)

    state: Mapped[RecordState] = mapped_column(
        Enum(RecordState, name="record_state", create_constraint=True, values_callable=enum_values),
        nullable=False,
        default=RecordState.DRAFT,
    )

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    notice_window_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=60, server_default=text("60")
    )
    auto_renewal_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Run date of the renewal that created this record; None for records
    # entered by users
    renewal_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Unique: a predecessor has at most one successor
    parent_record_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contract_records.id"),
        nullable=True,
        unique=True,
    )

    counterparty_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    created_at: Mapped[TimestampTZ]
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    modified_at: Mapped[OptionalTimestampTZ]
    modified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    __table_args__ = (
        # Candidate query of the scheduled scan
        Index("ix_contract_records_state_expiry", "state", "expiry_date"),
        CheckConstraint("notice_window_days >= 0", name="notice_window_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<ContractRecord {self.id} {self.protocol_number} {self.state.value}>"
