"""Base model definitions and enums shared across models.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Reusable column type annotations
- Enum types used by the registry, the notification rules and the job queue
"""

import enum
import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()

# UUID primary key generated server-side
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
]

TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), server_default=text("now()")),
]

OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (lowercase) rather than member names."""
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Declarative base for all registry models."""

    metadata = metadata
    registry = type_registry


# =============================================================================
# Registry Enums
# =============================================================================


class RecordType(enum.Enum):
    """Kind of registry entry.

    Values:
        QUOTE: Quote issued to a customer
        CONTRACT: Contract signed with a customer
    """

    QUOTE = "quote"
    CONTRACT = "contract"


class RecordState(enum.Enum):
    """Lifecycle states of a registry record.

    States:
        DRAFT: Being drafted
        IN_REVIEW: Complete, awaiting review/approval
        SENT: Sent to the counterparty
        ACTIVE: In force
        EXPIRING_SOON: Inside the notice window before expiry
        RENEWAL_PROPOSED: Expiring, with a renewal proposal sent
        EXPIRED: Past expiry without renewal (terminal)
        RENEWED: Replaced by a successor record (terminal)
        CANCELLED: Cancelled by a user (terminal)
        SUSPENDED: Temporarily suspended by a user
    """

    DRAFT = "draft"
    IN_REVIEW = "in_review"
    SENT = "sent"
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    RENEWAL_PROPOSED = "renewal_proposed"
    EXPIRED = "expired"
    RENEWED = "renewed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class RecipientKind(enum.Enum):
    """How a recipient rule resolves to mailboxes.

    Values:
        DEPARTMENT: The department mailbox (one address)
        ROLE: Every active user holding the role (N addresses)
        USER: One specific user (one address)
    """

    DEPARTMENT = "department"
    ROLE = "role"
    USER = "user"


class JobStatus(enum.Enum):
    """Status of a background job.

    Values:
        PENDING: Waiting to be processed
        RUNNING: Currently being executed
        COMPLETED: Finished successfully
        FAILED: Failed after max attempts
        CANCELLED: Manually cancelled
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
