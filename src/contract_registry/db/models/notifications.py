"""Notification configuration models.

A NotificationRule is keyed by a notification code and owns the recipient
rules that say who receives the mail for that code. Both are edited by the
admin UI; the lifecycle engine only reads them.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Enum, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from contract_registry.db.models.base import (
    Base,
    RecipientKind,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class NotificationRule(Base):
    """Mail notification policy for one notification code."""

    __tablename__ = "notification_rules"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    notification_code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Module tag, used by the admin UI to group rules
    module: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    default_subject: Mapped[str | None] = mapped_column(String(255), nullable=True)

    recipients: Mapped[list[RecipientRule]] = relationship(
        back_populates="rule",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class RecipientRule(Base):
    """One recipient entry of a notification rule.

    Exactly one of department_id, role_name or user_id is meaningful,
    selected by kind.
    """

    __tablename__ = "recipient_rules"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("notification_rules.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[RecipientKind] = mapped_column(
        Enum(
            RecipientKind,
            name="recipient_kind",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    department_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("departments.id"),
        nullable=True,
    )
    role_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("directory_users.id"),
        nullable=True,
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    rule: Mapped[NotificationRule] = relationship(back_populates="recipients")

    __table_args__ = (Index("ix_recipient_rules_rule_id", "rule_id"),)
