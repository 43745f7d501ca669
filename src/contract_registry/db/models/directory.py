"""Department and user directory backing recipient resolution."""

from __future__ import annotations

from sqlalchemy import Boolean, Index, String, text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from contract_registry.db.models.base import Base, TimestampTZ, UUIDPrimaryKey


class Department(Base):
    """Organizational department with a shared mailbox."""

    __tablename__ = "departments"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )


class DirectoryUser(Base):
    """Application user as seen by notification recipient resolution."""

    __tablename__ = "directory_users"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    roles: Mapped[list[str]] = mapped_column(
        ARRAY(String(100)), nullable=False, default=list, server_default=text("'{}'")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )

    __table_args__ = (Index("ix_directory_users_roles", "roles", postgresql_using="gin"),)
