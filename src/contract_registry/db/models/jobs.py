"""Job table backing the PostgreSQL job queue.

Scheduled registry jobs are rows here; workers claim them with
SELECT ... FOR UPDATE SKIP LOCKED, retry with exponential backoff and
park them as failed once max_attempts is exhausted.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import BigInteger, DateTime, Enum, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from contract_registry.db.models.base import (
    Base,
    JobStatus,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
    enum_values,
)


class Job(Base):
    """Background job row."""

    __tablename__ = "jobs"

    job_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    # Selects the handler, e.g. 'registry_transitions'
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=enum_values),
        nullable=False,
        default=JobStatus.PENDING,
    )

    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    queue: Mapped[str] = mapped_column(String(100), default="default", nullable=False)
    priority: Mapped[int] = mapped_column(default=100, nullable=False)

    locked_at: Mapped[OptionalTimestampTZ]
    locked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    attempts: Mapped[int] = mapped_column(default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(default=3, nullable=False)
    base_backoff_seconds: Mapped[int] = mapped_column(default=60, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    payload_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    result_json: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    started_at: Mapped[OptionalTimestampTZ]
    completed_at: Mapped[OptionalTimestampTZ]
    duration_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("ix_jobs_queue_pending", "queue", "status", "run_at", "priority"),
        Index("ix_jobs_job_type_status", "job_type", "status"),
        Index("ix_jobs_completed_at", "completed_at"),
    )
