"""Initial registry schema.

Revision ID: 001
Revises: None
Create Date: 2025-10-01 00:00:00.000000+00:00

Creates:
- contract_records (registry records and renewal chains)
- departments, directory_users (recipient directory)
- notification_rules, recipient_rules (notification configuration)
- jobs (background processing)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

RECORD_STATES = (
    "draft",
    "in_review",
    "sent",
    "active",
    "expiring_soon",
    "renewal_proposed",
    "expired",
    "renewed",
    "cancelled",
    "suspended",
)

# (code, description) seeded so the admin UI can attach recipients
NOTIFICATION_CODES = (
    ("CONTRATTO_IN_SCADENZA", "Contratto in scadenza"),
    ("CONTRATTO_SCADUTO", "Contratto scaduto"),
    ("RINNOVO_AUTOMATICO", "Rinnovo automatico creato"),
)


def upgrade() -> None:
    """Apply migration: initial registry schema."""
    bind = op.get_bind()

    record_type = postgresql.ENUM("quote", "contract", name="record_type", create_type=False)
    record_type.create(bind, checkfirst=True)

    record_state = postgresql.ENUM(*RECORD_STATES, name="record_state", create_type=False)
    record_state.create(bind, checkfirst=True)

    recipient_kind = postgresql.ENUM(
        "department", "role", "user", name="recipient_kind", create_type=False
    )
    recipient_kind.create(bind, checkfirst=True)

    job_status = postgresql.ENUM(
        "pending",
        "running",
        "completed",
        "failed",
        "cancelled",
        name="job_status",
        create_type=False,
    )
    job_status.create(bind, checkfirst=True)

    op.create_table(
        "contract_records",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("record_type", record_type, nullable=False),
        sa.Column("protocol_number", sa.String(50), nullable=True),
        sa.Column("state", record_state, nullable=False, server_default=sa.text("'draft'")),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("notice_window_days", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("auto_renewal_days", sa.Integer(), nullable=True),
        sa.Column("renewal_date", sa.Date(), nullable=True),
        sa.Column("parent_record_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("counterparty_name", sa.String(255), nullable=True),
        sa.Column("subject", sa.String(1000), nullable=False, server_default=sa.text("''")),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_by", sa.String(255), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id", name="pk_contract_records"),
        sa.UniqueConstraint("protocol_number", name="uq_contract_records_protocol_number"),
        sa.UniqueConstraint("parent_record_id", name="uq_contract_records_parent_record_id"),
        sa.ForeignKeyConstraint(
            ["parent_record_id"],
            ["contract_records.id"],
            name="fk_contract_records_parent_record_id_contract_records",
        ),
        sa.CheckConstraint(
            "notice_window_days >= 0",
            name="ck_contract_records_notice_window_non_negative",
        ),
    )
    op.create_index(
        "ix_contract_records_state_expiry",
        "contract_records",
        ["state", "expiry_date"],
    )

    op.create_table(
        "departments",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id", name="pk_departments"),
    )

    op.create_table(
        "directory_users",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("full_name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "roles",
            postgresql.ARRAY(sa.String(100)),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id", name="pk_directory_users"),
    )
    op.create_index(
        "ix_directory_users_roles",
        "directory_users",
        ["roles"],
        postgresql_using="gin",
    )

    op.create_table(
        "notification_rules",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("notification_code", sa.String(100), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column("module", sa.String(100), nullable=False, server_default=sa.text("''")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("default_subject", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_notification_rules"),
        sa.UniqueConstraint("notification_code", name="uq_notification_rules_notification_code"),
    )

    op.create_table(
        "recipient_rules",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", recipient_kind, nullable=False),
        sa.Column("department_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("role_name", sa.String(100), nullable=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id", name="pk_recipient_rules"),
        sa.ForeignKeyConstraint(
            ["rule_id"],
            ["notification_rules.id"],
            name="fk_recipient_rules_rule_id_notification_rules",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["department_id"],
            ["departments.id"],
            name="fk_recipient_rules_department_id_departments",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["directory_users.id"],
            name="fk_recipient_rules_user_id_directory_users",
        ),
    )
    op.create_index("ix_recipient_rules_rule_id", "recipient_rules", ["rule_id"])

    op.create_table(
        "jobs",
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("job_type", sa.String(100), nullable=False),
        sa.Column("status", job_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("queue", sa.String(100), nullable=False, server_default=sa.text("'default'")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(255), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column(
            "base_backoff_seconds",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("60"),
        ),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("payload_json", postgresql.JSONB(), nullable=True),
        sa.Column("result_json", postgresql.JSONB(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("job_id", name="pk_jobs"),
    )
    op.create_index("ix_jobs_queue_pending", "jobs", ["queue", "status", "run_at", "priority"])
    op.create_index("ix_jobs_job_type_status", "jobs", ["job_type", "status"])
    op.create_index("ix_jobs_completed_at", "jobs", ["completed_at"])

    notification_rules = sa.table(
        "notification_rules",
        sa.column("notification_code", sa.String),
        sa.column("description", sa.String),
        sa.column("module", sa.String),
    )
    op.bulk_insert(
        notification_rules,
        [
            {"notification_code": code, "description": description, "module": "RegistroContratti"}
            for code, description in NOTIFICATION_CODES
        ],
    )


def downgrade() -> None:
    """Revert migration: drop every registry table and enum type."""
    op.drop_table("jobs")
    op.drop_table("recipient_rules")
    op.drop_table("notification_rules")
    op.drop_table("directory_users")
    op.drop_table("departments")
    op.drop_table("contract_records")

    bind = op.get_bind()
    for name in ("job_status", "recipient_kind", "record_state", "record_type"):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
