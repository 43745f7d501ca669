"""SQLAlchemy ORM models.

- base: metadata, column annotations and enums
- records: contract/quote registry records
- notifications: notification rules and their recipient rules
- directory: departments and users for recipient resolution
- jobs: PostgreSQL-backed job queue
"""

from contract_registry.db.models.base import Base, metadata
from contract_registry.db.models.directory import Department, DirectoryUser
from contract_registry.db.models.jobs import Job
from contract_registry.db.models.notifications import NotificationRule, RecipientRule
from contract_registry.db.models.records import ContractRecord

__all__ = [
    "Base",
    "ContractRecord",
    "Department",
    "DirectoryUser",
    "Job",
    "NotificationRule",
    "RecipientRule",
    "metadata",
]
