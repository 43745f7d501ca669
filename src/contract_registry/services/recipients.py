"""Notification recipient resolution.

A notification code maps to a NotificationRule whose recipient rules name
departments, roles or single users. Resolution turns those into mailbox
addresses through a Directory:

- department: the department mailbox, unless the department is deleted or
  has none
- role: every active, non-deleted user holding the role
- user: that user, if active and not deleted

Rules are read once per run into a NotificationConfigSnapshot so that a
whole pass sees one consistent configuration.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import select

from contract_registry.db.models.base import RecipientKind
from contract_registry.db.models.directory import Department, DirectoryUser
from contract_registry.db.models.notifications import NotificationRule

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@runtime_checkable
class Directory(Protocol):
    """Lookup of mailbox addresses for departments, roles and users."""

    async def department_mailboxes(self, department_id: UUID) -> list[str]: ...

    async def role_mailboxes(self, role_name: str) -> list[str]: ...

    async def user_mailboxes(self, user_id: UUID) -> list[str]: ...


class SqlDirectory:
    """Directory backed by the departments and directory_users tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def department_mailboxes(self, department_id: UUID) -> list[str]:
        query = select(Department.email).where(
            Department.id == department_id,
            Department.is_deleted.is_(False),
            Department.email.is_not(None),
        )
        result = await self.session.execute(query)
        return [email for email in result.scalars().all() if email]

    async def role_mailboxes(self, role_name: str) -> list[str]:
        query = (
            select(DirectoryUser.email)
            .where(
                DirectoryUser.roles.any(role_name),
                DirectoryUser.is_active.is_(True),
                DirectoryUser.is_deleted.is_(False),
                DirectoryUser.email.is_not(None),
            )
            .order_by(DirectoryUser.email)
        )
        result = await self.session.execute(query)
        return [email for email in result.scalars().all() if email]

    async def user_mailboxes(self, user_id: UUID) -> list[str]:
        query = select(DirectoryUser.email).where(
            DirectoryUser.id == user_id,
            DirectoryUser.is_active.is_(True),
            DirectoryUser.is_deleted.is_(False),
            DirectoryUser.email.is_not(None),
        )
        result = await self.session.execute(query)
        return [email for email in result.scalars().all() if email]


@dataclass(frozen=True, slots=True)
class RecipientTarget:
    """One recipient entry of a rule, detached from the ORM."""

    kind: RecipientKind
    department_id: UUID | None = None
    role_name: str | None = None
    user_id: UUID | None = None

    def describe(self) -> str:
        """Short label for log messages."""
        if self.kind == RecipientKind.DEPARTMENT:
            return f"department {self.department_id}"
        if self.kind == RecipientKind.ROLE:
            return f"role {self.role_name}"
        return f"user {self.user_id}"


@dataclass(frozen=True, slots=True)
class NotificationPolicy:
    """Read-only copy of a NotificationRule and its live recipient entries."""

    code: str
    is_active: bool
    default_subject: str | None
    recipients: tuple[RecipientTarget, ...] = ()


class NotificationConfigSnapshot:
    """Immutable view of every notification rule, keyed by code."""

    def __init__(self, policies: Iterable[NotificationPolicy] = ()) -> None:
        self._policies: Mapping[str, NotificationPolicy] = MappingProxyType(
            {policy.code: policy for policy in policies}
        )

    def get(self, code: str) -> NotificationPolicy | None:
        """Return the policy for code, if configured."""
        return self._policies.get(code)

    def __len__(self) -> int:
        return len(self._policies)

    @classmethod
    async def load(cls, session: AsyncSession) -> NotificationConfigSnapshot:
        """Read all rules with their non-deleted recipient entries."""
        result = await session.execute(select(NotificationRule))
        policies = [
            NotificationPolicy(
                code=rule.notification_code,
                is_active=rule.is_active,
                default_subject=rule.default_subject,
                recipients=tuple(
                    RecipientTarget(
                        kind=entry.kind,
                        department_id=entry.department_id,
                        role_name=entry.role_name,
                        user_id=entry.user_id,
                    )
                    for entry in sorted(rule.recipients, key=lambda r: r.created_at)
                    if not entry.is_deleted
                ),
            )
            for rule in result.scalars().all()
        ]
        logger.debug("Loaded %d notification rules", len(policies))
        return cls(policies)


class RecipientResolver:
    """Resolves notification codes into deduplicated mailbox sets.

    Example:
        resolver = RecipientResolver(snapshot, SqlDirectory(session))
        addresses = await resolver.resolve("CONTRATTO_SCADUTO")
    """

    def __init__(self, snapshot: NotificationConfigSnapshot, directory: Directory) -> None:
        self._snapshot = snapshot
        self._directory = directory

    async def resolve(self, code: str) -> frozenset[str]:
        """Return the mailboxes configured for code.

        Unknown or inactive codes resolve to an empty set. Addresses are
        compared case-insensitively; the first spelling seen is kept.
        """
        policy = self._snapshot.get(code)
        if policy is None:
            logger.debug("No notification rule for code %s", code)
            return frozenset()
        if not policy.is_active:
            logger.debug("Notification rule %s is inactive", code)
            return frozenset()

        seen: dict[str, str] = {}
        for target in policy.recipients:
            try:
                mailboxes = await self._lookup(target)
            except Exception as e:
                logger.warning(
                    "Could not resolve %s for %s: %s",
                    target.describe(),
                    code,
                    e,
                )
                continue

            for mailbox in mailboxes:
                address = mailbox.strip()
                if address:
                    seen.setdefault(address.lower(), address)

        return frozenset(seen.values())

    async def _lookup(self, target: RecipientTarget) -> list[str]:
        if target.kind == RecipientKind.DEPARTMENT and target.department_id:
            return await self._directory.department_mailboxes(target.department_id)
        if target.kind == RecipientKind.ROLE and target.role_name:
            return await self._directory.role_mailboxes(target.role_name)
        if target.kind == RecipientKind.USER and target.user_id:
            return await self._directory.user_mailboxes(target.user_id)
        return []
