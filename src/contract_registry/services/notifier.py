"""Digest notifications for registry state changes.

After a pass, the committed StateChangeResults are grouped by
TransitionCategory. Each non-empty group becomes one HTML digest sent to the
recipients configured for the category's notification code. Sending is
best-effort: a failure for one group is logged and the next group is still
attempted, and nothing is raised to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from jinja2 import Environment, PackageLoader, select_autoescape

from contract_registry.db.models.base import RecordState

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date, tzinfo

    from contract_registry.services.email import MailSender
    from contract_registry.services.lifecycle import StateChangeResult
    from contract_registry.services.recipients import NotificationConfigSnapshot, RecipientResolver

logger = logging.getLogger(__name__)


class TransitionCategory(str, Enum):
    """Kinds of state change that produce a digest."""

    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    RENEWED = "renewed"


CATEGORY_CODES: dict[TransitionCategory, str] = {
    TransitionCategory.EXPIRING_SOON: "CONTRATTO_IN_SCADENZA",
    TransitionCategory.EXPIRED: "CONTRATTO_SCADUTO",
    TransitionCategory.RENEWED: "RINNOVO_AUTOMATICO",
}

_CATEGORY_BY_STATE: dict[RecordState, TransitionCategory] = {
    RecordState.EXPIRING_SOON: TransitionCategory.EXPIRING_SOON,
    RecordState.EXPIRED: TransitionCategory.EXPIRED,
    RecordState.RENEWED: TransitionCategory.RENEWED,
}


@dataclass(frozen=True, slots=True)
class DigestStyle:
    """Wording and colours of one digest category."""

    fallback_subject: str
    title: str
    singular_label: str
    plural_label: str
    background: str
    border: str
    icon: str


DIGEST_STYLES: dict[TransitionCategory, DigestStyle] = {
    TransitionCategory.EXPIRING_SOON: DigestStyle(
        fallback_subject="⚠️ Contratto in scadenza",
        title="Contratti in Scadenza",
        singular_label="contratto",
        plural_label="contratti",
        background="#fff3cd",
        border="#ffc107",
        icon="⚠️",
    ),
    TransitionCategory.EXPIRED: DigestStyle(
        fallback_subject="❌ Contratto scaduto",
        title="Contratti Scaduti",
        singular_label="contratto",
        plural_label="contratti",
        background="#f8d7da",
        border="#dc3545",
        icon="❌",
    ),
    TransitionCategory.RENEWED: DigestStyle(
        fallback_subject="🔄 Rinnovo automatico",
        title="Rinnovi Automatici",
        singular_label="contratto rinnovato",
        plural_label="contratti rinnovati",
        background="#d4edda",
        border="#28a745",
        icon="✅",
    ),
}

MISSING_VALUE = "N/D"


@dataclass(frozen=True, slots=True)
class DigestOutcome:
    """Result of handling one category group.

    Attributes:
        category: Category of the group.
        code: Notification code the group was sent under.
        entries: Number of results in the group.
        recipients: Number of resolved recipients.
        sent: Whether a digest was accepted by the mail sender.
        error: Error message when sending failed.
    """

    category: TransitionCategory
    code: str
    entries: int
    recipients: int
    sent: bool
    error: str | None = None

    @property
    def skipped(self) -> bool:
        """True when no one was configured to receive the digest."""
        return self.recipients == 0


def category_for(result: StateChangeResult) -> TransitionCategory | None:
    """Category of a result, or None when it does not produce a digest."""
    return _CATEGORY_BY_STATE.get(result.new_state)


def group_by_category(
    results: Iterable[StateChangeResult],
) -> dict[TransitionCategory, list[StateChangeResult]]:
    """Split results into category groups, in TransitionCategory order."""
    groups: dict[TransitionCategory, list[StateChangeResult]] = {
        category: [] for category in TransitionCategory
    }
    for result in results:
        category = category_for(result)
        if category is not None:
            groups[category].append(result)
    return {category: entries for category, entries in groups.items() if entries}


def build_subject(base: str, entries: list[StateChangeResult], plural_label: str) -> str:
    """Subject line of a digest.

    A single entry is named by protocol number, or subject when the record
    has no number. Several entries are counted.
    """
    if len(entries) == 1:
        entry = entries[0]
        detail = entry.protocol_number or entry.subject or ""
        return f"{base}: {detail}" if detail else base
    return f"{base}: {len(entries)} {plural_label}"


def format_date(value: date | None) -> str:
    """dd/mm/YYYY, or N/D for a missing date."""
    return value.strftime("%d/%m/%Y") if value else MISSING_VALUE


class Notifier:
    """Sends one digest per transition category.

    Example:
        notifier = Notifier(resolver, snapshot, SmtpMailSender(settings.smtp),
                            base_url=settings.base_url)
        outcomes = await notifier.notify(results)
    """

    def __init__(
        self,
        resolver: RecipientResolver,
        snapshot: NotificationConfigSnapshot,
        mail_sender: MailSender,
        *,
        base_url: str,
        timezone: tzinfo = UTC,
    ) -> None:
        self._resolver = resolver
        self._snapshot = snapshot
        self._mail_sender = mail_sender
        self._base_url = base_url.rstrip("/")
        self._timezone = timezone

        self._env = Environment(
            loader=PackageLoader("contract_registry", "templates/email"),
            autoescape=select_autoescape(["html", "xml"]),
        )
        self._env.filters["ddmmyyyy"] = format_date

    async def notify(self, results: Iterable[StateChangeResult]) -> list[DigestOutcome]:
        """Send the digests for results.

        Never raises: every failure is logged and reported in the outcome.
        """
        outcomes: list[DigestOutcome] = []

        for category, entries in group_by_category(results).items():
            try:
                outcome = await self._send_digest(category, entries)
            except Exception as e:
                logger.exception("Error sending %s digest", category.value)
                outcome = DigestOutcome(
                    category=category,
                    code=CATEGORY_CODES[category],
                    entries=len(entries),
                    recipients=0,
                    sent=False,
                    error=str(e),
                )
            outcomes.append(outcome)

        return outcomes

    def subject_for(self, category: TransitionCategory, entries: list[StateChangeResult]) -> str:
        """Subject of the digest for entries, using the configured base if any."""
        style = DIGEST_STYLES[category]
        policy = self._snapshot.get(CATEGORY_CODES[category])
        base = (policy.default_subject if policy else None) or style.fallback_subject
        return build_subject(base, entries, style.plural_label)

    def render_digest(
        self,
        category: TransitionCategory,
        entries: list[StateChangeResult],
        processed_at: datetime | None = None,
    ) -> str:
        """Render the HTML body of a digest."""
        template = self._env.get_template("digest.html")
        processed_at = processed_at or datetime.now(self._timezone)

        return template.render(
            style=DIGEST_STYLES[category],
            entries=entries,
            missing=MISSING_VALUE,
            record_url=self._record_url,
            processed_at=processed_at.strftime("%d/%m/%Y %H:%M"),
        )

    async def _send_digest(
        self,
        category: TransitionCategory,
        entries: list[StateChangeResult],
    ) -> DigestOutcome:
        code = CATEGORY_CODES[category]
        recipients = await self._resolver.resolve(code)

        if not recipients:
            logger.debug("No recipients configured for %s", code)
            return DigestOutcome(
                category=category,
                code=code,
                entries=len(entries),
                recipients=0,
                sent=False,
            )

        result = await self._mail_sender.send(
            sorted(recipients, key=str.lower),
            self.subject_for(category, entries),
            self.render_digest(category, entries),
        )

        if result.success:
            logger.info("%s digest sent to %d recipients", code, len(recipients))
        else:
            logger.warning("Failed to send %s digest: %s", code, result.error)

        return DigestOutcome(
            category=category,
            code=code,
            entries=len(entries),
            recipients=len(recipients),
            sent=result.success,
            error=result.error,
        )

    def _record_url(self, record_id: object) -> str:
        return f"{self._base_url}/RegistroContratti/Details/{record_id}"
