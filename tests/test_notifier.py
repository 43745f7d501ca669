"""Tests for digest notifications.

Tests cover:
- Grouping results by transition category
- Subject lines (single entry, several entries, configured base)
- Inactive or unconfigured rules
- Isolation between category groups on failure
- HTML rendering
"""

from datetime import date, datetime

import pytest

from contract_registry.db.models.base import RecipientKind, RecordState
from contract_registry.services.notifier import (
    CATEGORY_CODES,
    DIGEST_STYLES,
    Notifier,
    TransitionCategory,
    build_subject,
    category_for,
    format_date,
    group_by_category,
)
from contract_registry.services.recipients import (
    NotificationConfigSnapshot,
    NotificationPolicy,
    RecipientResolver,
    RecipientTarget,
)
from tests.factories import create_result

BASE_URL = "https://registro.example.com/"


def make_snapshot(active=None, subjects=None):
    """One policy per category, each addressed to the role named after its code."""
    active = active or {}
    subjects = subjects or {}
    return NotificationConfigSnapshot(
        NotificationPolicy(
            code=code,
            is_active=active.get(code, True),
            default_subject=subjects.get(code),
            recipients=(RecipientTarget(kind=RecipientKind.ROLE, role_name=code),),
        )
        for code in CATEGORY_CODES.values()
    )


@pytest.fixture
def configured_directory(directory):
    for code in CATEGORY_CODES.values():
        directory.roles[code] = [f"{code.lower()}@example.com"]
    return directory


def make_notifier(snapshot, directory, mail_sender):
    return Notifier(
        RecipientResolver(snapshot, directory),
        snapshot,
        mail_sender,
        base_url=BASE_URL,
    )


class TestGrouping:
    """Tests for category_for and group_by_category."""

    def test_category_for_digest_states(self):
        assert category_for(create_result(RecordState.EXPIRING_SOON)) == (
            TransitionCategory.EXPIRING_SOON
        )
        assert category_for(create_result(RecordState.EXPIRED)) == TransitionCategory.EXPIRED
        assert category_for(create_result(RecordState.RENEWED)) == TransitionCategory.RENEWED

    def test_other_states_have_no_category(self):
        assert category_for(create_result(RecordState.CANCELLED)) is None

    def test_groups_in_category_order(self):
        results = [
            create_result(RecordState.RENEWED),
            create_result(RecordState.EXPIRED),
            create_result(RecordState.EXPIRING_SOON),
            create_result(RecordState.EXPIRED),
        ]

        groups = group_by_category(results)

        assert list(groups) == [
            TransitionCategory.EXPIRING_SOON,
            TransitionCategory.EXPIRED,
            TransitionCategory.RENEWED,
        ]
        assert len(groups[TransitionCategory.EXPIRED]) == 2

    def test_empty_groups_are_dropped(self):
        groups = group_by_category([create_result(RecordState.EXPIRED)])
        assert list(groups) == [TransitionCategory.EXPIRED]


class TestSubjects:
    """Tests for build_subject."""

    def test_single_entry_uses_protocol_number(self):
        entries = [create_result(RecordState.EXPIRED, protocol_number="CONTR-2024-0012")]
        assert build_subject("Scaduto", entries, "contratti") == "Scaduto: CONTR-2024-0012"

    def test_single_entry_without_protocol_uses_subject(self):
        entries = [create_result(RecordState.EXPIRED, protocol_number=None, subject="Pulizie")]
        assert build_subject("Scaduto", entries, "contratti") == "Scaduto: Pulizie"

    def test_single_entry_without_details_uses_base(self):
        entries = [create_result(RecordState.EXPIRED, protocol_number=None, subject="")]
        assert build_subject("Scaduto", entries, "contratti") == "Scaduto"

    def test_several_entries_are_counted(self):
        entries = [create_result(RecordState.RENEWED) for _ in range(3)]
        subject = build_subject("Rinnovo", entries, "contratti rinnovati")
        assert subject == "Rinnovo: 3 contratti rinnovati"

    def test_fallback_subject(self, configured_directory, mail_sender):
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)
        entries = [create_result(RecordState.EXPIRING_SOON) for _ in range(2)]

        subject = notifier.subject_for(TransitionCategory.EXPIRING_SOON, entries)

        assert subject == "⚠️ Contratto in scadenza: 2 contratti"

    def test_configured_subject(self, configured_directory, mail_sender):
        snapshot = make_snapshot(subjects={"CONTRATTO_SCADUTO": "[Registro] Scaduti"})
        notifier = make_notifier(snapshot, configured_directory, mail_sender)
        entries = [create_result(RecordState.EXPIRED, protocol_number="CONTR-2024-0001")]

        subject = notifier.subject_for(TransitionCategory.EXPIRED, entries)

        assert subject == "[Registro] Scaduti: CONTR-2024-0001"


class TestNotify:
    """Tests for Notifier.notify."""

    @pytest.mark.asyncio
    async def test_one_digest_per_category(self, configured_directory, mail_sender):
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)
        results = [
            create_result(RecordState.EXPIRING_SOON),
            create_result(RecordState.EXPIRING_SOON),
            create_result(RecordState.EXPIRED),
        ]

        outcomes = await notifier.notify(results)

        assert [(o.category, o.entries, o.sent) for o in outcomes] == [
            (TransitionCategory.EXPIRING_SOON, 2, True),
            (TransitionCategory.EXPIRED, 1, True),
        ]
        assert [addresses for addresses, _, _ in mail_sender.sent] == [
            ["contratto_in_scadenza@example.com"],
            ["contratto_scaduto@example.com"],
        ]

    @pytest.mark.asyncio
    async def test_no_results_sends_nothing(self, configured_directory, mail_sender):
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)

        assert await notifier.notify([]) == []
        assert mail_sender.calls == 0

    @pytest.mark.asyncio
    async def test_inactive_rule_never_sends(self, configured_directory, mail_sender):
        snapshot = make_snapshot(active={"CONTRATTO_SCADUTO": False})
        notifier = make_notifier(snapshot, configured_directory, mail_sender)

        [outcome] = await notifier.notify([create_result(RecordState.EXPIRED)])

        assert outcome.sent is False
        assert outcome.skipped
        assert mail_sender.calls == 0

    @pytest.mark.asyncio
    async def test_unconfigured_code_is_skipped(self, directory, mail_sender):
        snapshot = NotificationConfigSnapshot()
        notifier = make_notifier(snapshot, directory, mail_sender)

        [outcome] = await notifier.notify([create_result(RecordState.RENEWED)])

        assert outcome.skipped
        assert outcome.code == "RINNOVO_AUTOMATICO"
        assert mail_sender.calls == 0

    @pytest.mark.asyncio
    async def test_failed_group_does_not_block_renewals(self, configured_directory, mail_sender):
        mail_sender.fail_subjects.add("scaduto")
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)

        outcomes = await notifier.notify(
            [create_result(RecordState.EXPIRED), create_result(RecordState.RENEWED)]
        )

        assert [(o.category, o.sent) for o in outcomes] == [
            (TransitionCategory.EXPIRED, False),
            (TransitionCategory.RENEWED, True),
        ]
        assert outcomes[0].error == "rejected"
        assert len(mail_sender.sent) == 1

    @pytest.mark.asyncio
    async def test_raised_error_is_captured(self, configured_directory, mail_sender):
        mail_sender.raise_subjects.add("scadenza")
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)

        outcomes = await notifier.notify(
            [create_result(RecordState.EXPIRING_SOON), create_result(RecordState.EXPIRED)]
        )

        assert outcomes[0].sent is False
        assert outcomes[0].error == "smtp down"
        assert outcomes[1].sent is True

    @pytest.mark.asyncio
    async def test_recipients_are_sorted(self, directory, mail_sender):
        directory.roles["CONTRATTO_SCADUTO"] = ["zeta@example.com", "Alfa@example.com"]
        notifier = make_notifier(make_snapshot(), directory, mail_sender)

        await notifier.notify([create_result(RecordState.EXPIRED)])

        [(addresses, _, _)] = mail_sender.sent
        assert addresses == ["Alfa@example.com", "zeta@example.com"]


class TestRenderDigest:
    """Tests for the HTML digest body."""

    def test_format_date(self):
        assert format_date(date(2025, 1, 10)) == "10/01/2025"
        assert format_date(None) == "N/D"

    def test_renders_rows(self, configured_directory, mail_sender):
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)
        entries = [
            create_result(
                RecordState.EXPIRED,
                protocol_number="CONTR-2024-0012",
                expiry_date=date(2025, 1, 7),
            ),
            create_result(RecordState.EXPIRED, protocol_number=None, expiry_date=None),
        ]

        html = notifier.render_digest(
            TransitionCategory.EXPIRED,
            entries,
            processed_at=datetime(2025, 1, 8, 6, 0),
        )

        style = DIGEST_STYLES[TransitionCategory.EXPIRED]
        assert style.title in html
        assert style.background in html
        assert "CONTR-2024-0012" in html
        assert "07/01/2025" in html
        assert "N/D" in html
        assert "08/01/2025 06:00" in html
        assert f"https://registro.example.com/RegistroContratti/Details/{entries[0].record_id}" in html

    def test_renders_successor_link(self, configured_directory, mail_sender):
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)
        entry = create_result(RecordState.RENEWED, successor_protocol_number="CONTR-2025-0001")

        html = notifier.render_digest(TransitionCategory.RENEWED, [entry])

        assert "CONTR-2025-0001" in html
        assert str(entry.successor_record_id) in html

    def test_escapes_record_fields(self, configured_directory, mail_sender):
        notifier = make_notifier(make_snapshot(), configured_directory, mail_sender)
        entry = create_result(RecordState.EXPIRED, subject="<script>alert(1)</script>")

        html = notifier.render_digest(TransitionCategory.EXPIRED, [entry])

        assert "<script>" not in html
        assert "&lt;script&gt;" in html
