"""Protocol number generation for registry records.

Format: {PREFIX}-{YYYY}-{NNNN}, e.g. CONTR-2025-0042. PREV prefixes
quotes, CONTR prefixes contracts. The progressive part continues from the
highest suffix already issued for the same prefix and year.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from contract_registry.db.models.base import RecordType

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import date

PROTOCOL_PREFIXES: dict[RecordType, str] = {
    RecordType.QUOTE: "PREV",
    RecordType.CONTRACT: "CONTR",
}

_SUFFIX_PATTERN = re.compile(r"-(\d+)$")


def protocol_prefix(record_type: RecordType, today: date) -> str:
    """Return the prefix shared by every number of that type and year."""
    return f"{PROTOCOL_PREFIXES[record_type]}-{today.year}-"


def next_progressive(existing_numbers: Iterable[str | None]) -> int:
    """Return one more than the highest numeric suffix in existing_numbers.

    Values without a numeric suffix are ignored.
    """
    highest = 0
    for number in existing_numbers:
        if not number:
            continue
        match = _SUFFIX_PATTERN.search(number)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


def generate_protocol_number(
    record_type: RecordType,
    today: date,
    existing_numbers: Iterable[str | None],
) -> str:
    """Build the next protocol number.

    Args:
        record_type: Quote or contract.
        today: Date whose year goes into the number.
        existing_numbers: Numbers already issued with the same prefix.

    Returns:
        The new protocol number.
    """
    progressive = next_progressive(existing_numbers)
    return f"{protocol_prefix(record_type, today)}{progressive:04d}"
