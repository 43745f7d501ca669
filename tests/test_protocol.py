"""Tests for protocol number generation."""

from datetime import date

from contract_registry.db.models.base import RecordType
from contract_registry.services.protocol import (
    generate_protocol_number,
    next_progressive,
    protocol_prefix,
)


class TestProtocolPrefix:
    """Tests for protocol_prefix."""

    def test_contract_prefix(self):
        assert protocol_prefix(RecordType.CONTRACT, date(2025, 3, 1)) == "CONTR-2025-"

    def test_quote_prefix(self):
        assert protocol_prefix(RecordType.QUOTE, date(2024, 12, 31)) == "PREV-2024-"


class TestNextProgressive:
    """Tests for next_progressive."""

    def test_empty_starts_at_one(self):
        assert next_progressive([]) == 1

    def test_continues_from_highest(self):
        assert next_progressive(["CONTR-2025-0003", "CONTR-2025-0011", "CONTR-2025-0007"]) == 12

    def test_ignores_values_without_suffix(self):
        assert next_progressive([None, "", "CONTR-2025-bozza", "CONTR-2025-0002"]) == 3

    def test_handles_more_than_four_digits(self):
        assert next_progressive(["CONTR-2025-12345"]) == 12346


class TestGenerateProtocolNumber:
    """Tests for generate_protocol_number."""

    def test_first_number_of_the_year(self):
        number = generate_protocol_number(RecordType.CONTRACT, date(2025, 1, 8), [])
        assert number == "CONTR-2025-0001"

    def test_zero_padded(self):
        number = generate_protocol_number(
            RecordType.QUOTE, date(2025, 1, 8), ["PREV-2025-0041"]
        )
        assert number == "PREV-2025-0042"
