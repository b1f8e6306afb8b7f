"""Unit tests for DLQ domain models."""

from __future__ import annotations

from typing import Any

import pytest
from pydantic import ValidationError

from leasequeue.dlq import DeadLetterEntry, FailureCategory


@pytest.fixture
def valid_entry_data() -> dict[str, Any]:
    """Provide valid entry data for tests."""
    return {
        "id": "msg-1",
        "original_id": "msg-1",
        "payload": {"order": 42},
        "attempts": 3,
        "dead_at": 1_700_000_000_000,
    }


class TestFailureCategory:
    def test_string_values(self) -> None:
        assert FailureCategory.HANDLER_ERROR == "handler_error"
        assert FailureCategory.LEASE_EXPIRED == "lease_expired"

    def test_invalid_category_string_raises(self) -> None:
        with pytest.raises(ValueError):
            FailureCategory("poison")


class TestDeadLetterEntry:
    def test_defaults(self, valid_entry_data: dict[str, Any]) -> None:
        entry = DeadLetterEntry(**valid_entry_data)

        assert entry.category is FailureCategory.HANDLER_ERROR
        assert entry.last_error is None
        assert entry.error_type == ""
        assert entry.metadata == {}

    def test_json_round_trip_preserves_payload(self, valid_entry_data: dict[str, Any]) -> None:
        entry = DeadLetterEntry(**valid_entry_data, category=FailureCategory.LEASE_EXPIRED)

        restored = DeadLetterEntry.model_validate_json(entry.model_dump_json())

        assert restored == entry
        assert restored.payload == {"order": 42}

    @pytest.mark.parametrize("field", ["id", "original_id", "attempts", "dead_at"])
    def test_required_fields(self, valid_entry_data: dict[str, Any], field: str) -> None:
        del valid_entry_data[field]

        with pytest.raises(ValidationError):
            DeadLetterEntry(**valid_entry_data)

    def test_rejects_unknown_fields(self, valid_entry_data: dict[str, Any]) -> None:
        with pytest.raises(ValidationError):
            DeadLetterEntry(**valid_entry_data, requeue_count=1)

    def test_is_frozen(self, valid_entry_data: dict[str, Any]) -> None:
        entry = DeadLetterEntry(**valid_entry_data)

        with pytest.raises(ValidationError):
            entry.attempts = 1  # type: ignore[misc]
