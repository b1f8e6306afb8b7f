"""Unit tests for DeadLetterQueue service."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from leasequeue.core import MessageStatus, QueueMessage
from leasequeue.dlq import DeadLetterEntry, DeadLetterQueue, FailureCategory
from leasequeue.store import InMemoryDeadLetterStore

# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def dead_letter_store() -> InMemoryDeadLetterStore:
    return InMemoryDeadLetterStore("jobs_dead")


@pytest.fixture
def dlq(dead_letter_store: InMemoryDeadLetterStore) -> DeadLetterQueue:
    return DeadLetterQueue(dead_letter_store, "jobs")


@pytest.fixture
def dead_message() -> QueueMessage:
    return QueueMessage(
        id="msg-1",
        payload={"order": 42},
        status=MessageStatus.PROCESSING,
        attempts=3,
        max_attempts=3,
    )


@pytest.fixture
def mock_target() -> AsyncMock:
    """Enqueuer double returning a fresh message for each payload."""
    target = AsyncMock()
    counter = iter(range(1000))

    async def enqueue(payload: object) -> QueueMessage:
        return QueueMessage(id=f"new-{next(counter)}", payload=payload)

    target.enqueue.side_effect = enqueue
    return target


async def _bury(dlq: DeadLetterQueue, message_id: str, dead_at: int, payload: object = None) -> DeadLetterEntry:
    message = QueueMessage(id=message_id, payload=payload if payload is not None else message_id, attempts=3)
    return await dlq.dead_letter(message, "boom", dead_at=dead_at)


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestDeadLetter:
    """Tests for dead_letter method."""

    @pytest.mark.asyncio
    async def test_preserves_payload_and_failure_metadata(
        self, dlq: DeadLetterQueue, dead_message: QueueMessage
    ) -> None:
        entry = await dlq.dead_letter(dead_message, "upstream 500", error_type="HTTPError", dead_at=99)

        assert entry.id == entry.original_id == "msg-1"
        assert entry.payload == {"order": 42}
        assert entry.attempts == 3
        assert entry.last_error == "upstream 500"
        assert entry.error_type == "HTTPError"
        assert entry.category is FailureCategory.HANDLER_ERROR
        assert entry.queue_name == "jobs"
        assert entry.dead_at == 99
        assert await dlq.get("msg-1") == entry

    @pytest.mark.asyncio
    async def test_writing_twice_keeps_one_entry(self, dlq: DeadLetterQueue, dead_message: QueueMessage) -> None:
        await dlq.dead_letter(dead_message, "first", dead_at=1)
        await dlq.dead_letter(dead_message, "second", dead_at=2)

        assert await dlq.count() == 1
        entry = await dlq.get("msg-1")
        assert entry is not None and entry.last_error == "second"

    @pytest.mark.asyncio
    async def test_records_category(self, dlq: DeadLetterQueue, dead_message: QueueMessage) -> None:
        entry = await dlq.dead_letter(
            dead_message, "visibility timeout", category=FailureCategory.LEASE_EXPIRED, dead_at=1
        )
        assert entry.category is FailureCategory.LEASE_EXPIRED

    def test_resource_property(self, dlq: DeadLetterQueue) -> None:
        assert dlq.resource == "jobs_dead"


class TestInspection:
    """Tests for peek, count and discard."""

    @pytest.mark.asyncio
    async def test_peek_returns_oldest_without_removing(self, dlq: DeadLetterQueue) -> None:
        await _bury(dlq, "b", dead_at=20)
        await _bury(dlq, "a", dead_at=10)
        await _bury(dlq, "c", dead_at=30)

        peeked = await dlq.peek(max_count=2)

        assert [e.id for e in peeked] == ["a", "b"]
        assert await dlq.count() == 3

    @pytest.mark.asyncio
    async def test_discard(self, dlq: DeadLetterQueue) -> None:
        await _bury(dlq, "a", dead_at=1)

        assert await dlq.discard("a") is True
        assert await dlq.discard("a") is False
        assert await dlq.count() == 0


class TestRedrive:
    """Tests for redrive and redrive_messages."""

    @pytest.mark.asyncio
    async def test_redrive_enqueues_payload_and_removes_entry(
        self, dlq: DeadLetterQueue, mock_target: AsyncMock
    ) -> None:
        await _bury(dlq, "a", dead_at=1, payload={"job": "a"})

        message = await dlq.redrive("a", mock_target)

        assert message is not None
        mock_target.enqueue.assert_awaited_once_with({"job": "a"})
        assert await dlq.get("a") is None

    @pytest.mark.asyncio
    async def test_redrive_missing_entry(self, dlq: DeadLetterQueue, mock_target: AsyncMock) -> None:
        assert await dlq.redrive("ghost", mock_target) is None
        mock_target.enqueue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_entry_kept_when_enqueue_fails(self, dlq: DeadLetterQueue) -> None:
        await _bury(dlq, "a", dead_at=1)
        target = AsyncMock()
        target.enqueue.side_effect = RuntimeError("store down")

        with pytest.raises(RuntimeError):
            await dlq.redrive("a", target)

        assert await dlq.count() == 1

    @pytest.mark.asyncio
    async def test_redrive_messages_all(self, dlq: DeadLetterQueue, mock_target: AsyncMock) -> None:
        for i in range(5):
            await _bury(dlq, f"m{i}", dead_at=i)

        assert await dlq.redrive_messages(mock_target, batch_size=2) == 5
        assert await dlq.count() == 0
        assert [c.args[0] for c in mock_target.enqueue.await_args_list] == [f"m{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_redrive_messages_with_predicate_and_limit(
        self, dlq: DeadLetterQueue, mock_target: AsyncMock
    ) -> None:
        for i in range(6):
            await _bury(dlq, f"m{i}", dead_at=i)

        count = await dlq.redrive_messages(
            mock_target,
            predicate=lambda entry: int(entry.id[1:]) % 2 == 0,
            max_count=2,
            batch_size=1,
        )

        assert count == 2
        assert [e.id for e in await dlq.peek(max_count=10)] == ["m1", "m3", "m4", "m5"]
