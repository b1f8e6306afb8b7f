from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..core.enums import ConflictReason, MessageStatus
from ..core.exceptions import DuplicateMessageError, MessageNotFoundError
from ..core.models import ConditionalWriteResult, VersionedMessage, apply_patch, new_version
from ..logger import get_logger
from .base import DeadLetterStore, MessageStore

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.models import QueueMessage
    from ..dlq.domain import DeadLetterEntry

logger: BoundLogger = get_logger(__name__)


class InMemoryMessageStore(MessageStore):
    """Process-local message store.

    Every operation first yields to the event loop, like a network round trip
    would, and then runs its read-check-write section without suspending.
    Under a single event loop that makes each call atomic, which is exactly
    the guarantee a remote compare-and-swap gives. Several engines sharing one
    instance therefore race the same way separate processes race on a real
    backend.
    """

    def __init__(self) -> None:
        self._records: dict[str, VersionedMessage] = {}
        self._dead_letters: dict[str, InMemoryDeadLetterStore] = {}
        self._processed: dict[str, int] = {}

    async def create(self, message: QueueMessage) -> VersionedMessage:
        await asyncio.sleep(0)
        if message.id in self._records:
            raise DuplicateMessageError(message.id)
        versioned = VersionedMessage(message=message, version=new_version())
        self._records[message.id] = versioned
        return versioned

    async def get(self, message_id: str) -> VersionedMessage:
        await asyncio.sleep(0)
        try:
            return self._records[message_id]
        except KeyError:
            raise MessageNotFoundError(message_id) from None

    async def update_conditional(
        self,
        message_id: str,
        patch: Mapping[str, Any],
        *,
        if_match: str,
    ) -> ConditionalWriteResult:
        await asyncio.sleep(0)
        current = self._records.get(message_id)
        if current is None:
            return ConditionalWriteResult.conflict(ConflictReason.NOT_FOUND)
        if current.version != if_match:
            return ConditionalWriteResult.conflict(ConflictReason.VERSION_MISMATCH)
        if current.message.status.is_terminal:
            return ConditionalWriteResult.conflict(ConflictReason.TERMINAL_STATE)

        updated = VersionedMessage(message=apply_patch(current.message, patch), version=new_version())
        self._records[message_id] = updated
        return ConditionalWriteResult.ok(updated)

    async def list_candidates(self, now_ms: int, limit: int) -> list[QueueMessage]:
        await asyncio.sleep(0)
        candidates: list[QueueMessage] = []
        for versioned in self._records.values():
            message = versioned.message
            if message.status.is_terminal or message.visible_at > now_ms:
                continue
            candidates.append(message)
            if len(candidates) >= limit:
                break
        return candidates

    async def count_by_status(self) -> dict[MessageStatus, int]:
        await asyncio.sleep(0)
        counts = Counter(versioned.message.stats_bucket for versioned in self._records.values())
        return {status: counts.get(status, 0) for status in MessageStatus}

    def open_dead_letters(self, resource: str) -> InMemoryDeadLetterStore:
        store = self._dead_letters.get(resource)
        if store is None:
            store = InMemoryDeadLetterStore(resource)
            self._dead_letters[resource] = store
            logger.debug("Opened in-memory dead-letter store", resource=resource)
        return store

    async def mark_processed(self, message_id: str, *, now_ms: int, ttl_ms: int, worker_id: str) -> None:
        await asyncio.sleep(0)
        self._processed[message_id] = now_ms + ttl_ms

    async def is_marked_processed(self, message_id: str, now_ms: int) -> bool:
        await asyncio.sleep(0)
        expires_at = self._processed.get(message_id)
        if expires_at is None:
            return False
        if expires_at <= now_ms:
            del self._processed[message_id]
            return False
        return True

    async def clear_processed(self, message_id: str) -> None:
        await asyncio.sleep(0)
        self._processed.pop(message_id, None)


class InMemoryDeadLetterStore(DeadLetterStore):
    def __init__(self, resource: str) -> None:
        super().__init__(resource)
        self._entries: dict[str, DeadLetterEntry] = {}

    async def put(self, entry: DeadLetterEntry) -> None:
        await asyncio.sleep(0)
        self._entries[entry.id] = entry

    async def get(self, entry_id: str) -> DeadLetterEntry | None:
        await asyncio.sleep(0)
        return self._entries.get(entry_id)

    async def discard(self, entry_id: str) -> bool:
        await asyncio.sleep(0)
        return self._entries.pop(entry_id, None) is not None

    async def list_entries(self, limit: int = 100) -> list[DeadLetterEntry]:
        await asyncio.sleep(0)
        if limit <= 0:
            return []
        return sorted(self._entries.values(), key=lambda e: (e.dead_at, e.id))[:limit]

    async def count(self) -> int:
        await asyncio.sleep(0)
        return len(self._entries)
