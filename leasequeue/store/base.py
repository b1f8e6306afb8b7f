from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..core.enums import MessageStatus
    from ..core.models import ConditionalWriteResult, QueueMessage, VersionedMessage
    from ..dlq.domain import DeadLetterEntry


class MessageStore(ABC):
    """Versioned document store holding one queue's messages.

    The only coordination primitive the queue relies on is
    ``update_conditional``: it must apply a patch atomically if and only if
    the record's current version equals ``if_match``, and every successful
    write must produce a fresh version. Two writes carrying the same expected
    version can never both succeed.

    Infrastructure failures raise ``StoreUnavailableError``.
    """

    @abstractmethod
    async def create(self, message: QueueMessage) -> VersionedMessage:
        """Insert a new message.

        Raises
        ------
        DuplicateMessageError
            If a message with the same id already exists.
        """

    @abstractmethod
    async def get(self, message_id: str) -> VersionedMessage:
        """Read a message with its current version.

        Raises
        ------
        MessageNotFoundError
            If no such message exists.
        """

    @abstractmethod
    async def update_conditional(
        self,
        message_id: str,
        patch: Mapping[str, Any],
        *,
        if_match: str,
    ) -> ConditionalWriteResult:
        """Apply ``patch`` only if the stored version equals ``if_match``.

        Never raises for a version mismatch, a terminal target or a missing
        record: those come back as a failed result and leave the record as it
        was. Raises ``InvalidPatchError`` for patches touching immutable fields.
        """

    @abstractmethod
    async def list_candidates(self, now_ms: int, limit: int) -> list[QueueMessage]:
        """Non-terminal messages whose ``visible_at`` has passed, at most ``limit``.

        This is a cheap index read; results may be stale and every candidate
        must be re-read before it is claimed.
        """

    @abstractmethod
    async def count_by_status(self) -> dict[MessageStatus, int]:
        """Message counts per stats bucket (see ``QueueMessage.stats_bucket``)."""

    @abstractmethod
    def open_dead_letters(self, resource: str) -> DeadLetterStore:
        """Resolve the dead-letter collection ``resource`` on the same backend."""

    @abstractmethod
    async def mark_processed(self, message_id: str, *, now_ms: int, ttl_ms: int, worker_id: str) -> None:
        """Record that ``worker_id`` finished the message; the marker lapses after ``ttl_ms``."""

    @abstractmethod
    async def is_marked_processed(self, message_id: str, now_ms: int) -> bool: ...

    @abstractmethod
    async def clear_processed(self, message_id: str) -> None:
        """Remove the marker. Missing markers are ignored."""

    async def aclose(self) -> None:
        """Release backend resources. Default is a no-op."""


class DeadLetterStore(ABC):
    """Terminal storage for messages that exhausted their retry budget."""

    def __init__(self, resource: str) -> None:
        self.resource = resource

    @abstractmethod
    async def put(self, entry: DeadLetterEntry) -> None:
        """Insert or overwrite the entry keyed by ``entry.id``."""

    @abstractmethod
    async def get(self, entry_id: str) -> DeadLetterEntry | None: ...

    @abstractmethod
    async def discard(self, entry_id: str) -> bool:
        """Delete an entry. Returns False when it did not exist."""

    @abstractmethod
    async def list_entries(self, limit: int = 100) -> list[DeadLetterEntry]:
        """Entries ordered by ``dead_at``, oldest first."""

    @abstractmethod
    async def count(self) -> int: ...
