from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Protocol

from ..logger import get_logger
from .domain import DeadLetterEntry, FailureCategory

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.models import QueueMessage
    from ..store.base import DeadLetterStore

logger: BoundLogger = get_logger(__name__)


class Enqueuer(Protocol):
    async def enqueue(self, payload: object) -> QueueMessage: ...


class DeadLetterQueue:
    """Dead-letter collection of one queue.

    Usage Pattern
    -------------
    ```python
    dlq = engine.dead_letters

    entries = await dlq.peek(max_count=10)
    for entry in entries:
        print(entry.original_id, entry.last_error)

    # Redrive after fixing the handler
    count = await dlq.redrive_messages(engine)
    ```
    """

    def __init__(self, store: DeadLetterStore, queue_name: str) -> None:
        self._store = store
        self._queue_name = queue_name

    @property
    def resource(self) -> str:
        """Name of the dead-letter collection."""
        return self._store.resource

    async def dead_letter(
        self,
        message: QueueMessage,
        error: str | None,
        *,
        error_type: str = "",
        category: FailureCategory = FailureCategory.HANDLER_ERROR,
        dead_at: int,
        metadata: Mapping[str, str] | None = None,
    ) -> DeadLetterEntry:
        """Write the companion record for a message that is about to be marked dead.

        The entry id is the message id, so writing twice for the same message
        leaves a single entry.

        Parameters
        ----------
        message : QueueMessage
            The message as claimed; its payload is preserved exactly.
        error : str | None
            Last failure reason.
        error_type : str
            Exception class name when the failure came from the handler.
        category : FailureCategory
            Why the message is being dead-lettered.
        dead_at : int
            Epoch milliseconds of the decision.
        metadata : Mapping[str, str] | None
            Diagnostic context stored with the entry, such as which worker
            made the decision.

        Returns
        -------
        DeadLetterEntry
            The stored entry.
        """
        entry = DeadLetterEntry(
            id=message.id,
            original_id=message.id,
            payload=message.payload,
            attempts=message.attempts,
            last_error=error,
            error_type=error_type,
            category=category,
            queue_name=self._queue_name,
            dead_at=dead_at,
            metadata=dict(metadata or {}),
        )
        await self._store.put(entry)

        logger.warning(
            "Routed to dead-letter store",
            message_id=message.id,
            attempts=message.attempts,
            category=category.value,
            error_type=error_type or None,
            resource=self._store.resource,
        )
        return entry

    async def discard(self, entry_id: str) -> bool:
        return await self._store.discard(entry_id)

    async def get(self, entry_id: str) -> DeadLetterEntry | None:
        return await self._store.get(entry_id)

    async def peek(self, *, max_count: int = 10) -> list[DeadLetterEntry]:
        """Inspect the oldest entries without removing them."""
        return await self._store.list_entries(max_count)

    async def count(self) -> int:
        """Get total number of entries in the dead-letter store."""
        return await self._store.count()

    async def redrive(self, entry_id: str, target: Enqueuer) -> QueueMessage | None:
        """Re-enqueue one entry's payload as a fresh message and remove the entry.

        Returns
        -------
        QueueMessage | None
            The new message, or None if the entry does not exist.
        """
        entry = await self._store.get(entry_id)
        if entry is None:
            logger.warning("Entry not found in dead-letter store", entry_id=entry_id)
            return None

        message = await target.enqueue(entry.payload)
        await self._store.discard(entry_id)

        logger.info(
            "Redrove dead-letter entry",
            entry_id=entry_id,
            new_message_id=message.id,
        )
        return message

    async def redrive_messages(
        self,
        target: Enqueuer,
        *,
        predicate: Callable[[DeadLetterEntry], bool] | None = None,
        max_count: int | None = None,
        batch_size: int = 100,
    ) -> int:
        """Redrive entries, oldest first.

        Parameters
        ----------
        target : Enqueuer
            Where payloads are re-enqueued, normally the owning ``QueueEngine``.
        predicate : Callable[[DeadLetterEntry], bool] | None
            Optional filter. Only entries returning True are redriven.
        max_count : int | None
            Maximum entries to redrive. None means all.
        batch_size : int
            Entries fetched per listing.

        Returns
        -------
        int
            Number of entries redriven.
        """
        redriven_count = 0
        skipped: set[str] = set()

        while max_count is None or redriven_count < max_count:
            entries = await self._store.list_entries(batch_size + len(skipped))
            fresh = [entry for entry in entries if entry.id not in skipped]
            if not fresh:
                break

            for entry in fresh:
                if predicate is not None and not predicate(entry):
                    skipped.add(entry.id)
                    continue

                await target.enqueue(entry.payload)
                await self._store.discard(entry.id)
                redriven_count += 1

                if max_count is not None and redriven_count >= max_count:
                    break

        logger.info(
            "Completed dead-letter redrive",
            queue=self._queue_name,
            redriven_count=redriven_count,
        )
        return redriven_count
