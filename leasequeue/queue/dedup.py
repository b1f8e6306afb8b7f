from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.exceptions import StoreUnavailableError
from ..logger import get_logger

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.types import Clock
    from ..store.base import MessageStore

logger: BoundLogger = get_logger(__name__)


class ProcessedMarkers:
    """Recently-processed markers that keep a finished message from running twice.

    A marker is written when a handler succeeds, before the completion write,
    so a reclaim after a lost completion skips the message until the marker
    expires. Each engine caches markers it has seen; the store copy makes them
    visible to other workers. A ``ttl_ms`` of 0 turns the whole thing off.

    Writing and clearing are best effort: a store outage there is logged and
    the marker is simply missing, which only costs a possible duplicate run.
    """

    def __init__(self, store: MessageStore, ttl_ms: int, worker_id: str, clock: Clock) -> None:
        self._store = store
        self.ttl_ms = ttl_ms
        self._worker_id = worker_id
        self._clock = clock
        self._local: dict[str, int] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_ms > 0

    def __len__(self) -> int:
        return len(self._local)

    async def is_recent(self, message_id: str) -> bool:
        """Checks the local cache, then the store. Store outages propagate."""
        if not self.enabled:
            return False

        now = self._clock()
        expires_at = self._local.get(message_id)
        if expires_at is not None:
            if expires_at > now:
                return True
            del self._local[message_id]

        if await self._store.is_marked_processed(message_id, now):
            self._local[message_id] = now + self.ttl_ms
            return True
        return False

    async def mark(self, message_id: str) -> None:
        if not self.enabled:
            return

        now = self._clock()
        self._local[message_id] = now + self.ttl_ms
        try:
            await self._store.mark_processed(
                message_id, now_ms=now, ttl_ms=self.ttl_ms, worker_id=self._worker_id
            )
        except StoreUnavailableError as e:
            logger.warning("Could not persist processed marker", message_id=message_id, error=str(e))

    async def clear(self, message_id: str) -> None:
        if not self.enabled:
            return

        self._local.pop(message_id, None)
        try:
            await self._store.clear_processed(message_id)
        except StoreUnavailableError as e:
            logger.warning("Could not clear processed marker", message_id=message_id, error=str(e))

    def prune(self) -> int:
        """Drop expired local entries. Returns how many were dropped."""
        now = self._clock()
        expired = [message_id for message_id, expires_at in self._local.items() if expires_at <= now]
        for message_id in expired:
            del self._local[message_id]
        return len(expired)
