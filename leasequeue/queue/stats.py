from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.models import QueueStats
from ..logger import get_logger

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..store.base import MessageStore

logger: BoundLogger = get_logger(__name__)


class StatsAggregator:
    """Point-in-time counts per status bucket.

    Counts come from a single ``count_by_status`` call, so concurrent
    transitions can make a snapshot slightly stale but never double count a
    message: every record falls into exactly one bucket.
    """

    def __init__(self, store: MessageStore, queue_name: str) -> None:
        self._store = store
        self._queue_name = queue_name

    async def queue_stats(self) -> QueueStats:
        counts = await self._store.count_by_status()
        stats = QueueStats.from_counts(counts)
        logger.debug("Computed queue stats", queue=self._queue_name, **stats.model_dump())
        return stats
