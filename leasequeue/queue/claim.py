from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from ..core.enums import MessageStatus, OrderingMode
from ..core.exceptions import LeaseLostError, MessageNotFoundError, StoreUnavailableError
from ..logger import get_logger
from .domain import ClaimedMessage

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.models import QueueMessage, VersionedMessage
    from ..core.types import Clock
    from ..store.base import MessageStore
    from .config import QueueConfig
    from .dedup import ProcessedMarkers
    from .lease import LeaseManager
    from .router import RetryRouter

logger: BoundLogger = get_logger(__name__)


class ClaimEngine:
    """Turns the shared backlog into exclusively owned work items.

    Exclusivity comes from a single conditional write per candidate: the claim
    patch is applied only against the version this worker just read, so of
    any number of workers racing for one message exactly one write lands.
    Losing that race is normal and is only logged at debug.

    A store outage ends the cycle without spending an attempt. Messages
    already claimed in that cycle are still handed back so they run.
    """

    def __init__(
        self,
        store: MessageStore,
        config: QueueConfig,
        lease: LeaseManager,
        router: RetryRouter,
        markers: ProcessedMarkers,
        clock: Clock,
    ) -> None:
        self._store = store
        self._config = config
        self._lease = lease
        self._router = router
        self._markers = markers
        self._clock = clock

    @property
    def worker_id(self) -> str:
        return self._config.worker_id

    async def claim_batch(self, max_count: int) -> list[ClaimedMessage]:
        """Claim up to ``max_count`` messages in one poll cycle."""
        if max_count <= 0:
            return []

        self._markers.prune()
        now = self._clock()
        candidates = await self._store.list_candidates(now, self._config.resolved_poll_batch_size)
        claimed: list[ClaimedMessage] = []

        for candidate in self._order(candidates):
            if len(claimed) >= max_count:
                break
            try:
                result = await self.attempt_claim(candidate.id)
            except StoreUnavailableError as e:
                if not claimed:
                    raise
                logger.warning(
                    "Store unavailable mid-batch, ending cycle early",
                    message_id=candidate.id,
                    claimed=len(claimed),
                    error=str(e),
                )
                break
            if result is not None:
                claimed.append(result)

        return claimed

    def _order(self, candidates: list[QueueMessage]) -> list[QueueMessage]:
        reverse = self._config.ordering is OrderingMode.LIFO
        return sorted(candidates, key=lambda m: (m.enqueued_at, m.id), reverse=reverse)

    async def attempt_claim(self, message_id: str) -> ClaimedMessage | None:
        """Read the message and try to take its lease with one conditional write.

        Returns None when the message is gone, not claimable, recently handled
        successfully, dead-lettered because its last lease expired, or claimed
        by someone else first.
        """
        try:
            current = await self._store.get(message_id)
        except MessageNotFoundError:
            logger.debug("Candidate vanished before claim", message_id=message_id)
            return None

        now = self._clock()
        message = current.message
        if not self._lease.is_claimable(message, now):
            return None

        if await self._markers.is_recent(message.id):
            logger.debug("Skipping recently processed message", message_id=message.id, status=message.status.value)
            return None

        if self._lease.is_reclaimable(message, now) and self._lease.is_exhausted(message):
            await self._expire(current)
            return None

        lock_token = uuid.uuid4().hex
        visible_until = self._lease.claim_deadline(now)
        result = await self._store.update_conditional(
            message.id,
            {
                "status": MessageStatus.PROCESSING,
                "visible_at": visible_until,
                "claimed_by": self.worker_id,
                "claimed_at": now,
                "lock_token": lock_token,
                "attempts": message.attempts + 1,
            },
            if_match=current.version,
        )

        if not result.success or result.message is None or result.version is None:
            logger.debug(
                "Lost claim race",
                message_id=message.id,
                reason=result.error,
                worker_id=self.worker_id,
            )
            return None

        if message.status is MessageStatus.PROCESSING:
            logger.info(
                "Reclaimed expired lease",
                message_id=message.id,
                previous_worker=message.claimed_by,
                worker_id=self.worker_id,
                attempts=result.message.attempts,
            )

        return ClaimedMessage(
            message=result.message,
            version=result.version,
            lock_token=lock_token,
            claimed_at=now,
            visible_until=visible_until,
        )

    async def _expire(self, current: VersionedMessage) -> None:
        """Dead-letter a message whose final lease ran out without an outcome."""
        try:
            await self._router.dead_letter_expired(current)
        except LeaseLostError as e:
            logger.debug("Lost race expiring message", message_id=current.message.id, reason=e.reason)
