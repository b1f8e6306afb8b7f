from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..core.enums import MessageStatus
from ..core.exceptions import LeaseLostError, MessageNotFoundError
from ..dlq.domain import FailureCategory
from ..logger import get_logger, log_lifecycle
from ..resilience.retry import retry
from .events import MessageCompleted, MessageDead, MessageRetry

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.exceptions import HandlerError
    from ..core.models import QueueMessage, VersionedMessage
    from ..core.types import Clock
    from ..dlq.service import DeadLetterQueue
    from ..store.base import MessageStore
    from .config import QueueConfig
    from .dedup import ProcessedMarkers
    from .domain import ClaimedMessage
    from .events import EventChannel
    from .lease import LeaseManager

logger: BoundLogger = get_logger(__name__)

LEASE_EXPIRED_ERROR = "visibility timeout exceeded after max attempts"


class RetryRouter:
    """Writes the outcome of a handler invocation back to the store.

    Every write here is claim-protected: the message is re-read, must still
    be ``processing`` under this worker's lock token, and the patch is applied
    against that fresh version. If another worker reclaimed the message after
    our lease expired, ``LeaseLostError`` is raised and nothing is written;
    the new owner decides the outcome.

    A store outage is retried with the configured ``store_retry`` policy. If
    it persists the message simply stays ``processing`` until its lease
    expires and it is claimed again.
    """

    def __init__(
        self,
        store: MessageStore,
        config: QueueConfig,
        lease: LeaseManager,
        dead_letters: DeadLetterQueue,
        events: EventChannel,
        markers: ProcessedMarkers,
        clock: Clock,
    ) -> None:
        self._store = store
        self._config = config
        self._lease = lease
        self._dead_letters = dead_letters
        self._events = events
        self._markers = markers
        self._clock = clock
        self._retrying = retry(config.store_retry)

    async def complete(self, claimed: ClaimedMessage, duration_ms: int) -> QueueMessage:
        """Record a successful handler run.

        The processed marker goes in first so that a completion lost to an
        outage or an expired lease does not send the message to another
        handler while the marker lives.
        """
        await self._markers.mark(claimed.id)
        message = await self._retrying(self._complete_once)(claimed)

        self._events.publish(
            MessageCompleted(
                queue=self._config.name,
                message_id=claimed.id,
                attempts=claimed.attempts,
                duration_ms=duration_ms,
            )
        )
        log_lifecycle(
            logger,
            self._config.verbose,
            "Message completed",
            message_id=claimed.id,
            attempts=claimed.attempts,
            duration_ms=duration_ms,
        )
        return message

    async def _complete_once(self, claimed: ClaimedMessage) -> QueueMessage:
        current = await self._reread(claimed)
        if _is_own_completion(current.message, claimed):
            # An earlier try landed but its reply was lost.
            return current.message
        _check_owned(current.message, claimed)
        return await self._write(
            current,
            {
                "status": MessageStatus.COMPLETED,
                "completed_at": self._clock(),
                "lock_token": None,
                "last_error": None,
            },
        )

    async def fail(self, claimed: ClaimedMessage, error: HandlerError) -> MessageStatus:
        """Schedule a retry or dead-letter the message.

        Returns
        -------
        MessageStatus
            ``PENDING`` when a retry was scheduled, ``DEAD`` otherwise.
        """
        reason = str(error.original) or error.error_type
        message = claimed.message

        if message.attempts < message.max_attempts:
            updated = await self._retrying(self._retry_once)(claimed, reason)
            await self._markers.clear(message.id)
            self._events.publish(
                MessageRetry(
                    queue=self._config.name,
                    message_id=message.id,
                    attempts=message.attempts,
                    error=reason,
                    visible_at=updated.visible_at,
                )
            )
            log_lifecycle(
                logger,
                self._config.verbose,
                "Message scheduled for retry",
                message_id=message.id,
                attempts=message.attempts,
                max_attempts=message.max_attempts,
                visible_at=updated.visible_at,
                error_type=error.error_type,
            )
            return MessageStatus.PENDING

        await self._retrying(self._dead_letter_once)(claimed, reason, error.error_type)
        self._events.publish(
            MessageDead(queue=self._config.name, message_id=message.id, attempts=message.attempts, error=reason)
        )
        return MessageStatus.DEAD

    async def _retry_once(self, claimed: ClaimedMessage, reason: str) -> QueueMessage:
        current = await self._reread_owned(claimed)
        now = self._clock()
        return await self._write(
            current,
            {
                "status": MessageStatus.PENDING,
                "visible_at": self._lease.retry_visible_at(claimed.attempts, now),
                "claimed_by": None,
                "claimed_at": None,
                "lock_token": None,
                "last_error": reason,
            },
        )

    async def _dead_letter_once(self, claimed: ClaimedMessage, reason: str, error_type: str) -> QueueMessage:
        current = await self._reread_owned(claimed)
        return await self._bury(current, reason, error_type, FailureCategory.HANDLER_ERROR)

    async def dead_letter_expired(self, current: VersionedMessage) -> QueueMessage:
        """Dead-letter a message whose final lease expired without an outcome.

        Guarded by the version the caller just read instead of a lock token:
        the lease holder is presumed gone.
        """
        message = await self._bury(current, LEASE_EXPIRED_ERROR, "", FailureCategory.LEASE_EXPIRED)
        self._events.publish(
            MessageDead(
                queue=self._config.name,
                message_id=message.id,
                attempts=message.attempts,
                error=LEASE_EXPIRED_ERROR,
            )
        )
        return message

    async def _bury(
        self,
        current: VersionedMessage,
        reason: str,
        error_type: str,
        category: FailureCategory,
    ) -> QueueMessage:
        now = self._clock()
        message = current.message
        await self._dead_letters.dead_letter(
            message,
            reason,
            error_type=error_type,
            category=category,
            dead_at=now,
            metadata=self._entry_metadata(message),
        )
        try:
            return await self._write(
                current,
                {
                    "status": MessageStatus.DEAD,
                    "dead_at": now,
                    "claimed_by": None,
                    "lock_token": None,
                    "last_error": reason,
                },
            )
        except LeaseLostError:
            # Entries share the message id: keep the one a concurrent burial left behind.
            if not await self._is_dead(message.id):
                await self._dead_letters.discard(message.id)
            raise

    def _entry_metadata(self, message: QueueMessage) -> dict[str, str]:
        metadata = {"dead_lettered_by": self._config.worker_id}
        if message.claimed_by:
            metadata["last_claimed_by"] = message.claimed_by
        return metadata

    async def _is_dead(self, message_id: str) -> bool:
        try:
            current = await self._store.get(message_id)
        except MessageNotFoundError:
            return False
        return current.message.status is MessageStatus.DEAD

    async def _reread(self, claimed: ClaimedMessage) -> VersionedMessage:
        try:
            return await self._store.get(claimed.id)
        except MessageNotFoundError:
            raise LeaseLostError(claimed.id, "message no longer exists") from None

    async def _reread_owned(self, claimed: ClaimedMessage) -> VersionedMessage:
        current = await self._reread(claimed)
        _check_owned(current.message, claimed)
        return current

    async def _write(self, current: VersionedMessage, patch: Mapping[str, Any]) -> QueueMessage:
        result = await self._store.update_conditional(current.message.id, patch, if_match=current.version)
        if not result.success or result.message is None:
            raise LeaseLostError(current.message.id, f"conditional write rejected ({result.error})")
        return result.message


def _check_owned(message: QueueMessage, claimed: ClaimedMessage) -> None:
    if message.status is not MessageStatus.PROCESSING:
        raise LeaseLostError(claimed.id, f"status is {message.status.value}")
    if message.lock_token != claimed.lock_token:
        raise LeaseLostError(claimed.id, "lease was reclaimed by another worker")


def _is_own_completion(message: QueueMessage, claimed: ClaimedMessage) -> bool:
    """Completed by this claim: same claimant and claim instant, token released."""
    return (
        message.status is MessageStatus.COMPLETED
        and message.lock_token is None
        and message.claimed_by == claimed.message.claimed_by
        and message.claimed_at == claimed.claimed_at
    )
