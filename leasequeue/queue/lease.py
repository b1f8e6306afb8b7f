from __future__ import annotations

from typing import TYPE_CHECKING

from ..core.enums import MessageStatus

if TYPE_CHECKING:
    from ..core.models import QueueMessage
    from ..resilience.backoff import BackoffPolicy


class LeaseManager:
    """Visibility-timeout arithmetic.

    Holds no state besides configuration; every answer is a function of the
    message and the instant passed in. Expired leases are never force-mutated
    here, they simply become claimable again.
    """

    def __init__(self, visibility_timeout_ms: int, backoff: BackoffPolicy) -> None:
        self.visibility_timeout_ms = visibility_timeout_ms
        self._backoff = backoff

    @staticmethod
    def is_reclaimable(message: QueueMessage, now: int) -> bool:
        return message.status is MessageStatus.PROCESSING and now >= message.visible_at

    @staticmethod
    def holds_live_lease(message: QueueMessage, now: int) -> bool:
        return message.status is MessageStatus.PROCESSING and now < message.visible_at

    def is_claimable(self, message: QueueMessage, now: int) -> bool:
        if message.status is MessageStatus.PENDING:
            return now >= message.visible_at
        return self.is_reclaimable(message, now)

    @staticmethod
    def is_exhausted(message: QueueMessage) -> bool:
        """Another claim would exceed the message's attempt budget."""
        return message.attempts >= message.max_attempts

    def claim_deadline(self, now: int) -> int:
        return now + self.visibility_timeout_ms

    def retry_visible_at(self, attempts: int, now: int) -> int:
        return now + max(0, self._backoff.delay_ms(attempts))

    @staticmethod
    def extended_deadline(message: QueueMessage, extra_ms: int, now: int) -> int:
        return max(message.visible_at, now) + extra_ms
