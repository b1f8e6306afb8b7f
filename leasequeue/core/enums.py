from __future__ import annotations

from enum import StrEnum


class HealthCheckStatus(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    INITIALIZING = "initializing"


class MessageStatus(StrEnum):
    """Lifecycle state of a queue message.

    ``FAILED`` is never persisted: it is the stats bucket for pending messages
    that already failed at least once.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"

    @property
    def is_terminal(self) -> bool:
        return self in (MessageStatus.COMPLETED, MessageStatus.DEAD)


class ConflictReason(StrEnum):
    VERSION_MISMATCH = "version_mismatch"
    TERMINAL_STATE = "terminal_state"
    NOT_FOUND = "not_found"


class OrderingMode(StrEnum):
    FIFO = "fifo"
    LIFO = "lifo"


class RenewalRejection(StrEnum):
    NOT_FOUND = "not_found"
    TERMINAL_STATE = "terminal_state"
    LOCK_RELEASED = "lock_released"
    TOKEN_MISMATCH = "token_mismatch"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"
