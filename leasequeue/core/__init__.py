"""Core module exports."""

from __future__ import annotations

from .enums import ConflictReason, HealthCheckStatus, MessageStatus, OrderingMode, RenewalRejection
from .exceptions import (
    ConfigurationError,
    DuplicateMessageError,
    HandlerError,
    InvalidPatchError,
    LeaseLostError,
    MessageNotFoundError,
    QueueError,
    StoreUnavailableError,
)
from .models import (
    ConditionalWriteResult,
    QueueMessage,
    QueueStats,
    VersionedMessage,
    apply_patch,
    new_message_id,
)
from .types import Clock, system_clock

__all__ = [
    "Clock",
    "ConditionalWriteResult",
    "ConfigurationError",
    "ConflictReason",
    "DuplicateMessageError",
    "HandlerError",
    "HealthCheckStatus",
    "InvalidPatchError",
    "LeaseLostError",
    "MessageNotFoundError",
    "MessageStatus",
    "OrderingMode",
    "QueueError",
    "QueueMessage",
    "QueueStats",
    "RenewalRejection",
    "StoreUnavailableError",
    "VersionedMessage",
    "apply_patch",
    "new_message_id",
    "system_clock",
]
