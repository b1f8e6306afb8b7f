"""At-least-once job queue over a conditional-write document store."""

from __future__ import annotations

from .core import (
    ConfigurationError,
    DuplicateMessageError,
    HandlerError,
    InvalidPatchError,
    LeaseLostError,
    MessageNotFoundError,
    MessageStatus,
    QueueError,
    QueueMessage,
    QueueStats,
    StoreUnavailableError,
    VersionedMessage,
)
from .dlq import DeadLetterEntry, DeadLetterQueue
from .logger import LoggingConfig, configure_logging, get_logger
from .queue import MessageContext, QueueConfig, QueueEngine
from .resilience import ExponentialBackoff, FixedBackoff, RetryConfig
from .store import InMemoryMessageStore, MessageStore, RedisMessageStore

__all__ = [
    "ConfigurationError",
    "DeadLetterEntry",
    "DeadLetterQueue",
    "DuplicateMessageError",
    "ExponentialBackoff",
    "FixedBackoff",
    "HandlerError",
    "InMemoryMessageStore",
    "InvalidPatchError",
    "LeaseLostError",
    "LoggingConfig",
    "MessageContext",
    "MessageNotFoundError",
    "MessageStatus",
    "MessageStore",
    "QueueConfig",
    "QueueEngine",
    "QueueError",
    "QueueMessage",
    "QueueStats",
    "RedisMessageStore",
    "RetryConfig",
    "StoreUnavailableError",
    "VersionedMessage",
    "configure_logging",
    "get_logger",
]
