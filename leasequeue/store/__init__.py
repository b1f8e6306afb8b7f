"""Message store adapters."""

from __future__ import annotations

from .base import DeadLetterStore, MessageStore
from .memory import InMemoryDeadLetterStore, InMemoryMessageStore
from .redis_store import RedisDeadLetterStore, RedisMessageStore

__all__ = [
    "DeadLetterStore",
    "InMemoryDeadLetterStore",
    "InMemoryMessageStore",
    "MessageStore",
    "RedisDeadLetterStore",
    "RedisMessageStore",
]
