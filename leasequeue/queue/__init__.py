from __future__ import annotations

from .claim import ClaimEngine
from .config import QueueConfig
from .dedup import ProcessedMarkers
from .domain import ClaimedMessage, CompleteCallback, ErrorCallback, MessageContext, MessageHandler
from .engine import QueueEngine
from .events import (
    EventChannel,
    EventStream,
    LockRenewalRejected,
    LockRenewed,
    MessageCompleted,
    MessageDead,
    MessageEnqueued,
    MessageRetry,
    QueueEvent,
    WorkersStarted,
    WorkersStopped,
)
from .lease import LeaseManager
from .pool import WorkerPool
from .router import LEASE_EXPIRED_ERROR, RetryRouter
from .stats import StatsAggregator

__all__ = [
    "LEASE_EXPIRED_ERROR",
    "ClaimEngine",
    "ClaimedMessage",
    "CompleteCallback",
    "ErrorCallback",
    "EventChannel",
    "EventStream",
    "LeaseManager",
    "LockRenewalRejected",
    "LockRenewed",
    "MessageCompleted",
    "MessageContext",
    "MessageDead",
    "MessageEnqueued",
    "MessageHandler",
    "MessageRetry",
    "ProcessedMarkers",
    "QueueConfig",
    "QueueEngine",
    "QueueEvent",
    "RetryRouter",
    "StatsAggregator",
    "WorkerPool",
    "WorkersStarted",
    "WorkersStopped",
]
