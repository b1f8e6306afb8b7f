"""Fixtures wiring queue components by hand, without the worker pool."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest

from leasequeue.dlq import DeadLetterQueue
from leasequeue.queue import (
    ClaimEngine,
    EventChannel,
    LeaseManager,
    ProcessedMarkers,
    QueueConfig,
    QueueEvent,
    RetryRouter,
)
from leasequeue.resilience import FixedBackoff, RetryConfig

if TYPE_CHECKING:
    from leasequeue.core import Clock
    from leasequeue.store import InMemoryMessageStore


@dataclass
class Worker:
    config: QueueConfig
    lease: LeaseManager
    events: EventChannel
    dead_letters: DeadLetterQueue
    markers: ProcessedMarkers
    router: RetryRouter
    claims: ClaimEngine
    received: list[QueueEvent] = field(default_factory=list)


type WorkerFactory = Callable[..., Worker]


@pytest.fixture
def make_worker(store: InMemoryMessageStore, clock: Clock) -> WorkerFactory:
    """Build claim engine and router for one worker sharing ``store`` and ``clock``."""

    def factory(worker_id: str = "w1", backoff_ms: int = 0, **overrides: Any) -> Worker:
        options: dict[str, Any] = {
            "name": "jobs",
            "visibility_timeout_ms": 1000,
            "max_attempts": 3,
            "worker_id": worker_id,
            "store_retry": RetryConfig(max_attempts=3, wait_min=0, wait_max=0, multiplier=0),
        }
        options.update(overrides)
        config = QueueConfig(**options)

        lease = LeaseManager(config.visibility_timeout_ms, FixedBackoff(backoff_ms))
        events = EventChannel()
        dead_letters = DeadLetterQueue(store.open_dead_letters(config.resolved_dead_letter_resource), config.name)
        markers = ProcessedMarkers(store, config.processed_cache_ttl_ms, config.worker_id, clock)
        router = RetryRouter(store, config, lease, dead_letters, events, markers, clock)
        claims = ClaimEngine(store, config, lease, router, markers, clock)

        worker = Worker(config, lease, events, dead_letters, markers, router, claims)
        events.subscribe(QueueEvent, worker.received.append)
        return worker

    return factory
