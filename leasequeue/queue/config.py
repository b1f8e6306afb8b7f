from __future__ import annotations

import uuid
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.enums import OrderingMode
from ..resilience.config import RetryConfig
from .domain import CompleteCallback, ErrorCallback, MessageHandler

_RESOURCE_PATTERN = r"^[A-Za-z0-9_.:-]+$"


def _default_worker_id() -> str:
    return f"worker_{uuid.uuid4().hex[:8]}"


class QueueConfig(BaseModel):
    """Every recognised queue option with its default.

    Validated once when the model is built; invalid values raise pydantic's
    ``ValidationError`` and the engine turns that into ``ConfigurationError``.
    Durations are milliseconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, pattern=_RESOURCE_PATTERN, description="Queue name")

    # Leases and polling
    visibility_timeout_ms: int = Field(
        default=30_000,
        ge=1,
        description="Lease length; must exceed expected handler runtime",
    )
    poll_interval_ms: int = Field(default=1000, ge=1, description="Poll cadence when idle")
    max_poll_interval_ms: int | None = Field(
        default=None,
        ge=1,
        description="Idle polls back off up to this interval (None = no idle backoff)",
    )
    poll_batch_size: int | None = Field(
        default=None,
        ge=1,
        le=1000,
        description="Candidates read per poll (None = max(concurrency * 4, 16))",
    )
    ordering: OrderingMode = Field(default=OrderingMode.FIFO, description="Best-effort candidate order")

    # Retries
    max_attempts: int = Field(default=3, ge=1, description="Claims allowed before dead-lettering")
    dead_letter_resource: str | None = Field(
        default=None,
        pattern=_RESOURCE_PATTERN,
        description="Dead-letter collection name (None = '{name}_dead')",
    )
    store_retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry policy for terminal writes hitting a store outage",
    )
    processed_cache_ttl_ms: int = Field(
        default=30_000,
        ge=0,
        description="How long a successfully handled message is skipped by claims (0 = off)",
    )

    # Workers
    concurrency: int = Field(default=1, ge=1, le=1000, description="Concurrent handler invocations")
    worker_id: str = Field(default_factory=_default_worker_id, min_length=1)
    auto_start: bool = Field(default=True, description="Start processing on astart() when on_message is set")

    # Callbacks
    on_message: MessageHandler | None = Field(default=None, description="Default handler")
    on_error: ErrorCallback | None = Field(default=None, description="Called with (HandlerError, message)")
    on_complete: CompleteCallback | None = Field(default=None, description="Called with (message, result)")

    verbose: bool = Field(default=False, description="Log per-message lifecycle at info instead of debug")

    @model_validator(mode="after")
    def _check_dead_letter_target(self) -> Self:
        if self.resolved_dead_letter_resource == self.name:
            raise ValueError("dead_letter_resource must differ from the queue name")
        if self.max_poll_interval_ms is not None and self.max_poll_interval_ms < self.poll_interval_ms:
            raise ValueError("max_poll_interval_ms must be >= poll_interval_ms")
        return self

    @property
    def resolved_dead_letter_resource(self) -> str:
        return self.dead_letter_resource or f"{self.name}_dead"

    @property
    def resolved_poll_batch_size(self) -> int:
        return self.poll_batch_size or max(self.concurrency * 4, 16)

    @property
    def resolved_max_poll_interval_ms(self) -> int:
        return self.max_poll_interval_ms or self.poll_interval_ms
