"""Public entry point of a queue.

``QueueEngine`` wires the store, lease arithmetic, claiming, outcome routing,
worker pool, stats and events for one queue on one worker. Any number of
engines, in this process or others, may share one backlog through the same
backend; they coordinate only through conditional writes.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Self

from pydantic import ValidationError

from ..core.enums import MessageStatus, RenewalRejection
from ..core.exceptions import ConfigurationError, MessageNotFoundError
from ..core.models import QueueMessage, new_message_id
from ..core.types import system_clock
from ..dlq.service import DeadLetterQueue
from ..logger import get_logger, log_lifecycle
from ..resilience.backoff import ExponentialBackoff
from .claim import ClaimEngine
from .config import QueueConfig
from .dedup import ProcessedMarkers
from .events import EventChannel, LockRenewalRejected, LockRenewed, MessageEnqueued
from .lease import LeaseManager
from .pool import WorkerPool
from .router import RetryRouter
from .stats import StatsAggregator

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.stdlib import BoundLogger

    from ..core.models import ConditionalWriteResult, QueueStats, VersionedMessage
    from ..core.types import Clock
    from ..resilience.backoff import BackoffPolicy
    from ..store.base import DeadLetterStore, MessageStore
    from .domain import MessageHandler

logger: BoundLogger = get_logger(__name__)


class QueueEngine:
    """At-least-once queue over a conditional-write document store.

    Examples
    --------
    >>> store = InMemoryMessageStore()
    >>> async def handle(payload, ctx):
    ...     await send_email(payload["to"])
    >>> config = QueueConfig(name="emails", concurrency=4, on_message=handle)
    >>> async with QueueEngine(config, store) as queue:
    ...     await queue.enqueue({"to": "a@example.com"})
    ...     print(await queue.queue_stats())

    The engine does not close ``store``: one store may back several engines.
    """

    __slots__ = (
        "_claims",
        "_clock",
        "_config",
        "_dead_letters",
        "_events",
        "_lease",
        "_markers",
        "_pool",
        "_router",
        "_stats",
        "_store",
    )

    def __init__(
        self,
        config: QueueConfig | Mapping[str, Any],
        store: MessageStore,
        *,
        backoff: BackoffPolicy | None = None,
        clock: Clock | None = None,
        dead_letter_store: DeadLetterStore | None = None,
    ) -> None:
        """Validate configuration and wire the components.

        Raises
        ------
        ConfigurationError
            If the configuration is invalid or the dead-letter store cannot be
            resolved.
        """
        self._config = self._resolve_config(config)
        self._store = store
        self._clock: Clock = clock or system_clock
        self._events = EventChannel()
        self._lease = LeaseManager(self._config.visibility_timeout_ms, backoff or ExponentialBackoff())
        self._dead_letters = DeadLetterQueue(
            self._resolve_dead_letter_store(store, dead_letter_store),
            self._config.name,
        )
        self._markers = ProcessedMarkers(
            store, self._config.processed_cache_ttl_ms, self._config.worker_id, self._clock
        )
        self._router = RetryRouter(
            store, self._config, self._lease, self._dead_letters, self._events, self._markers, self._clock
        )
        self._claims = ClaimEngine(store, self._config, self._lease, self._router, self._markers, self._clock)
        self._pool = WorkerPool(
            self._claims,
            self._router,
            self._config,
            self._events,
            self._clock,
            self.renew_lock,
        )
        self._stats = StatsAggregator(store, self._config.name)

    @staticmethod
    def _resolve_config(config: QueueConfig | Mapping[str, Any]) -> QueueConfig:
        if isinstance(config, QueueConfig):
            return config
        try:
            return QueueConfig.model_validate(dict(config))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid queue configuration: {e}") from e

    def _resolve_dead_letter_store(
        self,
        store: MessageStore,
        dead_letter_store: DeadLetterStore | None,
    ) -> DeadLetterStore:
        resource = self._config.resolved_dead_letter_resource
        if dead_letter_store is not None:
            if dead_letter_store.resource == self._config.name:
                raise ConfigurationError("Dead-letter store must not be the queue itself")
            return dead_letter_store
        try:
            return store.open_dead_letters(resource)
        except (NotImplementedError, ValueError) as e:
            raise ConfigurationError(f"Cannot resolve dead-letter resource '{resource}': {e}") from e

    async def __aenter__(self) -> Self:
        await self.astart()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None and exc_val is not None:
            logger.error(
                "QueueEngine context manager exiting with exception",
                queue=self._config.name,
                exc_type=exc_type.__name__,
                exc_val=str(exc_val),
            )
        await self.aclose()

    @property
    def config(self) -> QueueConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def worker_id(self) -> str:
        return self._config.worker_id

    @property
    def events(self) -> EventChannel:
        return self._events

    @property
    def dead_letters(self) -> DeadLetterQueue:
        return self._dead_letters

    @property
    def is_processing(self) -> bool:
        return self._pool.is_running

    async def astart(self) -> None:
        """Start processing if ``auto_start`` is set and a default handler exists."""
        if self._config.auto_start and self._config.on_message is not None:
            await self.start_processing()

    async def aclose(self, drain_timeout: float | None = None) -> None:
        """Stop processing and wait for pending async event listeners."""
        await self.stop_processing(drain_timeout=drain_timeout)
        await self._events.drain()

    async def enqueue(
        self,
        payload: Any,
        *,
        message_id: str | None = None,
        max_attempts: int | None = None,
    ) -> QueueMessage:
        """Add a message to the backlog, immediately visible.

        Raises
        ------
        DuplicateMessageError
            If ``message_id`` is already taken.
        StoreUnavailableError
            If the store cannot be reached. Nothing is retried here: a create
            whose response was lost may already have landed.
        """
        now = self._clock()
        message = QueueMessage(
            id=message_id or new_message_id(),
            payload=payload,
            max_attempts=max_attempts if max_attempts is not None else self._config.max_attempts,
            visible_at=now,
            enqueued_at=now,
        )
        created = await self._store.create(message)

        self._events.publish(MessageEnqueued(queue=self._config.name, message_id=message.id))
        log_lifecycle(logger, self._config.verbose, "Message enqueued", queue=self._config.name, message_id=message.id)
        return created.message

    async def start_processing(
        self,
        handler: MessageHandler | None = None,
        *,
        concurrency: int | None = None,
    ) -> None:
        """Start the worker pool. Calling it while running is a no-op.

        Raises
        ------
        ConfigurationError
            If neither ``handler`` nor ``config.on_message`` is set.
        """
        resolved = handler or self._config.on_message
        if resolved is None:
            raise ConfigurationError(f"Queue '{self._config.name}' has no message handler")
        if concurrency is not None and not 1 <= concurrency <= 1000:
            raise ConfigurationError("concurrency must be between 1 and 1000")
        self._pool.start(resolved, concurrency)

    async def stop_processing(self, drain_timeout: float | None = None) -> None:
        await self._pool.stop(drain_timeout=drain_timeout)

    async def queue_stats(self) -> QueueStats:
        return await self._stats.queue_stats()

    async def get(self, message_id: str) -> VersionedMessage:
        return await self._store.get(message_id)

    async def update_conditional(
        self,
        message_id: str,
        patch: Mapping[str, Any],
        *,
        if_match: str,
    ) -> ConditionalWriteResult:
        return await self._store.update_conditional(message_id, patch, if_match=if_match)

    async def extend_visibility(self, message_id: str, extra_ms: int, *, lock_token: str) -> bool:
        """Push the lease deadline out by ``extra_ms``.

        Only the current lease holder, identified by ``lock_token``, may do
        this. Rejections return False and publish ``LockRenewalRejected``.
        """
        if extra_ms <= 0:
            raise ValueError("extra_ms must be > 0")

        try:
            current = await self._store.get(message_id)
        except MessageNotFoundError:
            return self._reject_renewal(message_id, RenewalRejection.NOT_FOUND)

        message = current.message
        if message.status.is_terminal:
            return self._reject_renewal(message_id, RenewalRejection.TERMINAL_STATE)
        if message.lock_token is None:
            return self._reject_renewal(message_id, RenewalRejection.LOCK_RELEASED)
        if message.lock_token != lock_token:
            return self._reject_renewal(message_id, RenewalRejection.TOKEN_MISMATCH)
        if message.status is not MessageStatus.PROCESSING:
            return self._reject_renewal(message_id, RenewalRejection.INVALID_STATE)

        visible_at = self._lease.extended_deadline(message, extra_ms, self._clock())
        result = await self._store.update_conditional(
            message_id,
            {"visible_at": visible_at},
            if_match=current.version,
        )
        if not result.success:
            return self._reject_renewal(message_id, RenewalRejection.CONFLICT)

        self._events.publish(LockRenewed(queue=self._config.name, message_id=message_id, visible_at=visible_at))
        log_lifecycle(
            logger,
            self._config.verbose,
            "Lease extended",
            message_id=message_id,
            visible_at=visible_at,
        )
        return True

    async def renew_lock(self, message_id: str, lock_token: str, extra_ms: int | None = None) -> bool:
        """Extend the lease by ``extra_ms``, one visibility timeout by default."""
        return await self.extend_visibility(
            message_id,
            extra_ms or self._config.visibility_timeout_ms,
            lock_token=lock_token,
        )

    def _reject_renewal(self, message_id: str, reason: RenewalRejection) -> bool:
        logger.warning("Lease renewal rejected", message_id=message_id, reason=reason.value)
        self._events.publish(
            LockRenewalRejected(queue=self._config.name, message_id=message_id, reason=reason.value)
        )
        return False
