from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from functools import partial
from typing import TYPE_CHECKING, Any

from ..core.exceptions import HandlerError, LeaseLostError, StoreUnavailableError
from ..logger import bind_context, get_logger, log_lifecycle
from .domain import MessageContext
from .events import WorkersStarted, WorkersStopped

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..core.types import Clock
    from .claim import ClaimEngine
    from .config import QueueConfig
    from .domain import ClaimedMessage, MessageHandler
    from .events import EventChannel
    from .router import RetryRouter

logger: BoundLogger = get_logger(__name__)

type LockRenewer = Callable[[str, str, int | None], Awaitable[bool]]


class WorkerPool:
    """Poll loop plus ``concurrency`` execution slots.

    The slots are the set of in-flight handler tasks. Each tick claims at most
    as many messages as there are free slots, so a claimed message always
    starts running immediately and its lease is not spent waiting in a local
    buffer. When every slot is busy the loop waits for one to free up.

    Per-message failures never escape a task: handler exceptions go through
    the router, lost leases and store outages are logged and left to lease
    expiry.
    """

    def __init__(
        self,
        claims: ClaimEngine,
        router: RetryRouter,
        config: QueueConfig,
        events: EventChannel,
        clock: Clock,
        renew_lock: LockRenewer,
    ) -> None:
        self._claims = claims
        self._router = router
        self._config = config
        self._events = events
        self._clock = clock
        self._renew_lock = renew_lock

        self._handler: MessageHandler | None = None
        self._concurrency = config.concurrency
        self._in_flight: set[asyncio.Task[None]] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def start(self, handler: MessageHandler, concurrency: int | None = None) -> bool:
        """Start the poll loop. Returns False if it was already running."""
        if self.is_running:
            logger.debug("Worker pool already running", worker_id=self._config.worker_id)
            return False
        if concurrency is not None and concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self._handler = handler
        self._concurrency = concurrency or self._config.concurrency
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run(), name=f"leasequeue-poll-{self._config.name}")

        logger.info(
            "Workers started",
            queue=self._config.name,
            worker_id=self._config.worker_id,
            concurrency=self._concurrency,
        )
        self._events.publish(
            WorkersStarted(
                queue=self._config.name,
                worker_id=self._config.worker_id,
                concurrency=self._concurrency,
            )
        )
        return True

    async def stop(self, drain_timeout: float | None = None) -> None:
        """Stop claiming and wait for in-flight handlers.

        Handlers still running after ``drain_timeout`` seconds are cancelled;
        their messages stay ``processing`` until the lease expires.
        """
        if self._loop_task is None:
            return

        self._stopping.set()
        loop_task, self._loop_task = self._loop_task, None
        await loop_task

        if self._in_flight:
            _, still_running = await asyncio.wait(set(self._in_flight), timeout=drain_timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(
                    "Cancelled handlers that did not finish draining",
                    queue=self._config.name,
                    count=len(still_running),
                )
                await asyncio.gather(*still_running, return_exceptions=True)

        logger.info("Workers stopped", queue=self._config.name, worker_id=self._config.worker_id)
        self._events.publish(WorkersStopped(queue=self._config.name, worker_id=self._config.worker_id))

    async def _run(self) -> None:
        base_interval = self._config.poll_interval_ms
        max_interval = self._config.resolved_max_poll_interval_ms
        interval = base_interval

        while not self._stopping.is_set():
            free_slots = self._concurrency - len(self._in_flight)
            if free_slots <= 0:
                await self._wait_for_slot()
                continue

            claimed = await self._poll(free_slots)
            for item in claimed:
                self._spawn(item)

            if claimed:
                interval = base_interval
                await asyncio.sleep(0)
                continue

            await self._sleep(interval)
            interval = min(interval * 2, max_interval)

    async def _poll(self, free_slots: int) -> list[ClaimedMessage]:
        try:
            return await self._claims.claim_batch(free_slots)
        except StoreUnavailableError as e:
            logger.warning("Store unavailable, skipping poll cycle", queue=self._config.name, error=str(e))
        except Exception:
            logger.exception("Poll cycle failed", queue=self._config.name)
        return []

    async def _wait_for_slot(self) -> None:
        stop_waiter = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait({*self._in_flight, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_waiter.cancel()

    async def _sleep(self, interval_ms: int) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=interval_ms / 1000)
        except TimeoutError:
            pass

    def _spawn(self, claimed: ClaimedMessage) -> None:
        task = asyncio.create_task(self._process(claimed), name=f"leasequeue-msg-{claimed.id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _process(self, claimed: ClaimedMessage) -> None:
        handler = self._handler
        if handler is None:
            raise RuntimeError("Worker pool started without a handler")

        message = claimed.message
        # Task-local: each message task runs in its own contextvars copy.
        bind_context(queue=self._config.name, worker_id=self._config.worker_id, message_id=message.id)
        context = MessageContext(
            message_id=message.id,
            worker_id=self._config.worker_id,
            attempts=message.attempts,
            max_attempts=message.max_attempts,
            lock_token=claimed.lock_token,
            visible_until=claimed.visible_until,
            renew_lock=partial(self._renew_lock, message.id, claimed.lock_token),
        )
        log_lifecycle(
            logger,
            self._config.verbose,
            "Processing message",
            attempts=message.attempts,
        )

        started = self._clock()
        try:
            result = await self._invoke(handler, message.payload, context)
        except Exception as e:
            await self._handle_failure(claimed, HandlerError(message.id, e))
            return

        try:
            completed = await self._router.complete(claimed, self._clock() - started)
        except LeaseLostError as e:
            logger.warning("Lease lost before completion was recorded", message_id=message.id, reason=e.reason)
            return
        except StoreUnavailableError as e:
            logger.warning("Could not record completion", message_id=message.id, error=str(e))
            return

        await self._callback(self._config.on_complete, completed, result)

    async def _handle_failure(self, claimed: ClaimedMessage, error: HandlerError) -> None:
        logger.debug(
            "Handler raised",
            message_id=claimed.id,
            attempts=claimed.attempts,
            error_type=error.error_type,
            error=str(error.original),
        )
        await self._callback(self._config.on_error, error, claimed.message)

        try:
            await self._router.fail(claimed, error)
        except LeaseLostError as e:
            logger.warning("Lease lost before failure was recorded", message_id=claimed.id, reason=e.reason)
        except StoreUnavailableError as e:
            logger.warning("Could not record failure", message_id=claimed.id, error=str(e))

    @staticmethod
    async def _invoke(handler: MessageHandler, payload: Any, context: MessageContext) -> Any:
        if inspect.iscoroutinefunction(handler):
            return await handler(payload, context)

        result = await asyncio.to_thread(handler, payload, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _callback(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Queue callback failed", callback=getattr(callback, "__qualname__", repr(callback)))

