"""Typed lifecycle notifications.

Delivery is best-effort and process-local: a listener that raises is logged
and skipped, a full stream drops its oldest event. Nothing here takes part in
the claim protocol.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING, Literal, Self

from pydantic import BaseModel, ConfigDict

from ..logger import get_logger

if TYPE_CHECKING:
    from types import TracebackType

    from structlog.stdlib import BoundLogger

logger: BoundLogger = get_logger(__name__)


class QueueEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    queue: str


class MessageEnqueued(QueueEvent):
    kind: Literal["message.enqueued"] = "message.enqueued"
    message_id: str


class MessageCompleted(QueueEvent):
    kind: Literal["message.completed"] = "message.completed"
    message_id: str
    attempts: int
    duration_ms: int


class MessageRetry(QueueEvent):
    kind: Literal["message.retry"] = "message.retry"
    message_id: str
    attempts: int
    error: str | None = None
    visible_at: int


class MessageDead(QueueEvent):
    kind: Literal["message.dead"] = "message.dead"
    message_id: str
    attempts: int
    error: str | None = None


class LockRenewed(QueueEvent):
    kind: Literal["lock.renewed"] = "lock.renewed"
    message_id: str
    visible_at: int


class LockRenewalRejected(QueueEvent):
    kind: Literal["lock.renewal_rejected"] = "lock.renewal_rejected"
    message_id: str
    reason: str


class WorkersStarted(QueueEvent):
    kind: Literal["workers.started"] = "workers.started"
    worker_id: str
    concurrency: int


class WorkersStopped(QueueEvent):
    kind: Literal["workers.stopped"] = "workers.stopped"
    worker_id: str


type Listener[E: QueueEvent] = Callable[[E], Awaitable[None] | None]


class EventStream:
    """Bounded async-iterable view of the channel.

    ``dropped`` counts events discarded because the consumer fell behind.
    """

    def __init__(self, channel: EventChannel, maxsize: int) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._channel = channel
        self._queue: asyncio.Queue[QueueEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    def _offer(self, event: QueueEvent) -> None:
        if self._closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._detach(self)
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[QueueEvent]:
        return self

    async def __anext__(self) -> QueueEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def get(self, timeout: float | None = None) -> QueueEvent:
        """Next event, waiting at most ``timeout`` seconds."""
        event = await asyncio.wait_for(self._queue.get(), timeout)
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class EventChannel:
    """Publish-subscribe hub for ``QueueEvent`` subclasses.

    Listeners subscribe to an event class and receive instances of it and of
    its subclasses, so subscribing to ``QueueEvent`` receives everything.
    Async listeners run as tasks; ``drain()`` waits for the ones still running.
    """

    def __init__(self) -> None:
        self._listeners: defaultdict[type[QueueEvent], list[Listener]] = defaultdict(list)
        self._streams: set[EventStream] = set()
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe[E: QueueEvent](self, event_type: type[E], listener: Listener[E]) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners[event_type].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def stream(self, maxsize: int = 1000) -> EventStream:
        stream = EventStream(self, maxsize)
        self._streams.add(stream)
        return stream

    def _detach(self, stream: EventStream) -> None:
        self._streams.discard(stream)

    def publish(self, event: QueueEvent) -> None:
        for event_type, listeners in list(self._listeners.items()):
            if not isinstance(event, event_type):
                continue
            for listener in list(listeners):
                self._deliver(listener, event)

        for stream in list(self._streams):
            stream._offer(event)

    def _deliver(self, listener: Listener, event: QueueEvent) -> None:
        try:
            result = listener(event)
        except Exception as e:
            logger.error("Event listener failed", kind=getattr(event, "kind", None), exc_info=e)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Async event listener failed", exc_info=error)

    async def drain(self) -> None:
        """Wait for async listeners that are still running."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
