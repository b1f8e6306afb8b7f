from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from redis.exceptions import WatchError

from ..core.enums import ConflictReason, MessageStatus
from ..core.exceptions import DuplicateMessageError, MessageNotFoundError
from ..core.models import ConditionalWriteResult, QueueMessage, VersionedMessage, apply_patch, new_version
from ..dlq.domain import DeadLetterEntry
from ..logger import get_logger
from .base import DeadLetterStore, MessageStore

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from ..infrastructure.redis.client import RedisClient

logger: BoundLogger = get_logger(__name__)


class RedisMessageStore(MessageStore):
    """Message store on Redis using optimistic WATCH/MULTI/EXEC transactions.

    Layout, under ``{key_prefix}:{queue_name}``:

    - ``msg:{id}``: hash with ``data`` (JSON record), ``version`` and ``bucket``
    - ``visible``: sorted set of non-terminal ids scored by ``visible_at``
    - ``bucket:{status}``: set of ids per stats bucket
    - ``processed:{id}``: recently-processed marker, expired by Redis (``PX``)

    A conditional write WATCHes the message key, compares the stored version
    and commits the record plus its index entries in one MULTI. A concurrent
    writer either changes the version first (mismatch) or touches the key
    between WATCH and EXEC (``WatchError``); both come back as
    ``version_mismatch``.

    The client must be initialized by the caller; closing it is also the
    caller's job.
    """

    def __init__(self, redis_client: RedisClient, queue_name: str, *, key_prefix: str = "leasequeue") -> None:
        self._redis_client = redis_client
        self._queue_name = queue_name
        self._namespace = f"{key_prefix}:{queue_name}"
        self._key_prefix = key_prefix

    @property
    def namespace(self) -> str:
        return self._namespace

    def _message_key(self, message_id: str) -> str:
        return f"{self._namespace}:msg:{message_id}"

    def _bucket_key(self, bucket: MessageStatus) -> str:
        return f"{self._namespace}:bucket:{bucket.value}"

    def _processed_key(self, message_id: str) -> str:
        return f"{self._namespace}:processed:{message_id}"

    @property
    def _visible_key(self) -> str:
        return f"{self._namespace}:visible"

    def _record_fields(self, message: QueueMessage, version: str) -> dict[str, str]:
        return {
            "data": message.model_dump_json(),
            "version": version,
            "bucket": message.stats_bucket.value,
        }

    async def create(self, message: QueueMessage) -> VersionedMessage:
        key = self._message_key(message.id)
        version = new_version()

        async with self._redis_client.aget_client() as redis:
            async with redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if await pipe.exists(key):
                        raise DuplicateMessageError(message.id)
                    pipe.multi()
                    pipe.hset(key, mapping=self._record_fields(message, version))
                    pipe.zadd(self._visible_key, {message.id: message.visible_at})
                    pipe.sadd(self._bucket_key(message.stats_bucket), message.id)
                    await pipe.execute()
                except WatchError:
                    # Only another create of the same id can touch a key that did not exist.
                    raise DuplicateMessageError(message.id) from None

        return VersionedMessage(message=message, version=version)

    async def get(self, message_id: str) -> VersionedMessage:
        async with self._redis_client.aget_client() as redis:
            raw = await redis.hmget(self._message_key(message_id), ["data", "version"])

        data, version = raw
        if data is None or version is None:
            raise MessageNotFoundError(message_id)
        return VersionedMessage(message=QueueMessage.model_validate_json(data), version=version)

    async def update_conditional(
        self,
        message_id: str,
        patch: Mapping[str, Any],
        *,
        if_match: str,
    ) -> ConditionalWriteResult:
        key = self._message_key(message_id)

        async with self._redis_client.aget_client() as redis:
            async with redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    data, version = await pipe.hmget(key, ["data", "version"])
                    if data is None or version is None:
                        return ConditionalWriteResult.conflict(ConflictReason.NOT_FOUND)
                    if version != if_match:
                        return ConditionalWriteResult.conflict(ConflictReason.VERSION_MISMATCH)

                    current = QueueMessage.model_validate_json(data)
                    if current.status.is_terminal:
                        return ConditionalWriteResult.conflict(ConflictReason.TERMINAL_STATE)

                    updated = apply_patch(current, patch)
                    next_version = new_version()

                    pipe.multi()
                    pipe.hset(key, mapping=self._record_fields(updated, next_version))
                    if updated.status.is_terminal:
                        pipe.zrem(self._visible_key, message_id)
                    else:
                        pipe.zadd(self._visible_key, {message_id: updated.visible_at})
                    if current.stats_bucket is not updated.stats_bucket:
                        pipe.srem(self._bucket_key(current.stats_bucket), message_id)
                        pipe.sadd(self._bucket_key(updated.stats_bucket), message_id)
                    await pipe.execute()
                except WatchError:
                    return ConditionalWriteResult.conflict(ConflictReason.VERSION_MISMATCH)

        return ConditionalWriteResult.ok(VersionedMessage(message=updated, version=next_version))

    async def list_candidates(self, now_ms: int, limit: int) -> list[QueueMessage]:
        async with self._redis_client.aget_client() as redis:
            ids: list[str] = await redis.zrangebyscore(self._visible_key, "-inf", now_ms, start=0, num=limit)
            if not ids:
                return []

            async with redis.pipeline(transaction=False) as pipe:
                for message_id in ids:
                    pipe.hget(self._message_key(message_id), "data")
                raw_records: list[str | None] = await pipe.execute()

        candidates: list[QueueMessage] = []
        for message_id, data in zip(ids, raw_records, strict=True):
            if data is None:
                logger.warning("Visibility index points at a missing message", message_id=message_id)
                continue
            message = QueueMessage.model_validate_json(data)
            if not message.status.is_terminal:
                candidates.append(message)
        return candidates

    async def count_by_status(self) -> dict[MessageStatus, int]:
        statuses = list(MessageStatus)
        async with self._redis_client.aget_client() as redis:
            async with redis.pipeline(transaction=False) as pipe:
                for status in statuses:
                    pipe.scard(self._bucket_key(status))
                counts: list[int] = await pipe.execute()
        return dict(zip(statuses, (int(c) for c in counts), strict=True))

    def open_dead_letters(self, resource: str) -> RedisDeadLetterStore:
        return RedisDeadLetterStore(self._redis_client, resource, key_prefix=self._key_prefix)

    async def mark_processed(self, message_id: str, *, now_ms: int, ttl_ms: int, worker_id: str) -> None:
        async with self._redis_client.aget_client() as redis:
            await redis.set(self._processed_key(message_id), worker_id, px=ttl_ms)

    async def is_marked_processed(self, message_id: str, now_ms: int) -> bool:
        async with self._redis_client.aget_client() as redis:
            return bool(await redis.exists(self._processed_key(message_id)))

    async def clear_processed(self, message_id: str) -> None:
        async with self._redis_client.aget_client() as redis:
            await redis.delete(self._processed_key(message_id))


class RedisDeadLetterStore(DeadLetterStore):
    """Dead-letter entries as JSON strings plus a ``dead_at`` sorted index."""

    def __init__(self, redis_client: RedisClient, resource: str, *, key_prefix: str = "leasequeue") -> None:
        super().__init__(resource)
        self._redis_client = redis_client
        self._namespace = f"{key_prefix}:dlq:{resource}"

    def _entry_key(self, entry_id: str) -> str:
        return f"{self._namespace}:entry:{entry_id}"

    @property
    def _index_key(self) -> str:
        return f"{self._namespace}:index"

    async def put(self, entry: DeadLetterEntry) -> None:
        async with self._redis_client.aget_client() as redis:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.set(self._entry_key(entry.id), entry.model_dump_json())
                pipe.zadd(self._index_key, {entry.id: entry.dead_at})
                await pipe.execute()

    async def get(self, entry_id: str) -> DeadLetterEntry | None:
        async with self._redis_client.aget_client() as redis:
            data = await redis.get(self._entry_key(entry_id))
        return DeadLetterEntry.model_validate_json(data) if data is not None else None

    async def discard(self, entry_id: str) -> bool:
        async with self._redis_client.aget_client() as redis:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._entry_key(entry_id))
                pipe.zrem(self._index_key, entry_id)
                deleted, _ = await pipe.execute()
        return bool(deleted)

    async def list_entries(self, limit: int = 100) -> list[DeadLetterEntry]:
        if limit <= 0:
            return []
        async with self._redis_client.aget_client() as redis:
            ids: list[str] = await redis.zrange(self._index_key, 0, limit - 1)
            if not ids:
                return []
            raw_entries: list[str | None] = await redis.mget([self._entry_key(i) for i in ids])

        return [DeadLetterEntry.model_validate_json(data) for data in raw_entries if data is not None]

    async def count(self) -> int:
        async with self._redis_client.aget_client() as redis:
            return int(await redis.zcard(self._index_key))
