from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ...core.enums import HealthCheckStatus
from ...core.exceptions import StoreUnavailableError
from ...logger import get_logger

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

    from .config import RedisConfig

logger: BoundLogger = get_logger(__name__)

_TRANSIENT = (RedisConnectionError, RedisTimeoutError)


class RedisClient:
    """Pooled async Redis connection shared by the message and dead-letter stores.

    The pool is built from ``RedisConfig`` on ``ainitialize()`` and torn down on
    ``aclose()``; the stores never own it. Only standalone servers are
    supported: a conditional write WATCHes a message key and commits it with
    its index keys in one MULTI, which needs every key on one node.

    Connection and timeout failures surface as ``StoreUnavailableError``, the
    one infrastructure error the queue knows how to ride out.

    Examples
    --------
    >>> client = RedisClient(RedisConfig())
    >>> await client.ainitialize()
    >>> store = RedisMessageStore(client, "emails")
    >>> await client.aclose()
    """

    def __init__(self, config: RedisConfig) -> None:
        self.config = config
        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._redis is not None

    async def ainitialize(self) -> None:
        """Open the pool and PING once. Safe to call repeatedly.

        Raises
        ------
        StoreUnavailableError
            If the server cannot be reached; nothing is left open.
        """
        async with self._lock:
            if self._redis is not None:
                return

            pool = ConnectionPool(**self.config.get_connection_pool_kwargs())
            redis = Redis(connection_pool=pool)
            try:
                await redis.ping()  # type: ignore[misc]
            except _TRANSIENT as e:
                logger.error("Cannot reach Redis", host=self.config.connection.host, exc_info=e)
                await redis.aclose()
                await pool.aclose()
                raise StoreUnavailableError(f"Redis unavailable: {e}") from e

            self._pool, self._redis = pool, redis
            logger.info(
                "Redis pool opened",
                host=self.config.connection.host,
                port=self.config.connection.port,
                db=self.config.connection.db,
                max_connections=self.config.pool.max_connections,
                ssl=self.config.ssl.enabled,
            )

    async def aclose(self) -> None:
        redis, pool = self._redis, self._pool
        self._redis = self._pool = None
        if redis is not None:
            await redis.aclose()
        if pool is not None:
            await pool.aclose()
            logger.info("Redis pool closed", host=self.config.connection.host)

    async def ahealth_check(self) -> HealthCheckStatus:
        if self._redis is None:
            return HealthCheckStatus.INITIALIZING
        try:
            await self._redis.ping()  # type: ignore[misc]
        except _TRANSIENT as e:
            logger.warning("Redis health check failed", error=str(e))
            return HealthCheckStatus.UNHEALTHY
        return HealthCheckStatus.HEALTHY

    @property
    def client(self) -> Redis:
        """The raw client. Errors raised through it are not translated."""
        if self._redis is None:
            raise RuntimeError("Redis client not initialized")
        return self._redis

    @asynccontextmanager
    async def aget_client(self) -> AsyncIterator[Redis]:
        """Borrow the client for a block of commands.

        Raises
        ------
        RuntimeError
            If ``ainitialize()`` has not run.
        StoreUnavailableError
            If a command inside the block lost its connection or timed out.
        """
        redis = self.client
        try:
            yield redis
        except _TRANSIENT as e:
            logger.warning("Redis command failed", error=str(e), error_type=type(e).__name__)
            raise StoreUnavailableError(f"Redis unavailable: {e}") from e
