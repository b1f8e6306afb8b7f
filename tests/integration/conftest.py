"""Fixtures backing the Redis store with a throwaway Redis container.

The container is started once per session; each test gets a fresh client on a
flushed database. Everything is skipped when no Docker daemon answers.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, cast

import pytest
from pydantic import SecretStr

from leasequeue.infrastructure.redis import (
    RedisClient,
    RedisConfig,
    RedisConnectionSettings,
    RedisDriverSettings,
    RedisPoolSettings,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

_DESKTOP_SOCKET = Path.home() / ".docker" / "run" / "docker.sock"


class RedisContainerProtocol(Protocol):
    def get_exposed_port(self, port: int) -> int: ...
    def get_container_host_ip(self) -> str: ...
    def start(self) -> RedisContainerProtocol: ...
    def stop(self) -> None: ...


def _docker_reachable() -> bool:
    """Ping the daemon from DOCKER_HOST, falling back to Docker Desktop's socket on macOS."""
    try:
        import docker  # type: ignore[import-untyped]
        from docker.errors import DockerException  # type: ignore[import-untyped]
    except ImportError:
        return False

    if not os.environ.get("DOCKER_HOST") and _DESKTOP_SOCKET.exists():
        os.environ["DOCKER_HOST"] = f"unix://{_DESKTOP_SOCKET}"

    try:
        docker.from_env().ping()
    except DockerException:
        return False
    return True


@pytest.fixture(scope="session")
def redis_container() -> Iterator[RedisContainerProtocol]:
    if not _docker_reachable():
        pytest.skip("Docker daemon not available; Redis integration tests need one")

    try:
        from testcontainers.redis import RedisContainer  # type: ignore[import-untyped]
    except ImportError as e:
        pytest.skip(f"testcontainers not installed: {e}")

    container = cast(RedisContainerProtocol, RedisContainer("redis:7-alpine"))
    container.start()
    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def redis_config(redis_container: RedisContainerProtocol) -> RedisConfig:
    return RedisConfig(
        connection=RedisConnectionSettings(
            host=redis_container.get_container_host_ip(),
            port=redis_container.get_exposed_port(6379),
            password=SecretStr(""),
        ),
        # Several engines share one client in these tests.
        pool=RedisPoolSettings(max_connections=20),
        driver=RedisDriverSettings(socket_timeout=30.0, socket_connect_timeout=10.0),
    )


@pytest.fixture
async def redis_client(redis_config: RedisConfig) -> AsyncIterator[RedisClient]:
    client = RedisClient(redis_config)
    await client.ainitialize()
    async with client.aget_client() as redis:
        await redis.flushdb()  # type: ignore[misc]

    try:
        yield client
    finally:
        await client.aclose()
