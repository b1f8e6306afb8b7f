from __future__ import annotations

import ssl as ssl_module
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class RedisConnectionSettings(BaseModel):
    """Where the queue keys live. One database per deployment; queues are separated by key prefix."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, ge=1, le=65535, description="Redis port")
    db: int = Field(default=0, ge=0, le=15, description="Redis database number")
    username: str | None = Field(default=None, description="Redis username for ACL (Redis 6+)")
    password: SecretStr | None = Field(default=None, description="Redis password for authentication")


class RedisSSLSettings(BaseModel):
    """TLS for managed Redis endpoints."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False, description="Enable SSL/TLS connections")
    ssl_ca_certs: str | None = Field(default=None, description="Path to CA certificate for SSL verification")


class RedisPoolSettings(BaseModel):
    """Redis connection pool settings.

    Every in-flight claim or terminal write holds one connection for the
    duration of its WATCH/MULTI/EXEC round trip, so size the pool for the
    total worker concurrency of the process.
    """

    model_config = ConfigDict(extra="forbid")

    max_connections: int = Field(default=50, ge=1, le=1000, description="Maximum connections in pool")
    health_check_interval: int = Field(default=30, ge=1, le=300, description="Health check interval in seconds")


class RedisDriverSettings(BaseModel):
    """Socket behaviour passed straight to redis-py."""

    model_config = ConfigDict(extra="forbid")

    socket_keepalive: bool = Field(default=True, description="Enable TCP keepalive")
    socket_timeout: float = Field(default=1.0, ge=0.1, le=60.0, description="Socket timeout in seconds")
    socket_connect_timeout: float = Field(
        default=5.0, ge=0.1, le=60.0, description="Socket connect timeout in seconds"
    )
    retry_on_timeout: bool = Field(default=False, description="Let the driver retry timed-out commands itself")


class RedisConfig(BaseModel):
    """Redis configuration for the message store backend.

    Responses are always decoded to ``str``; the store serialises records as JSON.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, validate_assignment=True)

    connection: RedisConnectionSettings = Field(default_factory=RedisConnectionSettings)
    ssl: RedisSSLSettings = Field(default_factory=RedisSSLSettings)
    pool: RedisPoolSettings = Field(default_factory=RedisPoolSettings)
    driver: RedisDriverSettings = Field(default_factory=RedisDriverSettings)

    @property
    def url(self) -> str:
        """``redis://`` or ``rediss://`` URL, with credentials when set."""
        auth = ""
        if self.connection.username and self.connection.password:
            auth = f"{self.connection.username}:{self.connection.password.get_secret_value()}@"
        elif self.connection.password and self.connection.password.get_secret_value():
            auth = f":{self.connection.password.get_secret_value()}@"

        protocol = "rediss" if self.ssl.enabled else "redis"
        return f"{protocol}://{auth}{self.connection.host}:{self.connection.port}/{self.connection.db}"

    def get_connection_pool_kwargs(self) -> dict[str, Any]:
        """Flatten the nested settings into ``ConnectionPool`` arguments.

        Returns
        -------
        dict[str, Any]
            Keyword arguments with ``decode_responses`` forced on.
        """
        password = self.connection.password.get_secret_value() if self.connection.password else None

        kwargs: dict[str, Any] = {
            **self.connection.model_dump(exclude={"password"}),
            "password": password or None,
            **self.pool.model_dump(),
            **self.driver.model_dump(),
            "decode_responses": True,
        }

        if self.ssl.enabled:
            kwargs["connection_class"] = _ssl_connection_class()
            kwargs["ssl_ca_certs"] = self.ssl.ssl_ca_certs
            kwargs["ssl_cert_reqs"] = ssl_module.CERT_REQUIRED

        return kwargs


def _ssl_connection_class() -> type:
    from redis.asyncio.connection import SSLConnection

    return SSLConnection
