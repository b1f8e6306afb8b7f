from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import StoreUnavailableError


class RetryConfig(BaseModel):
    """Retry settings for store round trips that must not be dropped on a blip.

    Uses tenacity's full-jitter exponential wait.
    See: https://aws.amazon.com/blogs/architecture/exponential-backoff-and-jitter/
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1, description="Maximum attempts including the first call")
    wait_min: float = Field(default=0.05, ge=0, description="Minimum wait time in seconds")
    wait_max: float = Field(default=1.0, ge=0, description="Maximum wait time in seconds")
    multiplier: float = Field(default=0.1, ge=0, description="Wait multiplier")
    exp_base: float = Field(default=2.0, ge=1, description="Exponential base")

    retry_on_exceptions: tuple[type[Exception], ...] = Field(
        default=(StoreUnavailableError,),
        description="Exception types that trigger a retry",
    )
    never_retry_on: tuple[type[Exception], ...] | None = Field(
        default=None,
        description="Exception types that are never retried (takes precedence over retry_on_exceptions)",
    )
    reraise: bool = Field(default=True, description="Reraise the last exception once attempts are exhausted")


class BackoffConfig(BaseModel):
    """Delay before a failed message becomes visible again."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_ms: int = Field(default=1000, ge=0, description="Delay after the first failed attempt")
    max_ms: int = Field(default=30_000, ge=0, description="Upper bound for any single delay")
    exp_base: float = Field(default=2.0, ge=1, description="Exponential base")
    jitter: bool = Field(default=False, description="Add random jitter on top of the non-decreasing floor")
