from __future__ import annotations

from .backoff import BackoffPolicy, ExponentialBackoff, FixedBackoff
from .config import BackoffConfig, RetryConfig
from .retry import retry

__all__ = [
    "BackoffConfig",
    "BackoffPolicy",
    "ExponentialBackoff",
    "FixedBackoff",
    "RetryConfig",
    "retry",
]
