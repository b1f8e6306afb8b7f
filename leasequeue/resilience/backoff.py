"""Retry scheduling policies for failed messages.

A policy maps the number of attempts already made to the delay before the
message becomes claimable again. Every policy must be non-decreasing in
``attempts``; nothing else about the curve is guaranteed to callers.
"""

from __future__ import annotations

import random
from typing import Protocol, runtime_checkable

from .config import BackoffConfig


@runtime_checkable
class BackoffPolicy(Protocol):
    def delay_ms(self, attempts: int) -> int: ...


class FixedBackoff:
    def __init__(self, delay_ms: int = 0) -> None:
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        self._delay_ms = delay_ms

    def delay_ms(self, attempts: int) -> int:
        return self._delay_ms


class ExponentialBackoff:
    """``base_ms * exp_base ** (attempts - 1)`` capped at ``max_ms``.

    With jitter enabled the result is drawn from ``[delay, delay * 1.5]`` (still
    capped). Because ``exp_base >= 1.5`` the next attempt's floor is at least
    this attempt's ceiling, so delays stay non-decreasing while retries of one
    batch spread out.
    """

    def __init__(self, config: BackoffConfig | None = None, rng: random.Random | None = None) -> None:
        self._config = config or BackoffConfig()
        if self._config.jitter and self._config.exp_base < 1.5:
            raise ValueError("jitter requires exp_base >= 1.5 to keep delays non-decreasing")
        self._rng = rng or random.Random()

    def _raw(self, attempts: int) -> int:
        cfg = self._config
        if attempts <= 0:
            return 0
        return int(min(cfg.base_ms * cfg.exp_base ** (attempts - 1), cfg.max_ms))

    def delay_ms(self, attempts: int) -> int:
        delay = self._raw(attempts)
        if not self._config.jitter or delay == 0:
            return delay
        upper = min(int(delay * 1.5), self._config.max_ms)
        return self._rng.randint(delay, max(delay, upper))
