from __future__ import annotations

from collections.abc import Callable, Coroutine
from functools import wraps
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from ..logger import get_logger
from .config import RetryConfig

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger
    from tenacity.retry import retry_base

logger: BoundLogger = get_logger(__name__)

type BeforeSleep = Callable[[RetryCallState], None]
type StoreCall[**P, R] = Callable[P, Coroutine[object, object, R]]


def _log_before_sleep(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    logger.warning(
        "Store call failed, retrying",
        operation=getattr(retry_state.fn, "__qualname__", None),
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.upcoming_sleep, 3),
        error=str(error) if error else None,
    )


def _retry_condition(config: RetryConfig) -> retry_base:
    condition: retry_base = retry_if_exception_type(config.retry_on_exceptions)
    if config.never_retry_on:
        condition &= retry_if_not_exception_type(config.never_retry_on)
    return condition


def retry[**P, R](
    config: RetryConfig | None = None,
    *,
    before_sleep: BeforeSleep | None = None,
) -> Callable[[StoreCall[P, R]], StoreCall[P, R]]:
    """Decorate an async store call so transient outages are retried.

    Only exceptions in ``config.retry_on_exceptions`` (``StoreUnavailableError``
    by default) trigger another attempt; version conflicts and domain errors
    surface on the first call. Waits use tenacity's full-jitter exponential
    backoff. Once attempts run out the last error is re-raised, or wrapped
    in ``tenacity.RetryError`` when ``config.reraise`` is False.

    Examples
    --------
    >>> write = retry(RetryConfig(max_attempts=5))(store.update_conditional)
    >>> result = await write("m-1", {"status": "completed"}, if_match=version)
    """
    cfg = config or RetryConfig()
    stop = stop_after_attempt(cfg.max_attempts)
    wait = wait_random_exponential(
        multiplier=cfg.multiplier,
        min=cfg.wait_min,
        max=cfg.wait_max,
        exp_base=cfg.exp_base,
    )
    condition = _retry_condition(cfg)

    def decorator(func: StoreCall[P, R]) -> StoreCall[P, R]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            retrying = AsyncRetrying(
                stop=stop,
                wait=wait,
                retry=condition,
                before_sleep=before_sleep or _log_before_sleep,
                reraise=cfg.reraise,
            )
            return await retrying(func, *args, **kwargs)

        return wrapper

    return decorator
