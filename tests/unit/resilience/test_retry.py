from __future__ import annotations

from typing import Literal

import pytest
from tenacity import RetryCallState, RetryError

from leasequeue.core.exceptions import MessageNotFoundError, StoreUnavailableError
from leasequeue.resilience import RetryConfig, retry


@pytest.fixture
def fast_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        wait_min=0.0,
        wait_max=0.01,
        multiplier=0.001,
        exp_base=2.0,
    )


class TestRetryDecorator:
    """Async retry decorator used around store round trips."""

    @pytest.mark.asyncio
    async def test_succeeds_without_retry_when_no_error(self, fast_retry_config: RetryConfig) -> None:
        call_count = 0

        @retry(fast_retry_config)
        async def successful_function() -> Literal["success"]:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_function() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retries_store_outage_then_succeeds(self, fast_retry_config: RetryConfig) -> None:
        """Verify a transient outage is absorbed.

        Arrange
        -------
        - Function fails twice with StoreUnavailableError, then succeeds

        Assert
        ------
        - Success value is returned after exactly three calls
        """
        call_count = 0

        @retry(fast_retry_config)
        async def flaky_function() -> Literal["success"]:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise StoreUnavailableError(f"Transient failure #{call_count}")
            return "success"

        assert await flaky_function() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts_exhausted(self, fast_retry_config: RetryConfig) -> None:
        call_count = 0

        @retry(fast_retry_config)
        async def always_fails() -> str:
            nonlocal call_count
            call_count += 1
            raise StoreUnavailableError(f"Always fails - attempt {call_count}")

        with pytest.raises(StoreUnavailableError, match="attempt 3"):
            await always_fails()
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_does_not_retry_other_errors(self, fast_retry_config: RetryConfig) -> None:
        """Domain errors are not transient and must surface on the first call."""
        call_count = 0

        @retry(fast_retry_config)
        async def missing() -> None:
            nonlocal call_count
            call_count += 1
            raise MessageNotFoundError("m-1")

        with pytest.raises(MessageNotFoundError):
            await missing()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_never_retry_on_takes_precedence(self, fast_retry_config: RetryConfig) -> None:
        class PermanentOutage(StoreUnavailableError): ...

        config = fast_retry_config.model_copy(update={"never_retry_on": (PermanentOutage,)})
        call_count = 0

        @retry(config)
        async def permanent() -> None:
            nonlocal call_count
            call_count += 1
            raise PermanentOutage("gone")

        with pytest.raises(PermanentOutage):
            await permanent()
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_before_sleep_callback_is_invoked(self, fast_retry_config: RetryConfig) -> None:
        attempts_seen: list[int] = []

        def record(retry_state: RetryCallState) -> None:
            attempts_seen.append(retry_state.attempt_number)

        call_count = 0

        @retry(fast_retry_config, before_sleep=record)
        async def flaky() -> int:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise StoreUnavailableError("blip")
            return call_count

        assert await flaky() == 3
        assert attempts_seen == [1, 2]

    @pytest.mark.asyncio
    async def test_arguments_preserved(self, fast_retry_config: RetryConfig) -> None:
        @retry(fast_retry_config)
        async def echo(a: int, *, b: str) -> tuple[int, str]:
            return a, b

        assert await echo(1, b="x") == (1, "x")
        assert echo.__name__ == "echo"

    def test_default_config_targets_store_outages(self) -> None:
        config = RetryConfig()

        assert config.retry_on_exceptions == (StoreUnavailableError,)
        assert config.max_attempts == 3
        assert config.reraise is True

    @pytest.mark.asyncio
    async def test_wraps_in_retry_error_without_reraise(self, fast_retry_config: RetryConfig) -> None:
        config = fast_retry_config.model_copy(update={"reraise": False})

        @retry(config)
        async def down() -> None:
            raise StoreUnavailableError("down")

        with pytest.raises(RetryError):
            await down()
