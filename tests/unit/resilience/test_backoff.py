from __future__ import annotations

import random

import pytest

from leasequeue.resilience import BackoffConfig, BackoffPolicy, ExponentialBackoff, FixedBackoff


class TestExponentialBackoff:
    def test_default_curve(self) -> None:
        backoff = ExponentialBackoff()

        assert [backoff.delay_ms(n) for n in range(0, 7)] == [0, 1000, 2000, 4000, 8000, 16000, 30000]

    def test_capped_at_max(self) -> None:
        backoff = ExponentialBackoff(BackoffConfig(base_ms=100, max_ms=250))

        assert backoff.delay_ms(1) == 100
        assert backoff.delay_ms(2) == 200
        assert backoff.delay_ms(3) == 250
        assert backoff.delay_ms(50) == 250

    def test_jitter_stays_non_decreasing(self) -> None:
        backoff = ExponentialBackoff(BackoffConfig(jitter=True), rng=random.Random(7))

        for _ in range(50):
            delays = [backoff.delay_ms(n) for n in range(1, 10)]
            assert delays == sorted(delays)
            assert all(d <= 30_000 for d in delays)

    def test_jitter_bounds(self) -> None:
        backoff = ExponentialBackoff(BackoffConfig(base_ms=1000, jitter=True), rng=random.Random(1))

        for _ in range(50):
            assert 2000 <= backoff.delay_ms(2) <= 3000

    def test_jitter_requires_steep_curve(self) -> None:
        with pytest.raises(ValueError, match="exp_base"):
            ExponentialBackoff(BackoffConfig(exp_base=1.2, jitter=True))


class TestFixedBackoff:
    def test_constant_delay(self) -> None:
        backoff = FixedBackoff(250)
        assert {backoff.delay_ms(n) for n in range(1, 6)} == {250}

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValueError):
            FixedBackoff(-1)


@pytest.mark.parametrize("policy", [ExponentialBackoff(), FixedBackoff()])
def test_policies_satisfy_protocol(policy: object) -> None:
    assert isinstance(policy, BackoffPolicy)
