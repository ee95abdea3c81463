"""Tests for deploydag.core.retry module."""

import asyncio
import random
import time

import pytest

from deploydag.core.exceptions import ApplicationFailure, InfrastructureFailure
from deploydag.core.retry import RetryConfig, execute_with_retry


class TestRetryConfig:
    """Tests for RetryConfig dataclass."""

    def test_defaults(self) -> None:
        cfg = RetryConfig()
        assert cfg.max_attempts == 3
        assert cfg.delay == 1.0
        assert cfg.backoff == 2.0
        assert cfg.max_delay == 60.0
        assert cfg.jitter == 0.1

    def test_has_retries(self) -> None:
        assert RetryConfig(max_attempts=2).has_retries is True
        assert RetryConfig(max_attempts=1).has_retries is False

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"jitter": -0.1}, {"jitter": 1.5}])
    def test_invalid(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_base_delay_exponential_and_capped(self) -> None:
        cfg = RetryConfig(delay=1.0, backoff=10.0, max_delay=5.0)
        assert cfg.base_delay(1) == 1.0
        assert cfg.base_delay(2) == 5.0
        assert cfg.base_delay(3) == 5.0

    def test_compute_delay_without_jitter(self) -> None:
        cfg = RetryConfig(delay=2.0, jitter=0.0)
        assert cfg.compute_delay(2) == 4.0

    def test_compute_delay_jitter_bounds(self) -> None:
        cfg = RetryConfig(delay=10.0, jitter=0.2)
        rng = random.Random(42)
        delays = [cfg.compute_delay(1, rng) for _ in range(200)]
        assert all(8.0 <= d <= 12.0 for d in delays)
        assert len(set(delays)) > 1

    def test_frozen(self) -> None:
        cfg = RetryConfig()
        with pytest.raises(AttributeError):
            cfg.max_attempts = 5  # type: ignore[misc]


class TestExecuteWithRetry:
    """Tests for execute_with_retry function."""

    @pytest.fixture
    def cfg(self) -> RetryConfig:
        return RetryConfig(max_attempts=3, delay=0.0, jitter=0.0)

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, cfg: RetryConfig) -> None:
        async def ok(attempt: int) -> int:
            return attempt

        assert await execute_with_retry(ok, cfg) == 1

    @pytest.mark.asyncio
    async def test_success_after_retries(self, cfg: RetryConfig) -> None:
        seen: list[int] = []

        async def flaky(attempt: int) -> str:
            seen.append(attempt)
            if attempt < 3:
                raise InfrastructureFailure("deploy-qa", "unreachable")
            return "done"

        result = await execute_with_retry(flaky, cfg, retry_on=(InfrastructureFailure,))
        assert result == "done"
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_exhausted_reraises_last_error(self, cfg: RetryConfig) -> None:
        calls = 0

        async def always_fails(attempt: int) -> None:
            nonlocal calls
            calls += 1
            raise InfrastructureFailure("deploy-qa", f"attempt {attempt}")

        with pytest.raises(InfrastructureFailure, match="attempt 3"):
            await execute_with_retry(always_fails, cfg, retry_on=(InfrastructureFailure,))
        assert calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self, cfg: RetryConfig) -> None:
        calls = 0

        async def app_failure(attempt: int) -> None:
            nonlocal calls
            calls += 1
            raise ApplicationFailure("deploy-qa", "test failed")

        with pytest.raises(ApplicationFailure):
            await execute_with_retry(app_failure, cfg, retry_on=(InfrastructureFailure,))
        assert calls == 1

    @pytest.mark.asyncio
    async def test_should_continue_stops_retries(self, cfg: RetryConfig) -> None:
        calls = 0

        async def fails(attempt: int) -> None:
            nonlocal calls
            calls += 1
            raise InfrastructureFailure("deploy-qa", "timeout")

        with pytest.raises(InfrastructureFailure):
            await execute_with_retry(
                fails, cfg, retry_on=(InfrastructureFailure,), should_continue=lambda: False
            )
        assert calls == 1

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, cfg: RetryConfig) -> None:
        events: list[tuple[int, int, str, float]] = []

        async def fails_once(attempt: int) -> str:
            if attempt == 1:
                raise InfrastructureFailure("deploy-qa", "flaky")
            return "ok"

        await execute_with_retry(
            fails_once,
            cfg,
            retry_on=(InfrastructureFailure,),
            on_retry=lambda n, total, err, delay: events.append((n, total, err.reason, delay)),
        )
        assert events == [(1, 3, "flaky", 0.0)]

    @pytest.mark.asyncio
    async def test_single_attempt_config(self) -> None:
        async def fails(attempt: int) -> None:
            raise InfrastructureFailure("deploy-qa", "down")

        with pytest.raises(InfrastructureFailure):
            await execute_with_retry(fails, RetryConfig(max_attempts=1))

    @pytest.mark.asyncio
    async def test_interrupt_cuts_backoff_and_stops_retries(self) -> None:
        stop = asyncio.Event()
        calls = 0

        async def fails(attempt: int) -> None:
            nonlocal calls
            calls += 1
            asyncio.get_running_loop().call_later(0.05, stop.set)
            raise InfrastructureFailure("deploy-qa", "flaky")

        started = time.monotonic()
        with pytest.raises(InfrastructureFailure):
            await execute_with_retry(
                fails,
                RetryConfig(max_attempts=3, delay=30.0, jitter=0.0),
                retry_on=(InfrastructureFailure,),
                should_continue=lambda: not stop.is_set(),
                interrupt=stop,
            )
        assert calls == 1
        assert time.monotonic() - started < 5

    @pytest.mark.asyncio
    async def test_interrupt_without_stop_condition_only_shortens_sleep(self) -> None:
        wake = asyncio.Event()
        wake.set()

        async def fails_once(attempt: int) -> int:
            if attempt == 1:
                raise InfrastructureFailure("deploy-qa", "flaky")
            return attempt

        result = await execute_with_retry(
            fails_once,
            RetryConfig(max_attempts=2, delay=30.0, jitter=0.0),
            retry_on=(InfrastructureFailure,),
            interrupt=wake,
        )
        assert result == 2
