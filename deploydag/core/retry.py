"""Retry policy with exponential backoff and jitter for stage attempts.

The primary interface is ``execute_with_retry``, which wraps an async
callable and retries it only for the exception types given in ``retry_on``.

Examples
--------
Basic usage::

    config = RetryConfig(max_attempts=3)
    result = await execute_with_retry(attempt_fn, config, retry_on=(InfrastructureFailure,))
"""

from __future__ import annotations

import asyncio
import random
from contextlib import suppress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from deploydag.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Configuration for retry behavior.

    Parameters
    ----------
    max_attempts : int
        Total number of attempts. 1 means no retries (single attempt).
    delay : float
        Initial delay in seconds before the first retry.
    backoff : float
        Multiplier applied to the delay after each retry.
    max_delay : float
        Maximum delay cap in seconds, applied before jitter.
    jitter : float
        Fraction of the delay added or removed at random (0.1 = ±10%).
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")

    @property
    def has_retries(self) -> bool:
        """Whether this config enables retries (max_attempts > 1)."""
        return self.max_attempts > 1

    def base_delay(self, attempt: int) -> float:
        """Delay before the next attempt, without jitter (attempt is 1-indexed).

        >>> cfg = RetryConfig(delay=1.0, backoff=2.0, max_delay=10.0)
        >>> [cfg.base_delay(n) for n in (1, 2, 3, 10)]
        [1.0, 2.0, 4.0, 10.0]
        """
        return min(self.delay * (self.backoff ** (attempt - 1)), self.max_delay)

    def compute_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay before the next attempt with jitter applied."""
        base = self.base_delay(attempt)
        if not self.jitter:
            return base
        spread = base * self.jitter
        return max(0.0, base + (rng or random).uniform(-spread, spread))


async def execute_with_retry(
    fn: Callable[[int], Awaitable[Any]],
    config: RetryConfig,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    should_continue: Callable[[], bool] | None = None,
    on_retry: Callable[[int, int, BaseException, float], Any] | None = None,
    interrupt: asyncio.Event | None = None,
) -> Any:
    """Execute an async callable with retry and exponential backoff.

    Parameters
    ----------
    fn : Callable[[int], Awaitable[Any]]
        Async callable receiving the 1-indexed attempt number.
    config : RetryConfig
        Retry configuration.
    retry_on : tuple of exception types
        Only these exceptions trigger a retry; anything else propagates at once.
    should_continue : callable, optional
        Checked before and after each backoff sleep; returning False re-raises
        the last error instead of starting another attempt.
    on_retry : callable, optional
        Invoked before each retry sleep with ``(attempt, max_attempts, error, delay)``.
    interrupt : asyncio.Event, optional
        Setting this event cuts the backoff sleep short.

    Returns
    -------
    Any
        The return value of *fn*.

    Examples
    --------
    >>> async def ok(attempt): return attempt
    >>> asyncio.run(execute_with_retry(ok, RetryConfig()))
    1
    """
    for attempt in range(1, config.max_attempts + 1):
        try:
            return await fn(attempt)
        except retry_on as exc:
            if attempt >= config.max_attempts:
                raise
            if should_continue is not None and not should_continue():
                raise
            delay = config.compute_delay(attempt)
            if on_retry is not None:
                on_retry(attempt, config.max_attempts, exc, delay)
            await _backoff(delay, interrupt)
            if should_continue is not None and not should_continue():
                raise

    raise AssertionError("unreachable")  # pragma: no cover


async def _backoff(delay: float, interrupt: asyncio.Event | None) -> None:
    if interrupt is None:
        await asyncio.sleep(delay)
        return
    with suppress(TimeoutError):
        await asyncio.wait_for(interrupt.wait(), delay)
