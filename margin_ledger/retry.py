"""Retry policy for transient failures, kept apart from business logic."""
from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

from .errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed backoff with jitter, bounded attempts and a per-attempt timeout.

    ``max_attempts`` of None retries until the operation succeeds or raises a
    non-retryable error.
    """

    max_attempts: int | None = 5
    backoff_seconds: float = 2.0
    jitter_seconds: float = 0.5
    timeout_seconds: float | None = 30.0
    retryable: tuple[type[BaseException], ...] = (TransientError, asyncio.TimeoutError)

    def with_retryable(self, *extra: type[BaseException]) -> RetryPolicy:
        return replace(self, retryable=self.retryable + extra)

    def delay(self) -> float:
        if self.jitter_seconds <= 0:
            return self.backoff_seconds
        return self.backoff_seconds + random.uniform(0, self.jitter_seconds)

    async def run(
        self,
        label: str,
        fn: Callable[[], Awaitable[T]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Await ``fn()`` until it succeeds.

        ``fn`` is called afresh on every attempt so it can re-read state.
        The last retryable error is re-raised once attempts are exhausted.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if self.timeout_seconds is None:
                    return await fn()
                return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
            except self.retryable as e:
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    logger.error("%s failed after %d attempts: %s", label, attempt, e)
                    raise
                wait = self.delay()
                logger.warning(
                    "%s failed (attempt %d): %s. Retrying in %.1fs",
                    label,
                    attempt,
                    str(e) or type(e).__name__,
                    wait,
                )
                await sleep(wait)


NO_RETRY = RetryPolicy(max_attempts=1, backoff_seconds=0, jitter_seconds=0)
