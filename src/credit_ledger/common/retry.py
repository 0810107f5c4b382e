"""Bounded retry with exponential backoff.

One strategy object is shared by the chain RPC client, the datastore steps of
the verification coordinator and the SDK client, instead of each call site
carrying its own loop.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry ``max_attempts`` times, sleeping ``base_delay * 2**attempt`` (+ jitter) between tries."""

    max_attempts: int = 3
    base_delay: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    jitter: float = 0.1

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (2 ** attempt)
        if self.jitter:
            delay += random.uniform(0, self.jitter * self.base_delay)
        return delay

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Await ``fn()`` until it succeeds or attempts are exhausted.

        The last exception is re-raised once retries run out; exceptions not
        listed in ``retry_on`` propagate immediately.
        """
        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                return await fn()
            except self.retry_on as exc:
                if attempt == attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                logger.debug(
                    "Attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt + 1, attempts, exc, delay,
                )
                await sleep(delay)
        raise RuntimeError("unreachable")

    def run_sync(
        self,
        fn: Callable[[], T],
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Blocking counterpart of :meth:`run` for sync callers."""
        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                return fn()
            except self.retry_on:
                if attempt == attempts - 1:
                    raise
                sleep(self.delay_for(attempt))
        raise RuntimeError("unreachable")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    return await RetryPolicy(max_attempts, base_delay, retry_on).run(fn)
