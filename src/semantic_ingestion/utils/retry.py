"""Retry with exponential backoff and jitter for network-facing calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_random,
)

from semantic_ingestion.config import get_settings
from semantic_ingestion.utils.errors import NotFoundError, ValidationError
from semantic_ingestion.utils.logging import get_logger

logger = get_logger("retry")
settings = get_settings()

T = TypeVar("T")

# Invariant violations fail fast; retrying cannot fix them.
NON_RETRYABLE_ERRORS = (ValidationError, NotFoundError)


class RetryPolicy:
    """
    Exponential backoff with jitter.

    Attempt 1 runs immediately. After the k-th failure (k <= retries) the policy
    waits ``initial_delay * 2 ** (k - 1)`` seconds plus a uniform jitter in
    ``[0, max_jitter]``, then tries again. Once the retry budget is spent the
    original exception propagates unchanged.
    """

    def __init__(
        self,
        retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
        max_jitter: Optional[float] = None,
        deadline: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.retries = max(0, settings.retry.max_retries if retries is None else retries)
        self.initial_delay = settings.retry.initial_delay if initial_delay is None else initial_delay
        self.max_jitter = settings.retry.max_jitter if max_jitter is None else max_jitter
        self.deadline = settings.retry.deadline if deadline is None else deadline
        self._sleep = sleep

    def schedule(self) -> List[float]:
        """Base delays (without jitter) waited before each retry."""
        return [self.initial_delay * 2**k for k in range(self.retries)]

    def _retrying(self) -> AsyncRetrying:
        stop = stop_after_attempt(self.retries + 1)
        if self.deadline is not None:
            stop = stop | stop_after_delay(self.deadline)
        return AsyncRetrying(
            reraise=True,
            stop=stop,
            wait=wait_exponential(multiplier=self.initial_delay, exp_base=2)
            + wait_random(0, self.max_jitter),
            retry=retry_if_not_exception_type(NON_RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
        )

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Invoke ``fn`` until it succeeds or the retry budget is exhausted."""
        async for attempt in self._retrying():
            with attempt:
                return await fn()
        # unreachable due to reraise=True
        raise RuntimeError("Retry loop exited without a result")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    retries: Optional[int] = None,
    delay: Optional[float] = None,
    **kwargs,
) -> T:
    """
    Invoke ``fn`` with exponential backoff.

    Args:
        fn: Zero-argument coroutine factory
        retries: Retries after the first attempt (defaults to MAX_RETRIES)
        delay: Initial delay in seconds, doubled on every retry
        **kwargs: Extra RetryPolicy options (max_jitter, deadline, sleep)

    Returns:
        Whatever ``fn`` returns on its first successful attempt
    """
    return await RetryPolicy(retries=retries, initial_delay=delay, **kwargs).run(fn)
