"""
Centralized retry and backoff configuration for provider calls.
Consolidates retry budgets, exponential backoff and jitter.
"""

import asyncio
import logging
import os
import random
from typing import Callable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)
# tenacity's before_sleep_log formats with %-style args
_std_logger = logging.getLogger(__name__)


class RetryConfig:
    """Centralized retry configuration loaded from environment."""

    # Provider calls (LLM-backed generation and fact checking)
    LLM_BACKOFF_MIN_SEC = float(os.getenv("LLM_BACKOFF_MIN_SEC", "2"))
    LLM_BACKOFF_MAX_SEC = float(os.getenv("LLM_BACKOFF_MAX_SEC", "8"))

    # Exponential backoff for instrumented retries
    BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "1"))
    BACKOFF_FACTOR = float(os.getenv("RETRY_BACKOFF_FACTOR", "2"))
    MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "30"))
    JITTER = os.getenv("RETRY_JITTER", "full").lower()


def apply_jitter(delay: float, jitter_mode: str = "full") -> float:
    """
    Apply jitter to a delay value to prevent thundering herd.

    Args:
        delay: Base delay in seconds
        jitter_mode: "full", "equal", or "none"

    Returns:
        Jittered delay in seconds
    """
    if delay <= 0:
        return 0.0
    if jitter_mode == "full":
        return random.uniform(0, delay)
    if jitter_mode == "equal":
        return delay / 2 + random.uniform(0, delay / 2)
    return delay


def calculate_exponential_backoff(
    attempt: int,
    base_delay: Optional[float] = None,
    factor: Optional[float] = None,
    max_delay: Optional[float] = None,
    jitter_mode: Optional[str] = None,
) -> float:
    """
    Calculate exponential backoff delay with optional jitter.
    """
    base = RetryConfig.BASE_DELAY if base_delay is None else base_delay
    fac = RetryConfig.BACKOFF_FACTOR if factor is None else factor
    cap = RetryConfig.MAX_DELAY if max_delay is None else max_delay
    jitter = jitter_mode or RetryConfig.JITTER

    delay = base * (fac ** max(0, attempt - 1))
    delay = min(delay, cap)
    return apply_jitter(delay, jitter)


def build_async_retrying(
    max_attempts: int,
    min_wait: Optional[float] = None,
    max_wait: Optional[float] = None,
    exceptions: tuple = (Exception,),
) -> AsyncRetrying:
    """
    Standardized tenacity controller for provider batches.

    Usage::

        async for attempt in build_async_retrying(3):
            with attempt:
                await provider_call()
    """
    min_wait = RetryConfig.LLM_BACKOFF_MIN_SEC if min_wait is None else min_wait
    max_wait = RetryConfig.LLM_BACKOFF_MAX_SEC if max_wait is None else max_wait
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(_std_logger, logging.INFO),
        reraise=True,
    )


async def instrumented_retry(
    func: Callable,
    *args,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    factor: Optional[float] = None,
    max_delay: Optional[float] = None,
    jitter_mode: Optional[str] = None,
    exceptions: tuple = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    on_give_up: Optional[Callable[[int, Exception], None]] = None,
    **kwargs,
):
    """
    Retry an async function with backoff and optional hooks.

    ``max_attempts`` counts the first call, so two retries means three
    attempts. Cancellation is never retried.
    """
    max_attempts = max(1, max_attempts or 1)

    last_exception: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except exceptions as e:  # type: ignore[misc]
            last_exception = e
            if attempt >= max_attempts:
                try:
                    if on_give_up:
                        on_give_up(attempt, e)
                finally:
                    logger.error(
                        "Max retries exhausted",
                        function=getattr(func, "__name__", "unknown"),
                        attempt=attempt,
                        max_attempts=max_attempts,
                        exception=str(e),
                    )
                raise

            delay = calculate_exponential_backoff(
                attempt=attempt,
                base_delay=base_delay,
                factor=factor,
                max_delay=max_delay,
                jitter_mode=jitter_mode,
            )

            try:
                if on_retry:
                    on_retry(attempt, e, delay)
            finally:
                logger.info(
                    "Retrying function after backoff",
                    function=getattr(func, "__name__", "unknown"),
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay=delay,
                    exception=str(e),
                )

            await asyncio.sleep(delay)

    if last_exception:
        raise last_exception
    raise RuntimeError("instrumented_retry: exhausted attempts")
