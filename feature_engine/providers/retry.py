"""Bounded exponential backoff for provider calls."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from feature_engine import config
from feature_engine.errors import ProviderError

logger = logging.getLogger("feature_engine.providers")

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = config.PROVIDER_MAX_ATTEMPTS
    base_delay: float = config.PROVIDER_RETRY_BASE_DELAY
    max_delay: float = config.PROVIDER_RETRY_MAX_DELAY

    def delay_for(self, attempt: int, error: ProviderError) -> float:
        if error.retry_after is not None:
            return min(self.max_delay, max(0.0, float(error.retry_after)))
        return min(self.max_delay, self.base_delay * (2 ** attempt))


async def call_with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    description: str,
) -> T:
    """Run ``operation``, retrying retryable ProviderErrors.

    The last error is re-raised once attempts are exhausted; non-retryable
    errors are raised immediately.
    """
    attempts = max(1, policy.max_attempts)
    attempt = 0
    while True:
        try:
            return await operation()
        except ProviderError as exc:
            attempt += 1
            if not exc.retryable or attempt >= attempts:
                raise
            delay = policy.delay_for(attempt - 1, exc)
            logger.warning(
                "%s failed (%s, attempt %s/%s), retrying in %.1fs: %s",
                description, exc.kind, attempt, attempts, delay, exc,
            )
            await asyncio.sleep(delay)
