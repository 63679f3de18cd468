"""Retry Policy - exponential backoff with jitter for transient provider failures.

Invariants:
    - Only ProviderError with retryable=True is retried; everything else propagates at once
    - A Retry-After hint from the provider overrides the computed backoff
    - At most max_retries retries: max_retries + 1 attempts in total
    - Streaming calls are never retried here; the caller decides

Design Decisions:
    - ±25% jitter on backoff: prevents thundering herd on shared rate limits
    - sleep is injectable so tests run without wall-clock delays
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Mapping, TypeVar

from pi_runtime.core.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_retry_after(headers: Mapping[str, str] | None) -> int | None:
    """Extract the retry hint in milliseconds (retry-after-ms, then retry-after seconds)."""
    if not headers:
        return None
    try:
        ms = headers.get("retry-after-ms")
        if ms:
            return int(float(ms))
        seconds = headers.get("retry-after")
        if seconds:
            return int(float(seconds) * 1000)
    except ValueError:
        return None  # HTTP-date form is not used by the supported providers
    return None


class RetryPolicy:

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 60_000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep

    def backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        *,
        provider: str | None = None,
        model: str | None = None,
    ) -> T:
        """Invoke call() until it succeeds, fails permanently, or retries run out."""
        for attempt in range(self.max_retries + 1):
            try:
                return await call()
            except ProviderError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                delay = e.context.retry_after_ms or self.backoff(attempt)
                logger.warning(
                    "Transient provider error, retry after %dms: %s", delay, e.message,
                    extra={
                        "provider": provider, "model": model,
                        "attempt": attempt + 1, "status": e.status,
                    },
                )
                await self._sleep(delay / 1000)
        raise AssertionError("unreachable")
