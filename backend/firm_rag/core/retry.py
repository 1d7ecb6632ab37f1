"""
Retry Policy  —  bounded exponential back-off for transient failures
════════════════════════════════════════════════════════════════════

  attempt   delay before the NEXT attempt
  ───────   ─────────────────────────────
     0      1000 ms
     1      2000 ms
     2      (none — attempt 2 is the last; the 4th call is never made)

  delay_for(n) = min(base_delay_ms × 2ⁿ, max_delay_ms)

Only failures whose ErrorCategory is retryable (network, rate_limited,
service_unavailable) are retried.  Everything else propagates immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from firm_rag.core.errors import classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts:  int = 3
    base_delay_ms: int = 1000
    max_delay_ms:  int = 10_000

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """`attempt` is the 0-based index of the attempt that just failed."""
        if attempt + 1 >= self.max_attempts:
            return False
        return classify_error(exc).retryable

    def delay_for(self, attempt: int) -> int:
        """Back-off in milliseconds after the 0-based `attempt` failed."""
        return min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        label: str = "call",
        sleep: SleepFn = asyncio.sleep,
    ) -> T:
        """
        Await `fn()` until it succeeds or the policy gives up.

        The last exception is re-raised unchanged so callers can classify
        or wrap it.  CancelledError is never caught.
        """
        attempt = 0
        while True:
            try:
                return await fn()
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    if attempt > 0:
                        logger.error(
                            "Retry exhausted | op=%s attempts=%d error=%s",
                            label, attempt + 1, type(exc).__name__,
                        )
                    raise

                delay_ms = self.delay_for(attempt)
                logger.warning(
                    "Retrying | op=%s attempt=%d delay_ms=%d category=%s error=%s",
                    label, attempt + 1, delay_ms, classify_error(exc).value, exc,
                )
                await sleep(delay_ms / 1000)
                attempt += 1


DEFAULT_RETRY_POLICY = RetryPolicy()
