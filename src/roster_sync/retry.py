"""roster_sync.retry

Bounded retry with linear backoff, plus the fixed inter-call pause used to
stay under the remote store's rate limit.

Both take an injectable ``sleep`` so tests run without real delays.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]


def retry_all(exc: BaseException) -> bool:
    """Treat every error as retryable."""
    return True


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

@dataclass
class RateLimiter:
    """Fixed pause between remote calls (single thread, no jitter)."""

    delay_seconds: float = 0.35
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    pauses: int = field(default=0, init=False)

    def pause(self) -> None:
        self.pauses += 1
        if self.delay_seconds > 0:
            self.sleep(self.delay_seconds)


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass
class RetryPolicy:
    """Attempt an operation up to max_attempts times.

    After failed attempt N (when retryable and not the last), waits
    ``base_delay * N`` seconds.  The last exception is re-raised once
    attempts are exhausted or the predicate rejects the error.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    is_retryable: RetryPredicate = retry_all
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def backoff(self, attempt: int) -> float:
        return self.base_delay * attempt

    def call(self, fn: Callable[[], T], description: str = "remote call") -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except Exception as exc:
                if not self.is_retryable(exc):
                    log.warning("%s failed (not retryable): %s", description, exc)
                    raise
                if attempt >= self.max_attempts:
                    log.warning(
                        "%s failed after %d attempts: %s",
                        description, attempt, exc,
                    )
                    raise
                delay = self.backoff(attempt)
                log.info(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    description, attempt, self.max_attempts, delay, exc,
                )
                self.sleep(delay)
        raise AssertionError("unreachable")
