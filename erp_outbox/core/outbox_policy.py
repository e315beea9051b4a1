from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from erp_outbox.util.time import FAR_FUTURE

BACKOFF_FIXED = "fixed"
BACKOFF_EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryDecision:
    terminal: bool
    next_attempt_at: datetime


def decide_retry(attempts: int, now: datetime, *, max_attempts: int, retry_delay: timedelta) -> RetryDecision:
    """Outcome of a failed delivery.

    `attempts` is the post-increment count (the attempt that just failed is included).
    """

    if attempts >= max_attempts:
        return RetryDecision(terminal=True, next_attempt_at=FAR_FUTURE)
    return RetryDecision(terminal=False, next_attempt_at=now + retry_delay)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    retry_delay: timedelta = timedelta(seconds=30)
    backoff: str = BACKOFF_FIXED
    max_delay: timedelta = timedelta(hours=1)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff not in (BACKOFF_FIXED, BACKOFF_EXPONENTIAL):
            raise ValueError(f"Unknown backoff: {self.backoff}")

    def delay_for(self, attempts: int) -> timedelta:
        if self.backoff == BACKOFF_FIXED:
            return self.retry_delay
        # base, 2*base, 4*base, ... capped
        exp = max(0, attempts - 1)
        delay = self.retry_delay * (2 ** min(exp, 20))
        return min(delay, self.max_delay)

    @classmethod
    def from_options(cls, options) -> "RetryPolicy":
        return cls(
            max_attempts=options.max_attempts,
            retry_delay=timedelta(seconds=options.retry_delay_seconds),
            backoff=options.backoff,
            max_delay=timedelta(seconds=options.max_retry_delay_seconds),
        )
