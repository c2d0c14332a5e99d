"""Exponential backoff policies.

``delay = min(base * multiplier ** (attempt - 1), cap)`` with a 1-indexed
attempt. Non-retryable kinds always stop. The attempt ceiling is enforced
separately from the delay by :meth:`RetryPolicy.decide`.
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from .errors import ErrorKind, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy(BaseModel):
    max_attempts: int = Field(3, ge=1)
    base_delay: float = Field(1.0, ge=0)
    multiplier: float = Field(2.0, ge=1)
    max_delay: float = Field(30.0, ge=0)

    model_config = {"frozen": True}

    def backoff(self, attempt: int) -> float:
        attempt = max(1, attempt)
        try:
            delay = self.base_delay * (self.multiplier ** (attempt - 1))
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def next_delay(self, kind: ErrorKind, attempt: int) -> Optional[float]:
        """Seconds to wait before the next attempt, or None to stop."""
        if not ErrorKind(kind).retryable:
            return None
        return self.backoff(attempt)

    def decide(self, kind: ErrorKind, attempt: int) -> Optional[float]:
        """Like next_delay, but also stops once ``attempt`` hits the ceiling."""
        if attempt >= self.max_attempts:
            return None
        return self.next_delay(kind, attempt)


TRANSIENT_POLICY = RetryPolicy(max_attempts=5, base_delay=1.0, multiplier=2.0, max_delay=30.0)
AZURE_POLICY = RetryPolicy(max_attempts=3, base_delay=2.0, multiplier=1.5, max_delay=20.0)
CRITICAL_POLICY = RetryPolicy(max_attempts=7, base_delay=0.5, multiplier=2.0, max_delay=60.0)

RESOLUTION_POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0, max_delay=30.0)
POLL_POLICY = RetryPolicy(max_attempts=30, base_delay=60.0, multiplier=1.5, max_delay=600.0)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Sleep,
    operation: Optional[str] = None,
) -> T:
    """Await ``fn()`` until it succeeds or ``policy`` says stop.

    Every failure is classified; the last ClassifiedError is raised. Waiting
    goes through ``sleep`` so callers control the timer.
    """
    attempt = 1
    while True:
        try:
            return await fn()
        except Exception as e:
            error = classify(e, operation=operation)
            delay = policy.decide(error.kind, attempt)
            if delay is None:
                if error is e:
                    raise
                raise error from e
            logger.warning(
                f"Attempt {attempt}/{policy.max_attempts} failed [{error.kind.value}]: "
                f"{error.message}; retrying in {delay:g}s"
            )
        await sleep(delay)
        attempt += 1
