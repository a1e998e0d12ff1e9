"""Retry-with-backoff for remote calls."""

import logging
import random
import time
from dataclasses import dataclass, replace
from typing import Callable, TypeVar

from .errors import RateLimited, RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: Exception) -> bool:
    return isinstance(error, RemoteError) and error.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to wait before retrying a failed call.

    Rate-limited calls wait ``Retry-After`` when the server sent one and
    ``rate_limit_backoff`` otherwise. Other retryable failures back off
    exponentially from ``base_delay`` (doubling, plus jitter) up to
    ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 60.0
    rate_limit_backoff: float = 60.0
    jitter: float = 1.0

    def delay_for(self, error: Exception, attempt: int) -> float:
        if isinstance(error, RateLimited):
            if error.retry_after is not None:
                return min(error.retry_after, self.max_delay)
            return self.rate_limit_backoff
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return min(delay, self.max_delay)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return replace(self, max_attempts=max_attempts)

    def call(
        self,
        func: Callable[[], T],
        description: str = "request",
        retryable: Callable[[Exception], bool] = is_retryable,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Call ``func`` until it succeeds, fails fatally, or attempts run out.

        Raises:
            Exception: The last error raised by ``func``
        """
        attempt = 1
        while True:
            try:
                return func()
            except Exception as e:
                if not retryable(e) or attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(e, attempt)
                logger.warning(
                    f"{description} failed: {e}. Retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_attempts})"
                )
                sleep(delay)
                attempt += 1
