"""
Retry utilities for provider calls.

Only provider rate limiting is retried here, with a bounded, fixed-delay
backoff. Authorization failures are handled separately by the report
fetcher and are never looped.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from app.utils.logger import log


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        """Record a retry attempt."""
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def mark_success(self):
        """Mark the operation as successful."""
        self.success = True

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]  # Cap at 5 errors
        }


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation (1.0 = fixed delay)
        jitter: Add randomness to prevent thundering herd

    Returns:
        Delay in seconds
    """
    delay = base_delay * (exponential_base ** (attempt - 1))
    delay = min(delay, max_delay)

    if jitter:
        delay += delay * random.uniform(0, 0.25)

    return delay


class RetryContext:
    """
    Retries an async callable while a predicate says the error is retryable.

    Usage:
        ctx = RetryContext(max_attempts=3, base_delay=5.0, is_retryable=is_rate_limited)
        response = await ctx.execute(client.get, url)
        print(ctx.stats.to_dict())
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 1.0,
        jitter: bool = False,
        is_retryable: Callable[[Exception], bool] = lambda e: False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.is_retryable = is_retryable
        self.sleep = sleep
        self.stats = RetryStats()

    async def execute(self, func: Callable[..., Awaitable], *args, **kwargs):
        """Execute a function with retry logic."""
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await func(*args, **kwargs)
                self.stats.record_attempt()
                self.stats.mark_success()
                return result

            except Exception as e:
                last_error = e

                if attempt >= self.max_attempts or not self.is_retryable(e):
                    self.stats.record_attempt(error=e)
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.base_delay,
                    max_delay=self.max_delay,
                    exponential_base=self.exponential_base,
                    jitter=self.jitter,
                )
                self.stats.record_attempt(error=e, delay=delay)

                log.warning(
                    f"Attempt {attempt} failed: {e}. Retrying in {delay:.1f}s..."
                )

                await self.sleep(delay)

        raise last_error if last_error else RuntimeError("Retry exhausted")
