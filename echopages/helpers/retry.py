import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, TypeVar

from echopages.config import TTS_BACKOFF_SECONDS, TTS_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to attempt an operation and how long to wait in between.

    Every exception is retried the same way; the last one is re-raised once
    the attempts run out.
    """

    max_attempts: int = TTS_MAX_ATTEMPTS
    backoff_seconds: float = TTS_BACKOFF_SECONDS
    strategy: Literal["fixed", "exponential"] = "fixed"

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")

    @classmethod
    def no_wait(cls, max_attempts: int = TTS_MAX_ATTEMPTS) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, backoff_seconds=0)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        if self.strategy == "exponential":
            return self.backoff_seconds * 2 ** (attempt - 1)
        return self.backoff_seconds

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: Callable[[int, Exception], None] | None = None,
    ) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt == self.max_attempts:
                    raise
                logger.warning("Attempt %d/%d failed: %s", attempt, self.max_attempts, e)
                if on_retry is not None:
                    on_retry(attempt, e)
                wait = self.delay(attempt)
                if wait > 0:
                    await asyncio.sleep(wait)
