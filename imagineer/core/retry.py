"""Exponential-backoff retry policy for completion calls."""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from imagineer.core.exceptions import (
    APIClientError,
    QuotaExceededError,
    RateLimitError,
    ServiceUnavailableError,
)
from imagineer.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[APIClientError], ...] = (RateLimitError, ServiceUnavailableError)


class RetryPolicy:
    """Retries transient provider failures and fails fast on quota exhaustion.

    The first attempt is followed by up to ``max_retries`` retries. The wait
    before retry ``n`` (0-based) is ``base_delay * 2**n`` seconds. Only
    rate-limit and service-unavailable errors are retried; quota exhaustion
    and every other failure propagate from the attempt that raised them.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_for(self, attempt: int) -> float:
        """Seconds to wait after the given 0-based failed attempt."""
        return self.base_delay * (2 ** attempt)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        if isinstance(error, QuotaExceededError):
            return False
        return isinstance(error, RETRYABLE_ERRORS)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` under this policy.

        Args:
            operation: Zero-argument coroutine factory performing one attempt

        Returns:
            The operation's result from the first successful attempt

        Raises:
            QuotaExceededError: Immediately, on the attempt that reported it
            RateLimitError | ServiceUnavailableError: The last error once
                attempts are exhausted
            Exception: Any non-retryable error, immediately
        """
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as error:
                if not self.is_retryable(error):
                    raise
                if attempt >= self.max_retries:
                    LOGGER.error(
                        f"Completion failed after {self.max_attempts} attempts",
                        extra={"error": str(error)},
                    )
                    raise
                delay = self.backoff_for(attempt)
                LOGGER.warning(
                    f"Retryable completion error (Attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {delay:.1f}s",
                    extra={"error": str(error), "status_code": getattr(error, "status_code", None)},
                )
                await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise APIClientError("Retry loop exited without a result")
