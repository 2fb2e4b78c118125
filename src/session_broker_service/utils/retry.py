"""
Bounded exponential backoff for upstream calls.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from session_broker_service.exceptions import CredentialBrokerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    ``max_attempts`` counts the first try, so ``max_attempts=1`` disables retries.
    """

    max_attempts: int = 4
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-indexed):
        min(base_delay * exponential_base**attempt, max_delay).
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    sleep: SleepFunc = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds, a non-retryable error is raised,
    or ``config.max_attempts`` attempts have been made.

    Returns:
        The operation's result

    Raises:
        CredentialBrokerError: The last error once attempts are exhausted,
            or the first non-retryable one
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except CredentialBrokerError as e:
            attempt += 1
            if not e.retryable or attempt >= config.max_attempts:
                raise
            delay = config.calculate_delay(attempt - 1)
            logger.warning(
                f"{description} failed ({e.error_type}: {e.message}); "
                f"retry {attempt}/{config.max_attempts - 1} in {delay:.1f}s"
            )
            await sleep(delay)
