"""
Retry utilities for provider calls.

Transient provider failures (timeouts, throttling, 5xx) are retried with
exponential backoff. Fatal failures propagate on the first attempt.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

from ..errors import TransientProviderError
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)

@dataclass
class RetryPolicy:
    """Backoff configuration for provider calls."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 8.0

    def get_backoff_time(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        return min(
            self.base_delay_seconds * (self.backoff_multiplier ** (attempt - 1)),
            self.max_backoff_seconds
        )

    @classmethod
    def from_llm_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, config.max_attempts),
            base_delay_seconds=config.backoff_base_seconds,
            backoff_multiplier=config.backoff_multiplier,
            max_backoff_seconds=config.max_backoff_seconds
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_seconds": self.base_delay_seconds,
            "backoff_multiplier": self.backoff_multiplier,
            "max_backoff_seconds": self.max_backoff_seconds,
        }

async def with_retry(operation: Callable[[int], Awaitable[Any]],
                     policy: RetryPolicy,
                     cancel_token: Optional[CancellationToken] = None,
                     description: str = "provider call") -> Any:
    """
    Run ``operation(attempt)`` until it succeeds or retries are exhausted.

    Args:
        operation: Coroutine factory receiving the 1-based attempt number.
            It signals a retryable failure by raising TransientProviderError.
        policy: Retry policy
        cancel_token: Optional token checked before each attempt and
            during backoff sleeps

    Returns:
        Whatever ``operation`` returns

    Raises:
        TransientProviderError: after ``policy.max_attempts`` failures,
            with ``attempts`` set
    """
    last_error: Optional[TransientProviderError] = None

    for attempt in range(1, policy.max_attempts + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        try:
            return await operation(attempt)
        except TransientProviderError as e:
            last_error = e
            if attempt >= policy.max_attempts:
                break

            backoff_time = policy.get_backoff_time(attempt)
            logger.warning(
                f"{description} failed on attempt {attempt}/{policy.max_attempts}, "
                f"retrying in {backoff_time:.1f}s: {e}"
            )
            if cancel_token is not None:
                await cancel_token.sleep(backoff_time)
            else:
                await asyncio.sleep(backoff_time)

    last_error.attempts = policy.max_attempts
    logger.error(f"{description} failed after {policy.max_attempts} attempts: {last_error}")
    raise last_error
