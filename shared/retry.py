"""
Retry helpers for transient failures talking to external providers.
"""

import asyncio
import functools
import random
from typing import Any, Callable, Awaitable, Optional

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.5,
                 max_delay: float = 10.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Exponential backoff capped at ``max_delay`` with 10% jitter."""
    delay = min(config.base_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)
    if config.jitter:
        delay += random.uniform(-delay * 0.1, delay * 0.1)
    return max(0.0, delay)


def retry_on_exception(exceptions: tuple = (Exception,),
                       config: Optional[RetryConfig] = None) -> Callable:
    """Decorator retrying an async function when it raises one of ``exceptions``."""

    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        logger = get_logger(f"storefront.retry.{func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == config.max_attempts:
                        logger.error(
                            "All retry attempts exhausted",
                            attempts=attempt,
                            error=str(e)
                        )
                        raise RetryError(
                            f"{func.__name__} failed after {attempt} attempts",
                            last_exception=e,
                            attempts=attempt
                        ) from e

                    delay = calculate_delay(attempt, config)
                    logger.warning(
                        "Attempt failed, retrying",
                        attempt=attempt,
                        delay=round(delay, 3),
                        error=str(e)
                    )
                    await asyncio.sleep(delay)
                else:
                    if attempt > 1:
                        logger.info("Retry succeeded", attempt=attempt)
                    return result

        return wrapper

    return decorator
