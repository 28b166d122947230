"""
Retry utilities with exponential backoff.

Used for versioned writes that lose a commit race and for transient
provider HTTP failures.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import httpx

from flowstudio.core.exceptions import ConflictError
from flowstudio.core.logging_config import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_range: Tuple[float, float] = (0.5, 1.5)
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay before next retry attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds before next attempt
    """
    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= random.uniform(*config.jitter_range)

    return delay


async def retry_async_call(
    func: Callable[..., T],
    *args: Any,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    **kwargs: Any
) -> T:
    """
    Retry an async function call with exponential backoff.

    Args:
        func: Async function to call
        *args: Positional arguments for the function
        config: Retry configuration (uses defaults if not provided)
        on_retry: Optional callback called on each retry with (exception, attempt)
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call

    Example:
        result = await retry_async_call(
            store._commit_versioned,
            project_id, document,
            config=CONFLICT_RETRY_CONFIG
        )
    """
    config = config or DEFAULT_RETRY_CONFIG

    for attempt in range(config.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt >= config.max_retries:
                logger.error(
                    f"All {config.max_retries + 1} attempts failed. "
                    f"Last error: {e}"
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_retries + 1} failed: {e}. "
                f"Retrying in {delay:.2f}s..."
            )

            if on_retry:
                on_retry(e, attempt)

            await asyncio.sleep(delay)

    raise RuntimeError("Retry logic failed unexpectedly")


def async_retry(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[Exception, int], None]] = None
) -> Callable:
    """
    Decorator for async functions with retry logic.

    Example:
        @async_retry(PROVIDER_RETRY_CONFIG)
        async def _post(self, payload):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async_call(func, *args, config=config, on_retry=on_retry, **kwargs)
        return wrapper
    return decorator


# Versioned writes: retried immediately with a fresh read
CONFLICT_RETRY_CONFIG = RetryConfig(
    max_retries=3,
    base_delay=0.05,
    max_delay=0.5,
    exponential_base=2.0,
    jitter=True,
    retryable_exceptions=(ConflictError,)
)

# Transient network failures talking to generation providers
PROVIDER_RETRY_CONFIG = RetryConfig(
    max_retries=2,
    base_delay=2.0,
    max_delay=30.0,
    exponential_base=2.0,
    jitter=True,
    retryable_exceptions=(httpx.TransportError,)
)
