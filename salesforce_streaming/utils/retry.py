"""
Retry Utilities

Exponential backoff for calls to Salesforce: retry_async wraps the REST and
OAuth requests, calculate_backoff paces the Bayeux reconnect loop.
"""

import asyncio
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple, Type

from salesforce_streaming.config import settings
from salesforce_streaming.utils.logging_config import get_logger

logger = get_logger(__name__)

# Builds log context (endpoint, channel, ...) from the wrapped call's arguments
CallContext = Callable[..., Dict[str, Any]]


def calculate_backoff(
    attempt: int,
    base: int = 2,
    max_backoff: int = 32,
) -> float:
    """
    Delay before the next attempt.

    Args:
        attempt: Attempts already failed (0 for the first retry)
        base: Base for exponential calculation
        max_backoff: Cap in seconds

    Returns:
        Backoff delay in seconds
    """
    return float(min(base**attempt, max_backoff))


def retry_async(
    max_attempts: Optional[int] = None,
    backoff_base: Optional[int] = None,
    backoff_max: Optional[int] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    context: Optional[CallContext] = None,
) -> Callable:
    """
    Retry an async Salesforce call with exponential backoff.

    Args:
        max_attempts: Attempts before giving up (default from config)
        backoff_base: Base for exponential backoff (default from config)
        backoff_max: Backoff cap in seconds (default from config)
        retryable_exceptions: Exception types that trigger another attempt
        context: Called with the wrapped call's arguments; its dict is added
            to the retry log records

    Example:
        @retry_async(
            max_attempts=3,
            retryable_exceptions=(httpx.TransportError,),
            context=lambda self, method, endpoint, **kw: {"method": method, "endpoint": endpoint},
        )
        async def _send(self, method, endpoint, json_data=None):
            ...
    """
    _max_attempts = max(1, max_attempts or settings.max_retry_attempts)
    _backoff_base = backoff_base or settings.retry_backoff_base
    _backoff_max = backoff_max or settings.retry_backoff_max

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            call = {"call": func.__qualname__}
            if context is not None:
                call.update(context(*args, **kwargs))

            for attempt in range(1, _max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == _max_attempts:
                        logger.error(
                            f"Salesforce call {func.__qualname__} gave up after {attempt} attempts: {e}",
                            extra={**call, "attempts": attempt, "error": str(e)},
                        )
                        raise

                    backoff_time = calculate_backoff(attempt - 1, _backoff_base, _backoff_max)
                    logger.warning(
                        f"Salesforce call {func.__qualname__} failed ({attempt}/{_max_attempts}): {e}; "
                        f"retrying in {backoff_time}s",
                        extra={
                            **call,
                            "attempt": attempt,
                            "max_attempts": _max_attempts,
                            "backoff_time": backoff_time,
                            "error": str(e),
                        },
                    )
                    await asyncio.sleep(backoff_time)
                    continue

                if attempt > 1:
                    logger.info(
                        f"Salesforce call {func.__qualname__} succeeded on attempt {attempt}",
                        extra={**call, "attempt": attempt},
                    )
                return result

        return wrapper

    return decorator
