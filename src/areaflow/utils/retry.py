"""Retry decorator with exponential backoff for transient adapter failures.

Provides consistent retry behavior across provider adapters. Retries happen
inside one adapter call; the dispatcher itself never re-runs a reaction.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import TypeVar

import httpx
import requests
from github import RateLimitExceededException

from areaflow.errors import MaxRetriesError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP status codes that should trigger retries
RETRYABLE_STATUS_CODES = frozenset(
    {
        408,  # Request Timeout
        429,  # Too Many Requests (rate limit)
        500,  # Internal Server Error
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    }
)

DEFAULT_RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    requests.ConnectionError,
    requests.Timeout,
    httpx.TransportError,
    RateLimitExceededException,
)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 2
    base_delay: float = 0.5  # seconds
    max_delay: float = 8.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True  # Add randomness to prevent thundering herd
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=tuple)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (0-indexed)."""
        delay = self.base_delay * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay)
        if self.jitter:
            # Add up to 25% jitter
            delay = delay * (0.75 + random.random() * 0.5)
        return delay


def _status_of(exc: Exception) -> int | None:
    """Pull an HTTP status code off the common SDK exception shapes."""
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None) or getattr(response, "status", None)
    if status is None:
        resp = getattr(exc, "resp", None)  # googleapiclient HttpError
        status = getattr(resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_retryable_error(exc: Exception) -> bool:
    """Check if an exception represents a retryable error."""
    if isinstance(exc, DEFAULT_RETRYABLE_EXCEPTIONS):
        return True
    status_code = _status_of(exc)
    return status_code is not None and status_code in RETRYABLE_STATUS_CODES


def with_retry(
    max_retries: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    on_retry: Callable[[Exception, int], None] | None = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to add retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (not including initial try)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Whether to add random jitter to delays
        retryable_exceptions: Tuple of exception types to retry on.
            If None, uses default retryable exceptions.
        on_retry: Optional callback called before each retry with (exception, attempt)

    Returns:
        Decorated function with retry logic

    Example:
        @with_retry(max_retries=3, base_delay=1.0)
        def fetch_recent_messages():
            return service.users().messages().list(userId="me").execute()
    """
    config = RetryConfig(
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        retryable_exceptions=retryable_exceptions or DEFAULT_RETRYABLE_EXCEPTIONS,
    )

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(config.max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    should_retry = isinstance(
                        exc, config.retryable_exceptions
                    ) or is_retryable_error(exc)

                    if not should_retry:
                        raise

                    if attempt >= config.max_retries:
                        logger.warning(
                            "Max retries (%d) exhausted for %s: %s",
                            config.max_retries,
                            func.__name__,
                            exc,
                        )
                        raise MaxRetriesError(
                            f"Max retries exceeded for {func.__name__}: {exc}",
                            operation=func.__name__,
                            attempts=attempt + 1,
                        ) from exc

                    delay = config.calculate_delay(attempt)
                    logger.info(
                        "Retry %d/%d for %s after %.2fs: %s",
                        attempt + 1,
                        config.max_retries,
                        func.__name__,
                        delay,
                        exc,
                    )

                    if on_retry:
                        on_retry(exc, attempt)

                    time.sleep(delay)

            raise RuntimeError(f"Unexpected state in retry loop for {func.__name__}")

        return wrapper

    return decorator
