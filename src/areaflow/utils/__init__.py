"""Shared utilities."""

from .retry import RetryConfig, is_retryable_error, with_retry
from .threads import FifoLock, run_in_thread
from .validation import sanitize_log_message, validate_identifier, validate_timezone

__all__ = [
    "RetryConfig",
    "is_retryable_error",
    "with_retry",
    "FifoLock",
    "run_in_thread",
    "sanitize_log_message",
    "validate_identifier",
    "validate_timezone",
]
