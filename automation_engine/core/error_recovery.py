"""Retry policy and recovery helpers for transient failures."""

import time
import random
from typing import Callable, Any, Optional, List, Type
from functools import wraps

from .exceptions import WorkflowEngineError, StorageError
from .logging import ErrorRecoveryLogger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        jitter: bool = False,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions

    def should_retry(self, exception: Exception, attempt: int, max_attempts: Optional[int] = None) -> bool:
        """Determine if a failed attempt should be retried.

        Engine errors carry their own ``recoverable`` flag. Other exceptions
        are retried unless ``retryable_exceptions`` narrows the set.
        """
        limit = self.max_attempts if max_attempts is None else max_attempts
        if attempt >= limit:
            return False

        if isinstance(exception, WorkflowEngineError):
            return exception.recoverable

        if self.retryable_exceptions is None:
            return True
        return any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions)

    def get_delay(self, attempt: int) -> float:
        """Delay in seconds before the attempt following ``attempt``."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay

    @classmethod
    def from_config(cls, config) -> 'RetryConfig':
        """Build the node dispatch retry policy from an EngineConfig."""
        return cls(
            max_attempts=config.default_max_retries + 1,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )


def with_retry(config: Optional[RetryConfig] = None):
    """Decorator adding synchronous retry logic to a function."""
    if config is None:
        config = RetryConfig(max_attempts=3, retryable_exceptions=[StorageError])

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return _execute_with_retry(func, config, *args, **kwargs)
        return wrapper

    return decorator


def _execute_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    recovery_logger = ErrorRecoveryLogger(func.__name__)

    for attempt in range(1, config.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e, attempt):
                recovery_logger.log_recovery_failure(func.__name__, e, attempt)
                raise

            recovery_logger.log_recovery_attempt(func.__name__, e, attempt, config.max_attempts)
            time.sleep(config.get_delay(attempt))
