"""
Utilities
=========

Helpers used across the classifier and the recomputer that do not belong to
a more specific module.

Currently, it contains a `retry` decorator for handling transient errors with
capped exponential backoff and jitter, and a small `Stopwatch` used to
measure elapsed wall-clock time against a budget.
"""
import logging
import random
import time
from functools import wraps
from typing import Callable, Type, TypeVar

log = logging.getLogger(__name__)
T = TypeVar("T")


def retry(
    retryable_exceptions: tuple[Type[Exception], ...],
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    A decorator that retries a method call on specific exceptions.

    The decorated method's instance must expose ``settings`` with
    ``MAX_RETRIES`` and ``MAX_RETRY_BACKOFF_SECONDS``.

    Args:
        retryable_exceptions: A tuple of exception types that should trigger a retry.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> T:
            settings = self.settings
            if settings.MAX_RETRIES < 1:
                raise ValueError("MAX_RETRIES must be >= 1")
            for attempt in range(1, settings.MAX_RETRIES + 1):
                try:
                    return func(self, *args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == settings.MAX_RETRIES:
                        log.warning(
                            "%s failed after %d attempts",
                            func.__name__,
                            attempt,
                        )
                        raise
                    log.warning(
                        "%s failed (%s) - retry %d/%d",
                        func.__name__,
                        e,
                        attempt,
                        settings.MAX_RETRIES,
                    )
                    _sleep_backoff(attempt, settings)
            # Unreachable while MAX_RETRIES >= 1
            raise RuntimeError("Retry loop exited unexpectedly.")

        return wrapper

    return decorator


def _sleep_backoff(attempt: int, settings) -> None:
    """Sleep with exponential backoff and jitter, capped at MAX_RETRY_BACKOFF_SECONDS."""
    delay = min(
        float(settings.MAX_RETRY_BACKOFF_SECONDS),
        (2**attempt) * random.uniform(0.8, 1.2),
    )
    log.info(
        "Sleeping %.1f s before retry %d/%d",
        delay,
        attempt,
        settings.MAX_RETRIES,
    )
    time.sleep(delay)


class Stopwatch:
    """
    Measures elapsed seconds from construction using a monotonic clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started = clock()

    def elapsed(self) -> float:
        return self._clock() - self._started

    def exceeded(self, budget_seconds: float | None) -> bool:
        """Return True once more than ``budget_seconds`` have passed."""
        if budget_seconds is None:
            return False
        return self.elapsed() > budget_seconds
