# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import functools
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class RetryError(RuntimeError):
    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
):
    """
    Retry decorator for idempotent operations.

    retries: number of attempts
    delay: seconds between attempts
    retry_on: exception types to retry
    on_retry: callback(attempt, exception)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except retry_on as exc:
                    last_exc = exc
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt == retries:
                        break
                    time.sleep(delay)
            raise RetryError(f"{fn.__name__} failed after {retries} retries", retries) from last_exc
        return wrapper
    return decorator


def wait_for(
    predicate: Callable[[], Optional[T]],
    *,
    attempts: int,
    interval: float,
    on_wait: Callable[[int], None] | None = None,
) -> Optional[T]:
    """
    Poll *predicate* until it returns a truthy value, at most *attempts*
    times with *interval* seconds between polls. Returns the truthy value,
    or None once every attempt is used.
    """
    for attempt in range(1, attempts + 1):
        value = predicate()
        if value:
            return value
        if on_wait:
            on_wait(attempt)
        if attempt < attempts:
            time.sleep(interval)
    return None


def attempts_for(timeout: float, interval: float) -> int:
    """Number of polls that fit in *timeout* seconds at *interval* spacing."""
    if interval <= 0:
        return 1
    return max(1, int(timeout // interval) + 1)
