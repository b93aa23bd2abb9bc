# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/utils/retry.py

import functools
import time
from typing import Callable


class RetryError(RuntimeError):
    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def retry(
    *,
    retries: int,
    delay: float,
    backoff: float = 1.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] | None = None,
):
    """
    Retry decorator for SSH connection setup and other idempotent calls.

    retries: number of attempts
    delay: seconds before the second attempt
    backoff: factor applied to the delay after every failed attempt
    retry_on: exception types to retry, anything else propagates at once
    on_retry: callback(attempt, exception)
    sleep: replaces time.sleep
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            wait = delay
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
                    (sleep or time.sleep)(wait)
                    wait *= backoff
            raise RetryError(f"{fn.__name__} failed after {retries} attempts: {last_exc}", retries) from last_exc
        return wrapper
    return decorator
