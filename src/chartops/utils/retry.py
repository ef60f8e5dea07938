# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/chartops/utils/retry.py
import time
from typing import Callable, TypeVar

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """
    Call `fn` once, then up to `retries` more times on failure.

    retries: extra attempts after the first one
    delay: seconds between attempts
    retry_on: exception types to retry
    on_retry: callback(attempt, exception)

    The last exception is re-raised as is so callers keep their error
    classification.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except retry_on as exc:
            if attempt > retries:
                raise
            if on_retry:
                on_retry(attempt, exc)
            time.sleep(delay)
