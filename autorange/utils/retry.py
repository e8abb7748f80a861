from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, TypeVar


T = TypeVar("T")

Backoff = Callable[[int], float]

logger = logging.getLogger(__name__)


def exponential_backoff(
    attempt: int,
    base_seconds: float,
    cap_seconds: float,
) -> float:
    return min(cap_seconds, base_seconds * (2 ** max(0, attempt - 1)))


def exponential(base_seconds: float, cap_seconds: float) -> Backoff:
    def delay(attempt: int) -> float:
        return exponential_backoff(attempt, base_seconds, cap_seconds)

    return delay


def fixed_backoff(seconds: float) -> Backoff:
    def delay(attempt: int) -> float:  # noqa: ARG001
        return seconds

    return delay


def with_retries(
    func: Callable[[], T],
    max_attempts: int,
    backoff: Backoff,
    jitter_fraction: float = 0.0,
    sleep: Callable[[float], object] = time.sleep,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    give_up: Optional[Callable[[Exception], bool]] = None,
) -> T:
    """Call `func` until it succeeds or `max_attempts` calls have failed.

    The last exception is re-raised once attempts are exhausted, or as soon
    as `give_up` says the failure is final.
    """
    attempt = 1
    while True:
        try:
            return func()
        except retry_on as exc:
            if attempt >= max_attempts or (give_up is not None and give_up(exc)):
                raise
            delay = backoff(attempt)
            if jitter_fraction:
                delay += delay * jitter_fraction * (2 * random.random() - 1)
            delay = max(0.0, delay)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            else:
                logger.warning("attempt %d failed: %s; retrying in %.1fs", attempt, exc, delay)
            sleep(delay)
            attempt += 1
