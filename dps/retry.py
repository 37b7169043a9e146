from __future__ import annotations

import logging
import time
from typing import Callable, Sequence, TypeVar

from .errors import RetryExhausted, ShimError
from .settings import validate_schedule

log = logging.getLogger(__name__)

T = TypeVar("T")


def with_retries(
    schedule: Sequence[int],
    operation: Callable[[], T],
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, ShimError], None] | None = None,
) -> T:
    """Run `operation`, retrying on ShimError with fixed delays.

    `schedule` lists the wait in milliseconds before each retry; its length is
    the total number of attempts. No wait follows the final attempt. Errors
    outside the ShimError tree are not retried.
    """
    schedule = tuple(schedule)
    validate_schedule(schedule)

    for attempt, millis in enumerate(schedule, start=1):
        try:
            return operation()
        except ShimError as e:
            log.debug("Attempt %d/%d failed: %s", attempt, len(schedule), e)
            if attempt == len(schedule):
                raise RetryExhausted(e, attempt) from e
            if on_retry is not None:
                on_retry(attempt, e)
        sleep(millis / 1000.0)
    raise AssertionError("unreachable: schedule is never empty")
