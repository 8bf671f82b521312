"""Fixed-interval polling used by COM operations that complete asynchronously."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from src.hpeadmin.integrations.errors import PollingTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLL_INTERVAL_SECONDS = 1.0


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    *,
    description: str,
    interval_seconds: float = POLL_INTERVAL_SECONDS,
    timeout_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call `fetch` until `done(result)` is true, sleeping a fixed interval in between.

    With `timeout_seconds=None` the loop has no upper bound and only returns
    once the remote state changes.
    """

    started = clock()
    attempt = 0
    while True:
        attempt += 1
        result = fetch()
        if done(result):
            logger.debug("%s: done after %d attempt(s)", description, attempt)
            return result
        if timeout_seconds is not None and clock() - started >= timeout_seconds:
            raise PollingTimeoutError(
                f"{description}: not complete after {timeout_seconds:g}s ({attempt} attempts)"
            )
        logger.debug("%s: not done yet (attempt %d), sleeping %.1fs", description, attempt, interval_seconds)
        sleep(interval_seconds)
