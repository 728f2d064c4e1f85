"""Bounded fixed-interval polling."""

import time
from collections.abc import Callable
from typing import TypeVar

from awsacme._logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def poll_until(
    attempt: Callable[[], T | None],
    *,
    timeout: float,
    interval: float,
    on_timeout: Callable[[], Exception],
) -> T:
    """Call ``attempt`` every ``interval`` seconds until it returns a result.

    ``attempt`` returns None to keep polling, any other value to stop, or
    raises to abort. At least one attempt is always made. Once ``timeout``
    seconds have elapsed without a result, the exception built by
    ``on_timeout`` is raised.

    Args:
        attempt: The status check.
        timeout: Overall deadline in seconds.
        interval: Sleep between attempts in seconds.
        on_timeout: Factory for the timeout exception.

    Returns:
        The first non-None value returned by ``attempt``.
    """
    deadline = time.monotonic() + timeout
    attempts = 0
    while True:
        attempts += 1
        result = attempt()
        if result is not None:
            return result

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.debug("Polling deadline reached", extra={"attempts": attempts})
            raise on_timeout()
        time.sleep(min(interval, remaining))
