"""Fixed-interval polling until a condition holds."""

import logging
import time
from typing import Any, Callable, Optional, TypeVar

from .exceptions import DeadlineExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


def equals(target: Any) -> Callable[[Any], bool]:
    """Predicate: observed value equals the target."""
    return lambda value: value == target


def at_least(count: int) -> Callable[[int], bool]:
    """Predicate: observed count is at least `count`."""
    return lambda value: value is not None and value >= count


def reached(target) -> Callable[[Any], bool]:
    """Predicate: an ordered phase is at or past the target."""
    return lambda phase: phase.reached(target)


class Poller:
    """
    Blocking wait-until-condition primitive.

    Each iteration re-reads fresh state, so the condition may move in either
    direction between reads. The interval is fixed.
    """

    def __init__(
        self,
        interval: float = 10,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize poller.

        Args:
            interval: Default seconds between reads
            sleep: Sleep function
            clock: Monotonic clock returning seconds
        """
        self.interval = interval
        self._sleep = sleep
        self._clock = clock

    def sleep(self, seconds: float) -> None:
        self._sleep(seconds)

    def wait_for(
        self,
        read: Callable[[], T],
        predicate: Callable[[T], bool],
        timeout: float,
        description: str,
        interval: Optional[float] = None,
        on_pending: Optional[Callable[[T], None]] = None,
    ) -> T:
        """
        Poll `read` until `predicate` accepts its value.

        Args:
            read: Returns the current value
            predicate: Decides whether the value is the one awaited
            timeout: Seconds before giving up
            description: What is being awaited, for logs and errors
            interval: Seconds between reads (defaults to the poller interval)
            on_pending: Called with each value that did not satisfy the predicate

        Returns:
            The first value accepted by the predicate

        Raises:
            DeadlineExceeded: With the last observed value, once `timeout` elapses
        """
        interval = self.interval if interval is None else interval
        started = self._clock()
        logger.info(f"Waiting for {description} (timeout: {timeout:g}s)...")

        while True:
            value = read()
            if predicate(value):
                return value

            if on_pending:
                on_pending(value)

            self._sleep(interval)
            if self._clock() - started >= timeout:
                raise DeadlineExceeded(description, timeout, value)


def wait_for(
    read: Callable[[], T],
    predicate: Callable[[T], bool],
    interval: float,
    timeout: float,
    description: str = "condition",
) -> T:
    """Module-level shortcut using real time."""
    return Poller(interval).wait_for(read, predicate, timeout, description)
