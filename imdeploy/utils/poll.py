"""Fixed-interval polling with an optional deadline."""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class PollOutcome(Enum):
    DONE = "done"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class PollResult:
    """Result of a poll_until call."""
    outcome: PollOutcome
    value: Any = None
    attempts: int = 0
    elapsed: float = 0.0

    @property
    def done(self) -> bool:
        return self.outcome is PollOutcome.DONE


def poll_until(
    check: Callable[[], Any],
    interval: float,
    timeout: Optional[float] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    sleep_first: bool = False,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> PollResult:
    """Call ``check`` every ``interval`` seconds until it returns a truthy value.

    The deadline is evaluated before each attempt, so a check is never started
    once ``timeout`` seconds have elapsed. ``timeout=None`` polls forever (the
    operator interrupts with Ctrl+C).

    Args:
        check: Callable returning a truthy value once the awaited state is reached
        interval: Seconds to sleep between attempts
        timeout: Wall-clock bound in seconds, or None for no bound
        should_cancel: Optional predicate checked before each attempt
        sleep_first: Sleep one interval before the first attempt
        clock: Monotonic time source
        sleep: Sleep function

    Returns:
        PollResult carrying the outcome, the last truthy value and attempt count
    """
    start = clock()
    attempts = 0

    if sleep_first:
        sleep(interval)

    while True:
        elapsed = clock() - start
        if should_cancel is not None and should_cancel():
            return PollResult(PollOutcome.CANCELLED, attempts=attempts, elapsed=elapsed)
        if timeout is not None and elapsed > timeout:
            logger.debug(f"Polling timed out after {attempts} attempt(s) ({elapsed:.1f}s)")
            return PollResult(PollOutcome.TIMEOUT, attempts=attempts, elapsed=elapsed)

        attempts += 1
        value = check()
        if value:
            return PollResult(PollOutcome.DONE, value=value, attempts=attempts,
                              elapsed=clock() - start)

        sleep(interval)
