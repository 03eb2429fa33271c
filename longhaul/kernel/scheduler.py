"""Time-bounded scheduling primitives.

Two blocking, single-threaded helpers drive every longhaul run:

- ``run_on_loop`` — invoke an action at a fixed cadence until a total
  duration has elapsed.
- ``wait_for``    — poll a predicate until it succeeds, fails, or times out.

Neither primitive is preemptive.  Elapsed time is checked only between
invocations, so the effective timeout contract is:

    run_on_loop:  total_seconds + iteration_seconds + worst-case action latency
    wait_for:     timeout_seconds + poll_interval + worst-case predicate latency

``clock`` must be monotonic and return seconds as a float; ``sleep`` must
block the calling thread.  Both are injectable so tests can drive time
deterministically.
"""

from __future__ import annotations

import logging
import math
import time
from enum import StrEnum
from typing import TYPE_CHECKING

from longhaul.kernel.exceptions import (
    EnvironmentFault,
    LoopAbortedError,
    PredicateFailedError,
    TimeoutFault,
)

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL: float = 0.1


class PollResult(StrEnum):
    """Outcome of a single ``wait_for`` predicate evaluation."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CONTINUE = "CONTINUE"


def _read_clock(clock: Callable[[], float], what: str) -> float:
    try:
        now = clock()
    except (OSError, OverflowError, ValueError) as exc:
        log.error("Failed reading %s: %s", what, exc)
        raise EnvironmentFault("clock", f"failed reading {what}: {exc}") from exc
    if not math.isfinite(now):
        log.error("Failed reading %s: clock returned %r", what, now)
        raise EnvironmentFault("clock", f"clock returned {now!r} for {what}")
    return now


def run_on_loop(
    action: Callable[[], bool],
    iteration_seconds: float,
    total_seconds: float,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Invoke *action* every *iteration_seconds* until *total_seconds* elapse.

    The action runs synchronously on the calling thread and must return
    promptly; it may start asynchronous work.  After each invocation the
    remainder of the iteration slot is slept away, which enforces the
    cadence rather than running as fast as possible.  No sleep follows the
    invocation that exhausts the total duration.

    Parameters
    ----------
    action:
        Zero-argument callable returning ``True`` to continue or ``False``
        to abort the loop.
    iteration_seconds:
        Target time between the starts of consecutive invocations.
    total_seconds:
        Wall-clock budget for the whole loop.

    Returns
    -------
    int
        Number of invocations performed.

    Raises
    ------
    LoopAbortedError
        If *action* returns ``False``.
    EnvironmentFault
        If the clock cannot be read.
    ValueError
        If either duration is negative.
    """
    if iteration_seconds < 0 or total_seconds < 0:
        raise ValueError(
            f"durations must be non-negative "
            f"(iteration={iteration_seconds}, total={total_seconds})"
        )

    start = _read_clock(clock, "loop start time")
    iterations = 0

    while True:
        iteration_start = _read_clock(clock, "iteration start time")
        iterations += 1
        if not action():
            log.error("Loop terminated by action result (iteration %d)", iterations)
            raise LoopAbortedError(iterations)

        current = _read_clock(clock, "current time")
        if current - start >= total_seconds:
            break

        wait = iteration_seconds - (current - iteration_start)
        if wait > 0:
            sleep(wait)

    log.debug("Loop completed after %d iterations", iterations)
    return iterations


def wait_for(
    predicate: Callable[[], PollResult],
    timeout_seconds: float,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    description: str = "",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Block until *predicate* returns ``SUCCESS``.

    The predicate is evaluated immediately, then every *poll_interval*
    seconds while it returns ``CONTINUE``.

    Raises
    ------
    PredicateFailedError
        If *predicate* returns ``FAILURE``.
    TimeoutFault
        If *predicate* still returns ``CONTINUE`` after *timeout_seconds*.
    EnvironmentFault
        If the clock cannot be read.
    """
    condition = description or getattr(predicate, "__name__", repr(predicate))
    start = _read_clock(clock, "wait start time")

    while True:
        outcome = predicate()
        if outcome == PollResult.SUCCESS:
            return
        if outcome == PollResult.FAILURE:
            raise PredicateFailedError(condition)

        elapsed = _read_clock(clock, "current time") - start
        if elapsed >= timeout_seconds:
            log.error("Function timed out: %s", condition)
            raise TimeoutFault(condition, timeout=timeout_seconds, elapsed=elapsed)
        sleep(poll_interval)
