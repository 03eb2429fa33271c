"""Longhaul exception hierarchy.

Every failure the harness can raise inherits from ``LonghaulError`` so the
runner can map a whole run to a single exit status with one ``except``.

Only ``ConfigurationFault``, ``EnvironmentFault`` and ``TimeoutFault``
abort a run early.  Everything else is tallied by the statistics store and
only affects the final verdict.
"""

from __future__ import annotations

from typing import Any


class LonghaulError(Exception):
    """Base exception for all longhaul harness failures."""

    __slots__ = ()


class LonghaulInvariantError(LonghaulError):
    """Raised when a runtime invariant of the harness is violated.

    Attributes
    ----------
    invariant : str
        Short identifier for the invariant that was violated
        (e.g. ``"state_transition"``).
    """

    __slots__ = ("invariant",)

    def __init__(self, invariant: str, detail: str = "") -> None:
        msg = f"Longhaul invariant {invariant!r} violated"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.invariant = invariant


# ── Fatal faults ─────────────────────────────────────────


class ConfigurationFault(LonghaulError):
    """Raised when a prerequisite handle is missing before the loop starts."""

    __slots__ = ("detail", "prerequisite")

    def __init__(self, prerequisite: str, detail: str = "") -> None:
        msg = f"Prerequisite {prerequisite!r} not available"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.prerequisite = prerequisite
        self.detail = detail


class EnvironmentFault(LonghaulError):
    """Raised when the wall clock or a locking primitive fails."""

    __slots__ = ("detail", "resource")

    def __init__(self, resource: str, detail: str = "") -> None:
        msg = f"Environment fault in {resource!r}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.resource = resource
        self.detail = detail


class LoopAbortedError(EnvironmentFault):
    """Raised when a loop action reports failure and terminates the loop.

    Attributes
    ----------
    iteration : int
        1-based index of the invocation that failed.
    """

    __slots__ = ("iteration",)

    def __init__(self, iteration: int) -> None:
        super().__init__(
            "run_on_loop",
            f"loop terminated by action result at iteration {iteration}",
        )
        self.iteration = iteration


class TimeoutFault(LonghaulError):
    """Raised when a polled condition never became true in time."""

    __slots__ = ("condition", "elapsed", "timeout")

    def __init__(
        self,
        condition: str,
        *,
        timeout: float,
        elapsed: float,
    ) -> None:
        super().__init__(
            f"Condition {condition!r} not met within {timeout:g}s "
            f"(elapsed {elapsed:.3f}s)"
        )
        self.condition = condition
        self.timeout = timeout
        self.elapsed = elapsed


class PredicateFailedError(LonghaulError):
    """Raised when a polled predicate reports an explicit failure."""

    __slots__ = ("condition",)

    def __init__(self, condition: str) -> None:
        super().__init__(f"Condition {condition!r} reported failure")
        self.condition = condition


# ── Tallied faults ───────────────────────────────────────


class TransientSendFault(LonghaulError):
    """Raised by a transport when a single send or invoke attempt fails.

    Producers catch it, record the failed attempt and keep looping.
    """

    __slots__ = ("detail", "operation_id")

    def __init__(self, operation_id: int, detail: str = "") -> None:
        msg = f"Send attempt for operation {operation_id} failed"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
        self.operation_id = operation_id
        self.detail = detail


class CorrelationParseError(LonghaulError):
    """Raised when a payload is not a well-formed correlation envelope.

    Attributes
    ----------
    errors : list[dict[str, Any]]
        Field-level problems.  Each entry has ``path`` and ``message``.
    """

    __slots__ = ("errors",)

    def __init__(
        self,
        detail: str,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(f"Malformed correlation envelope: {detail}")
        self.errors = errors or []


class CorrelationMismatch(LonghaulError):
    """Raised when an envelope belongs to a different test run."""

    __slots__ = ("expected", "received")

    def __init__(self, expected: str, received: str) -> None:
        super().__init__(
            f"Envelope run id {received!r} does not match {expected!r}"
        )
        self.expected = expected
        self.received = received


class UnsupportedEventError(LonghaulError):
    """Raised when an event kind is recorded against the wrong category."""

    __slots__ = ("category", "kind")

    def __init__(self, category: str, kind: str) -> None:
        super().__init__(
            f"Event kind {kind!r} is not recorded for category {category!r}"
        )
        self.category = category
        self.kind = kind


class VerdictFailure(LonghaulError):
    """Raised when a completed run did not meet its delivery guarantee.

    Attributes
    ----------
    category : str
        Delivery category of the failed run.
    reasons : tuple[str, ...]
        Every threshold that was violated.
    """

    __slots__ = ("category", "reasons")

    def __init__(self, category: str, reasons: tuple[str, ...]) -> None:
        n = len(reasons)
        summary = "; ".join(reasons) if reasons else "no reason given"
        super().__init__(
            f"Longhaul {category} verdict failed "
            f"({n} violation{'s' if n != 1 else ''}): {summary}"
        )
        self.category = category
        self.reasons = reasons
