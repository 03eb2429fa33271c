"""Lifecycle state machine shared by every longhaul orchestrator.

States::

    IDLE -> LISTENING -> RUNNING -> DRAINING -> STOPPED     (telemetry)
    IDLE -> READY     -> RUNNING -> DRAINING -> STOPPED     (c2d)
    IDLE -> READY     -> RUNNING -> STOPPED                 (device methods)

Any non-terminal state may also go straight to STOPPED, which is how a
fatal setup or loop fault ends a run.  STOPPED is terminal.

This module exposes:

- ``OrchestratorState``  — enum of the legal states.
- ``VALID_TRANSITIONS``  — frozenset of (from, to) pairs.
- ``validate_transition`` — pure guard.
- ``validate_trace``      — verifies a sequence of states.
- ``reachable_from``      — immediate successors of a state.
- ``OrchestratorStateMachine`` — thread-safe stateful wrapper with history.
"""

from __future__ import annotations

import threading
from enum import StrEnum
from typing import TYPE_CHECKING

from longhaul.kernel.exceptions import LonghaulInvariantError

if TYPE_CHECKING:
    from collections.abc import Sequence


class OrchestratorState(StrEnum):
    """The legal states of a longhaul orchestrator."""

    IDLE = "IDLE"
    LISTENING = "LISTENING"
    READY = "READY"
    RUNNING = "RUNNING"
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"


#: All valid (from_state, to_state) pairs.  Single source of truth.
VALID_TRANSITIONS: frozenset[tuple[OrchestratorState, OrchestratorState]] = frozenset(
    {
        (OrchestratorState.IDLE, OrchestratorState.LISTENING),
        (OrchestratorState.IDLE, OrchestratorState.READY),
        (OrchestratorState.IDLE, OrchestratorState.STOPPED),
        (OrchestratorState.LISTENING, OrchestratorState.RUNNING),
        (OrchestratorState.LISTENING, OrchestratorState.STOPPED),
        (OrchestratorState.READY, OrchestratorState.RUNNING),
        (OrchestratorState.READY, OrchestratorState.STOPPED),
        (OrchestratorState.RUNNING, OrchestratorState.DRAINING),
        (OrchestratorState.RUNNING, OrchestratorState.STOPPED),
        (OrchestratorState.DRAINING, OrchestratorState.STOPPED),
    }
)


def validate_transition(
    from_state: OrchestratorState,
    to_state: OrchestratorState,
) -> bool:
    """Return ``True`` iff ``from_state -> to_state`` is a valid transition.

    Pure guard: deterministic, no side effects.

    Raises
    ------
    LonghaulInvariantError
        If the pair is not in ``VALID_TRANSITIONS``.  The message lists the
        valid successors of *from_state*.
    """
    if (from_state, to_state) in VALID_TRANSITIONS:
        return True
    valid_successors = sorted(
        t.value for f, t in VALID_TRANSITIONS if f == from_state
    )
    raise LonghaulInvariantError(
        invariant="state_transition",
        detail=(
            f"Invalid orchestrator transition "
            f"{from_state.value!r} → {to_state.value!r}.  "
            f"Valid successors of {from_state.value!r}: {valid_successors}"
        ),
    )


def validate_trace(trace: Sequence[OrchestratorState]) -> None:
    """Validate every consecutive pair of *trace*; empty traces are valid."""
    for i in range(len(trace) - 1):
        validate_transition(trace[i], trace[i + 1])


def reachable_from(state: OrchestratorState) -> frozenset[OrchestratorState]:
    return frozenset(t for f, t in VALID_TRANSITIONS if f == state)


class OrchestratorStateMachine:
    """Stateful wrapper that tracks an orchestrator's state and history.

    ``state`` evolves only via ``advance()``.  An invalid transition raises
    ``LonghaulInvariantError`` and leaves the state unchanged.  The history
    always forms a valid trace starting at IDLE.
    """

    __slots__ = ("_history", "_lock", "_name")

    def __init__(self, name: str = "orchestrator") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._history: list[OrchestratorState] = [OrchestratorState.IDLE]

    @property
    def state(self) -> OrchestratorState:
        with self._lock:
            return self._history[-1]

    @property
    def history(self) -> tuple[OrchestratorState, ...]:
        with self._lock:
            return tuple(self._history)

    @property
    def stopped(self) -> bool:
        return self.state is OrchestratorState.STOPPED

    def advance(self, to_state: OrchestratorState) -> OrchestratorState:
        """Move to *to_state* if the transition is valid."""
        with self._lock:
            validate_transition(self._history[-1], to_state)
            self._history.append(to_state)
            return to_state

    def __repr__(self) -> str:
        return f"OrchestratorStateMachine(name={self._name!r}, state={self.state.value!r})"
