"""Delivery verification kernel.

Public API:
    - encode / decode / match  — correlation envelope codec
    - UniqueIdGenerator        — per-run operation id counter
    - ClientStatistics         — concurrent per-category event ledger
    - Category / EventKind     — ledger keys
    - DeliverySummary          — aggregate numbers for one category
    - run_on_loop / wait_for   — time-bounded scheduling primitives
    - PollResult               — ``wait_for`` predicate outcome
    - Verdict / evaluate       — pass/fail thresholds
    - OrchestratorState        — orchestrator lifecycle states
    - LonghaulError            — base exception for blanket catch
"""

from __future__ import annotations

from longhaul.kernel.correlation import CorrelationEnvelope, decode, encode, match
from longhaul.kernel.exceptions import (
    ConfigurationFault,
    CorrelationMismatch,
    CorrelationParseError,
    EnvironmentFault,
    LonghaulError,
    LonghaulInvariantError,
    LoopAbortedError,
    PredicateFailedError,
    TimeoutFault,
    TransientSendFault,
    UnsupportedEventError,
    VerdictFailure,
)
from longhaul.kernel.ids import INVALID_OPERATION_ID, UniqueIdGenerator
from longhaul.kernel.scheduler import PollResult, run_on_loop, wait_for
from longhaul.kernel.state_machine import OrchestratorState, OrchestratorStateMachine
from longhaul.kernel.statistics import (
    Category,
    ClientStatistics,
    DeliverySummary,
    EventKind,
    MessageRecord,
    MethodRecord,
)
from longhaul.kernel.verdict import Verdict, evaluate

__all__ = [
    "INVALID_OPERATION_ID",
    "Category",
    "ClientStatistics",
    "ConfigurationFault",
    "CorrelationEnvelope",
    "CorrelationMismatch",
    "CorrelationParseError",
    "DeliverySummary",
    "EnvironmentFault",
    "EventKind",
    "LonghaulError",
    "LonghaulInvariantError",
    "LoopAbortedError",
    "MessageRecord",
    "MethodRecord",
    "OrchestratorState",
    "OrchestratorStateMachine",
    "PollResult",
    "PredicateFailedError",
    "TimeoutFault",
    "TransientSendFault",
    "UniqueIdGenerator",
    "UnsupportedEventError",
    "Verdict",
    "VerdictFailure",
    "decode",
    "encode",
    "evaluate",
    "match",
    "run_on_loop",
    "wait_for",
]
