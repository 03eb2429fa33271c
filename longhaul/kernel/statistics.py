"""Concurrent per-category event ledger for a longhaul run.

The store is the only shared mutable state touched by both the production
loop thread and the transport's callback threads.  Records are created on
the first event that names an operation id and are filled in field by
field, in any order, from any thread:

    telemetry / c2d   QUEUED -> queued_at, send_succeeded
                      SENT   -> sent_at, send_callback_result
                      RECEIVED -> received_at
    device method     INVOKED -> invoked_at, invoke_succeeded, result_code
                      RECEIVED -> received_at

Invariants
----------
* ``record_event`` is atomic with respect to every other ``record_event``
  and to ``summary``/``serialize`` snapshots (single store-wide lock).
* Fields are write-once: a second write to a field that is already set is
  refused and logged, and the original value is kept.
* Records are never deleted during the life of the store.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from longhaul.kernel.exceptions import UnsupportedEventError

log = logging.getLogger(__name__)


class Category(StrEnum):
    """Delivery categories exercised by the harness."""

    TELEMETRY = "telemetry"
    C2D = "c2d"
    DEVICE_METHOD = "device_method"


class EventKind(StrEnum):
    """Lifecycle events recorded against an operation id."""

    QUEUED = "queued"
    SENT = "sent"
    INVOKED = "invoked"
    RECEIVED = "received"


#: Event kinds each category accepts.
CATEGORY_EVENTS: dict[Category, frozenset[EventKind]] = {
    Category.TELEMETRY: frozenset(
        {EventKind.QUEUED, EventKind.SENT, EventKind.RECEIVED}
    ),
    Category.C2D: frozenset({EventKind.QUEUED, EventKind.SENT, EventKind.RECEIVED}),
    Category.DEVICE_METHOD: frozenset({EventKind.INVOKED, EventKind.RECEIVED}),
}

#: Completion results counted as a successful send.
_OK_RESULTS: frozenset[str] = frozenset({"OK"})


# ── Records ──────────────────────────────────────────────


@dataclass(slots=True)
class MessageRecord:
    """Telemetry or cloud-to-device message lifecycle."""

    operation_id: int
    queued_at: datetime | None = None
    send_succeeded: bool | None = None
    sent_at: datetime | None = None
    send_callback_result: str | None = None
    received_at: datetime | None = None

    @property
    def departed_at(self) -> datetime | None:
        return self.sent_at

    @property
    def failed(self) -> bool:
        if self.send_succeeded is False:
            return True
        return (
            self.send_callback_result is not None
            and self.send_callback_result not in _OK_RESULTS
        )


@dataclass(slots=True)
class MethodRecord:
    """Device method invocation lifecycle."""

    operation_id: int
    invoked_at: datetime | None = None
    invoke_succeeded: bool | None = None
    result_code: int | None = None
    received_at: datetime | None = None

    @property
    def departed_at(self) -> datetime | None:
        return self.invoked_at

    @property
    def failed(self) -> bool:
        if self.invoke_succeeded is False:
            return True
        return self.result_code is not None and not 200 <= self.result_code < 300


EventRecord = MessageRecord | MethodRecord


@dataclass(frozen=True, slots=True)
class DeliverySummary:
    """Aggregate numbers for one category at the moment of the call.

    ``min_travel_time``/``max_travel_time`` are in seconds and are ``None``
    when no record has both a departure and an arrival timestamp.
    """

    category: Category
    count_sent: int
    count_received: int
    min_travel_time: float | None
    max_travel_time: float | None
    count_queued: int = 0
    count_failed: int = 0


@dataclass(frozen=True, slots=True)
class ConnectionStatusEvent:
    status: str
    reason: str
    timestamp: datetime


# ── Store ────────────────────────────────────────────────


class ClientStatistics:
    """Thread-safe ledger of delivery events, keyed by category and id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[Category, dict[int, EventRecord]] = {
            category: {} for category in Category
        }
        self._connection_events: list[ConnectionStatusEvent] = []

    # -- recording ---------------------------------------------------------

    def record_event(
        self,
        category: Category,
        kind: EventKind,
        operation_id: int,
        *,
        timestamp: datetime,
        succeeded: bool | None = None,
        result: Any = None,
    ) -> None:
        """Upsert the record for *operation_id* with the fields implied by *kind*.

        Parameters
        ----------
        category:
            Delivery category the operation belongs to.
        kind:
            Which lifecycle event happened.
        operation_id:
            Id of the operation (never ``0``).
        timestamp:
            When the event happened.
        succeeded:
            Local outcome of the send/invoke call (``QUEUED``/``INVOKED``).
        result:
            Completion callback result (``SENT``) or method status code
            (``INVOKED``).

        Raises
        ------
        UnsupportedEventError
            If *kind* is not recorded for *category*.
        """
        if kind not in CATEGORY_EVENTS[category]:
            raise UnsupportedEventError(category.value, kind.value)

        with self._lock:
            records = self._records[category]
            record = records.get(operation_id)
            if record is None:
                if category is Category.DEVICE_METHOD:
                    record = MethodRecord(operation_id)
                else:
                    record = MessageRecord(operation_id)
                records[operation_id] = record

            if kind is EventKind.QUEUED:
                self._set_once(category, record, "queued_at", timestamp)
                self._set_once(category, record, "send_succeeded", succeeded)
            elif kind is EventKind.SENT:
                self._set_once(category, record, "sent_at", timestamp)
                self._set_once(
                    category,
                    record,
                    "send_callback_result",
                    None if result is None else str(result),
                )
            elif kind is EventKind.INVOKED:
                self._set_once(category, record, "invoked_at", timestamp)
                self._set_once(category, record, "invoke_succeeded", succeeded)
                self._set_once(category, record, "result_code", result)
            else:
                self._set_once(category, record, "received_at", timestamp)

        log.debug(
            "Recorded %s %s for operation %d", category.value, kind.value, operation_id
        )

    @staticmethod
    def _set_once(
        category: Category, record: EventRecord, name: str, value: Any
    ) -> None:
        if value is None:
            return
        current = getattr(record, name)
        if current is not None:
            if current != value:
                log.warning(
                    "Refusing to overwrite %s.%s for operation %d (%r kept, %r dropped)",
                    category.value,
                    name,
                    record.operation_id,
                    current,
                    value,
                )
            return
        setattr(record, name, value)

    def add_telemetry_info(
        self, kind: EventKind, operation_id: int, **fields: Any
    ) -> None:
        self.record_event(Category.TELEMETRY, kind, operation_id, **fields)

    def add_c2d_info(self, kind: EventKind, operation_id: int, **fields: Any) -> None:
        self.record_event(Category.C2D, kind, operation_id, **fields)

    def add_device_method_info(
        self, kind: EventKind, operation_id: int, **fields: Any
    ) -> None:
        self.record_event(Category.DEVICE_METHOD, kind, operation_id, **fields)

    def record_connection_status(
        self, status: str, reason: str, *, timestamp: datetime
    ) -> None:
        """Append a connection status change reported by the device client."""
        with self._lock:
            self._connection_events.append(
                ConnectionStatusEvent(str(status), str(reason), timestamp)
            )
        log.info("Connection status changed: %s (%s)", status, reason)

    # -- queries -----------------------------------------------------------

    def records(self, category: Category) -> dict[int, EventRecord]:
        """Return a snapshot copy of the records for *category*."""
        with self._lock:
            return {
                op_id: dataclasses.replace(record)
                for op_id, record in self._records[category].items()
            }

    @property
    def connection_events(self) -> tuple[ConnectionStatusEvent, ...]:
        with self._lock:
            return tuple(self._connection_events)

    def summary(self, category: Category) -> DeliverySummary:
        """Compute the aggregate numbers for *category* from a consistent snapshot."""
        count_queued = count_sent = count_received = count_failed = 0
        min_travel: float | None = None
        max_travel: float | None = None

        with self._lock:
            for record in self._records[category].values():
                departed = record.departed_at
                if isinstance(record, MessageRecord) and record.queued_at is not None:
                    count_queued += 1
                if record.failed:
                    count_failed += 1
                if departed is not None:
                    count_sent += 1
                if record.received_at is not None:
                    count_received += 1
                    if departed is not None:
                        travel = (record.received_at - departed).total_seconds()
                        if min_travel is None or travel < min_travel:
                            min_travel = travel
                        if max_travel is None or travel > max_travel:
                            max_travel = travel

        return DeliverySummary(
            category=category,
            count_sent=count_sent,
            count_received=count_received,
            min_travel_time=min_travel,
            max_travel_time=max_travel,
            count_queued=count_queued,
            count_failed=count_failed,
        )

    def to_dict(self) -> dict[str, Any]:
        """Snapshot of all stored state with ISO-8601 timestamps."""
        with self._lock:
            return {
                "connection_status": [
                    {
                        "status": event.status,
                        "reason": event.reason,
                        "time": event.timestamp.isoformat(),
                    }
                    for event in self._connection_events
                ],
                **{
                    category.value: [
                        _record_to_dict(record)
                        for _, record in sorted(records.items())
                    ]
                    for category, records in self._records.items()
                },
            }

    def serialize(self) -> str:
        """Human-diagnostic JSON dump of all stored state (logging only)."""
        return json.dumps(self.to_dict(), indent=2)

    def __repr__(self) -> str:
        with self._lock:
            counts = ", ".join(
                f"{category.value}={len(records)}"
                for category, records in self._records.items()
            )
        return f"ClientStatistics({counts})"


def _record_to_dict(record: EventRecord) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in dataclasses.fields(record):
        value = getattr(record, f.name)
        out[f.name] = value.isoformat() if isinstance(value, datetime) else value
    return out
