"""Longhaul test orchestrators, one per delivery category.

Each orchestrator is single-use and walks the lifecycle in
``longhaul.kernel.state_machine``:

1. **Setup** — validate prerequisites, start listening (telemetry) or open
   the service-side client (c2d, device methods).  Missing prerequisites
   raise ``ConfigurationFault``.
2. **Running** — ``run_on_loop`` with the category's producer action.
   Every attempt is recorded; a failed send does not stop the loop.
3. **Draining** — sleep ``drain_iterations * iteration_seconds`` so the
   last deliveries can arrive.  Device methods skip it: invocation is
   synchronous from the caller's side.
4. **Teardown** — always runs; stops the telemetry listener.
5. **Verdict** — summary thresholds from ``longhaul.kernel.verdict``.

Fatal faults (``ConfigurationFault``, ``EnvironmentFault``,
``TimeoutFault``) propagate immediately without draining or a verdict.
The exception is ``LoopAbortedError`` (operation id generation failed):
the run still drains and logs its statistics before it propagates.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from functools import partial
from typing import TYPE_CHECKING, ClassVar

from longhaul.engine.transport import ConfirmationResult
from longhaul.kernel import correlation
from longhaul.kernel.exceptions import (
    LonghaulInvariantError,
    LoopAbortedError,
    TransientSendFault,
)
from longhaul.kernel.ids import INVALID_OPERATION_ID
from longhaul.kernel.scheduler import run_on_loop
from longhaul.kernel.state_machine import OrchestratorState, OrchestratorStateMachine
from longhaul.kernel.statistics import Category, DeliverySummary, EventKind
from longhaul.kernel.verdict import Verdict, evaluate

if TYPE_CHECKING:
    from collections.abc import Callable

    from longhaul.engine.resources import LonghaulRun

log = logging.getLogger(__name__)

__all__ = [
    "ORCHESTRATORS",
    "CloudToDeviceTest",
    "DeviceMethodTest",
    "LonghaulTest",
    "TelemetryTest",
]


class LonghaulTest(ABC):
    """Base orchestrator: setup, production loop, drain, teardown, verdict."""

    category: ClassVar[Category]
    label: ClassVar[str]
    ready_state: ClassVar[OrchestratorState] = OrchestratorState.READY
    drains: ClassVar[bool] = True

    def __init__(
        self,
        run: LonghaulRun,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._run = run
        self._settings = run.settings
        self._clock = clock
        self._sleep = sleep
        self._machine = OrchestratorStateMachine(self.category.value)
        self._iterations = 0

    @property
    def state(self) -> OrchestratorState:
        return self._machine.state

    @property
    def history(self) -> tuple[OrchestratorState, ...]:
        return self._machine.history

    @property
    def iterations(self) -> int:
        """Number of producer invocations performed by the loop."""
        return self._iterations

    # -- lifecycle ---------------------------------------------------------

    def run(
        self,
        iteration_seconds: float | None = None,
        total_seconds: float | None = None,
    ) -> Verdict:
        """Execute the whole run and return its verdict.

        Raises
        ------
        ConfigurationFault
            If a prerequisite is missing.
        EnvironmentFault
            If the clock or id generator fails during the loop.
        TimeoutFault
            If a setup wait expires.
        LonghaulInvariantError
            If the orchestrator has already been run.
        """
        if self.state is not OrchestratorState.IDLE:
            raise LonghaulInvariantError(
                "single_use", f"{self.label} orchestrator already ran ({self.state.value})"
            )
        if iteration_seconds is None:
            iteration_seconds = self._settings.iteration_seconds
        if total_seconds is None:
            total_seconds = self._settings.total_seconds

        log.info(
            "Starting longhaul %s run %s (iteration=%ss, total=%ss)",
            self.label,
            self._run.test_run_id,
            iteration_seconds,
            total_seconds,
        )

        try:
            self._setup()
        except Exception:
            self._machine.advance(OrchestratorState.STOPPED)
            raise
        self._machine.advance(self.ready_state)

        try:
            self._machine.advance(OrchestratorState.RUNNING)
            try:
                self._iterations = run_on_loop(
                    self._produce,
                    iteration_seconds,
                    total_seconds,
                    clock=self._clock,
                    sleep=self._sleep,
                )
            except LoopAbortedError as exc:
                # Operations already in flight still get their drain window.
                self._iterations = exc.iteration
                self._drain(iteration_seconds)
                self._collect()
                raise
            self._drain(iteration_seconds)
            summary = self._collect()
        finally:
            self._teardown()
            self._machine.advance(OrchestratorState.STOPPED)

        verdict = evaluate(summary, self._settings.threshold_for(self.category))
        if verdict.passed:
            log.info("Longhaul %s run passed", self.label)
        else:
            log.error("Longhaul %s run failed: %s", self.label, "; ".join(verdict.reasons))
        return verdict

    def _drain(self, iteration_seconds: float) -> None:
        if not self.drains:
            return
        self._machine.advance(OrchestratorState.DRAINING)
        drain = self._settings.drain_seconds(iteration_seconds)
        if drain > 0:
            self._sleep(drain)

    def _collect(self) -> DeliverySummary:
        statistics = self._run.statistics
        log.info("Longhaul %s stats: %s", self.label, statistics.serialize())
        summary = statistics.summary(self.category)
        log.info(
            "Summary: %s queued=%d, sent=%d, received=%d, failed=%d; "
            "travel time: min=%s secs, max=%s secs",
            self.label,
            summary.count_queued,
            summary.count_sent,
            summary.count_received,
            summary.count_failed,
            summary.min_travel_time,
            summary.max_travel_time,
        )
        return summary

    @abstractmethod
    def _setup(self) -> None: ...

    @abstractmethod
    def _produce(self) -> bool:
        """One loop iteration; ``False`` aborts the loop."""

    def _teardown(self) -> None:
        pass

    # -- helpers -----------------------------------------------------------

    def _next_operation_id(self) -> int:
        operation_id = self._run.next_operation_id()
        if operation_id == INVALID_OPERATION_ID:
            log.error("Failed generating %s operation id", self.label)
        return operation_id

    def _attempt(self, operation_id: int, send: Callable[[], bool]) -> bool:
        """Call *send*; report whether the transport accepted it."""
        try:
            accepted = bool(send())
        except (TransientSendFault, OSError) as exc:
            log.warning("Failed sending %s %d: %s", self.label, operation_id, exc)
            return False
        if not accepted:
            log.warning("Failed sending %s %d", self.label, operation_id)
        return accepted

    def _on_send_complete(self, operation_id: int, result: ConfirmationResult) -> None:
        self._run.statistics.record_event(
            self.category,
            EventKind.SENT,
            operation_id,
            timestamp=self._run.now(),
            result=result,
        )


class TelemetryTest(LonghaulTest):
    """Device-to-cloud telemetry, verified by a service-side listener."""

    category = Category.TELEMETRY
    label = "telemetry"
    ready_state = OrchestratorState.LISTENING

    def _setup(self) -> None:
        self._client, _ = self._run.require_device()
        self._run.start_telemetry_listener()

    def _produce(self) -> bool:
        operation_id = self._next_operation_id()
        if operation_id == INVALID_OPERATION_ID:
            return False
        payload = correlation.encode(self._run.test_run_id, operation_id)

        queued_at = self._run.now()
        succeeded = self._attempt(
            operation_id,
            partial(
                self._client.send_event_async,
                payload,
                partial(self._on_send_complete, operation_id),
            ),
        )
        self._run.statistics.add_telemetry_info(
            EventKind.QUEUED,
            operation_id,
            timestamp=queued_at,
            succeeded=succeeded,
        )
        return True

    def _teardown(self) -> None:
        if self._run.telemetry_listener is not None:
            self._run.stop_telemetry_listener()


class CloudToDeviceTest(LonghaulTest):
    """Service-to-device messages, verified by the device message callback."""

    category = Category.C2D
    label = "cloud-to-device"

    def _setup(self) -> None:
        _, self._device = self._run.require_device()
        self._messenger = self._run.open_messaging_client(
            clock=self._clock, sleep=self._sleep
        )

    def _produce(self) -> bool:
        operation_id = self._next_operation_id()
        if operation_id == INVALID_OPERATION_ID:
            return False
        payload = correlation.encode(self._run.test_run_id, operation_id)

        succeeded = self._attempt(
            operation_id,
            partial(
                self._messenger.send_async,
                self._device.device_id,
                payload,
                partial(self._on_send_complete, operation_id),
            ),
        )
        self._run.statistics.add_c2d_info(
            EventKind.QUEUED,
            operation_id,
            timestamp=self._run.now(),
            succeeded=succeeded,
        )
        return True


class DeviceMethodTest(LonghaulTest):
    """Direct method invocations, verified by the device method callback."""

    category = Category.DEVICE_METHOD
    label = "device method"
    drains = False

    def _setup(self) -> None:
        _, self._device = self._run.require_device()
        self._method_client = self._run.open_device_method_client()

    def _produce(self) -> bool:
        operation_id = self._next_operation_id()
        if operation_id == INVALID_OPERATION_ID:
            return False
        payload = correlation.encode(self._run.test_run_id, operation_id)

        invoked_at = self._run.now()
        result_code: int | None = None
        try:
            response = self._method_client.invoke(
                self._device.device_id,
                self._settings.device_method_name,
                payload,
                self._settings.device_method_timeout,
            )
        except (TransientSendFault, OSError) as exc:
            log.warning("Failed invoking device method %d: %s", operation_id, exc)
            succeeded = False
        else:
            succeeded = True
            result_code = response.status

        self._run.statistics.add_device_method_info(
            EventKind.INVOKED,
            operation_id,
            timestamp=invoked_at,
            succeeded=succeeded,
            result=result_code,
        )
        return True


ORCHESTRATORS: dict[Category, type[LonghaulTest]] = {
    Category.TELEMETRY: TelemetryTest,
    Category.C2D: CloudToDeviceTest,
    Category.DEVICE_METHOD: DeviceMethodTest,
}
