"""Shared test fixtures for the longhaul harness.

``LoopbackHub`` stands in for the transport and service collaborators: it
plays both the device side and the service side in-process and delivers
completions and arrivals on worker threads, the way a real transport
calls back on its own threads.
"""

from __future__ import annotations

import concurrent.futures
import threading
import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta

import pytest

from longhaul.config import LonghaulSettings
from longhaul.engine.resources import LonghaulRun
from longhaul.engine.transport import (
    ConfirmationResult,
    MessageDisposition,
    MethodResponse,
    ProvisionedDevice,
)
from longhaul.kernel import correlation
from longhaul.kernel.exceptions import TransientSendFault

DEVICE = ProvisionedDevice(device_id="longhaul-device", connection_string="HostName=fake")


class LoopbackHub:
    """In-process device + service transport with failure injection."""

    def __init__(self) -> None:
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=4)
        self._futures: list[concurrent.futures.Future[None]] = []
        self._lock = threading.Lock()

        # failure injection, keyed by operation id
        self.refuse: set[int] = set()
        self.raise_on: set[int] = set()
        self.drop: set[int] = set()
        self.complete_with: dict[int, ConfirmationResult] = {}
        self.open_messenger = True
        self.listen_ok = True

        self.device_client: FakeDeviceClient | None = None
        self.listener: FakeTelemetryListener | None = None
        self.dispositions: list[MessageDisposition] = []

    def submit(self, fn: Callable[[], None]) -> None:
        with self._lock:
            self._futures.append(self._executor.submit(fn))

    def flush(self) -> None:
        """Wait until every callback scheduled so far has run."""
        while True:
            with self._lock:
                pending = [f for f in self._futures if not f.done()]
            if not pending:
                return
            concurrent.futures.wait(pending)

    def errors(self) -> list[BaseException]:
        with self._lock:
            return [f.exception() for f in self._futures if f.done() and f.exception()]

    def shutdown(self) -> None:
        self.flush()
        self._executor.shutdown(wait=True)

    def check(self, payload: str) -> int:
        """Apply send-time failure injection for *payload*; return its id."""
        operation_id = correlation.decode(payload).operation_id
        if operation_id in self.raise_on:
            raise TransientSendFault(operation_id, "injected")
        return operation_id

    def result_for(self, operation_id: int) -> ConfirmationResult:
        return self.complete_with.get(operation_id, ConfirmationResult.OK)


class FakeDeviceClient:
    def __init__(self, hub: LoopbackHub, *, accept_callbacks: bool = True) -> None:
        self.hub = hub
        self.accept_callbacks = accept_callbacks
        self.options: dict[str, object] = {}
        self.status_callback: Callable[..., None] | None = None
        self.message_callback: Callable[..., MessageDisposition] | None = None
        self.method_callback: Callable[..., MethodResponse] | None = None
        self.sent: list[str] = []
        self.closed = False
        hub.device_client = self

    def send_event_async(
        self, payload: str, on_complete: Callable[[ConfirmationResult], None]
    ) -> bool:
        operation_id = self.hub.check(payload)
        if operation_id in self.hub.refuse:
            return False
        self.sent.append(payload)

        def deliver() -> None:
            result = self.hub.result_for(operation_id)
            on_complete(result)
            listener = self.hub.listener
            if (
                result is ConfirmationResult.OK
                and operation_id not in self.hub.drop
                and listener is not None
                and listener.callback is not None
            ):
                listener.callback(payload)

        self.hub.submit(deliver)
        return True

    def set_option(self, name: str, value: object) -> bool:
        self.options[name] = value
        return True

    def set_connection_status_callback(self, callback: Callable[..., None]) -> bool:
        self.status_callback = callback
        return self.accept_callbacks

    def set_message_callback(self, callback: Callable[..., MessageDisposition]) -> bool:
        self.message_callback = callback
        return self.accept_callbacks

    def set_device_method_callback(self, callback: Callable[..., MethodResponse]) -> bool:
        self.method_callback = callback
        return self.accept_callbacks

    def close(self) -> None:
        self.closed = True


class FakeTelemetryListener:
    def __init__(self, hub: LoopbackHub, device_id: str) -> None:
        self.hub = hub
        self.device_id = device_id
        self.callback: Callable[[bytes | str], bool] | None = None
        self.calls: list[tuple[datetime | None, object]] = []
        self.closed = False
        hub.listener = self

    def listen(
        self,
        window_start: datetime | None,
        on_message: Callable[[bytes | str], bool] | None,
    ) -> bool:
        self.calls.append((window_start, on_message))
        if on_message is not None and not self.hub.listen_ok:
            return False
        self.callback = on_message
        return True

    def close(self) -> None:
        self.closed = True


class FakeMessagingClient:
    def __init__(self, hub: LoopbackHub) -> None:
        self.hub = hub
        self.closed = False

    def open(self, on_open_complete: Callable[[], None]) -> bool:
        if self.hub.open_messenger:
            self.hub.submit(on_open_complete)
        return True

    def send_async(
        self,
        device_id: str,
        payload: str,
        on_complete: Callable[[ConfirmationResult], None],
    ) -> bool:
        operation_id = self.hub.check(payload)
        if operation_id in self.hub.refuse:
            return False

        def deliver() -> None:
            result = self.hub.result_for(operation_id)
            on_complete(result)
            device = self.hub.device_client
            if (
                result is ConfirmationResult.OK
                and operation_id not in self.hub.drop
                and device is not None
                and device.message_callback is not None
            ):
                self.hub.dispositions.append(device.message_callback(payload))

        self.hub.submit(deliver)
        return True

    def close(self) -> None:
        self.closed = True


class FakeDeviceMethodClient:
    def __init__(self, hub: LoopbackHub) -> None:
        self.hub = hub
        self.closed = False
        self.invocations: list[tuple[str, str, str, int]] = []

    def invoke(
        self, device_id: str, method_name: str, payload: str, timeout: int
    ) -> MethodResponse:
        self.invocations.append((device_id, method_name, payload, timeout))
        operation_id = self.hub.check(payload)
        if operation_id in self.hub.refuse:
            raise ConnectionError("injected connection failure")
        device = self.hub.device_client
        if operation_id in self.hub.drop or device is None or device.method_callback is None:
            return MethodResponse(504, '{"error": "timeout"}')
        return device.method_callback(method_name, payload)

    def close(self) -> None:
        self.closed = True


class FakeServiceConnection:
    def __init__(self, hub: LoopbackHub) -> None:
        self.hub = hub
        self.messaging_clients: list[FakeMessagingClient] = []
        self.method_clients: list[FakeDeviceMethodClient] = []

    def create_messaging_client(self) -> FakeMessagingClient:
        client = FakeMessagingClient(self.hub)
        self.messaging_clients.append(client)
        return client

    def create_device_method_client(self) -> FakeDeviceMethodClient:
        client = FakeDeviceMethodClient(self.hub)
        self.method_clients.append(client)
        return client

    def create_telemetry_listener(self, device_id: str) -> FakeTelemetryListener:
        return FakeTelemetryListener(self.hub, device_id)


class FakeClock:
    """Deterministic monotonic clock; ``sleep`` advances it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


def ts(seconds: float) -> datetime:
    """Local timestamp *seconds* after a fixed epoch."""
    return datetime(2026, 1, 1, 12, 0, 0) + timedelta(seconds=seconds)


# ── Fixtures ──────────────────────────────────────────────


@pytest.fixture
def settings() -> LonghaulSettings:
    return LonghaulSettings(
        iteration_seconds=0.01,
        total_seconds=0.05,
        drain_iterations=5,
        messenger_open_timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        id_lock_timeout_seconds=0.5,
    )


@pytest.fixture
def hub() -> Iterator[LoopbackHub]:
    loopback = LoopbackHub()
    yield loopback
    loopback.shutdown()


@pytest.fixture
def service(hub: LoopbackHub) -> FakeServiceConnection:
    return FakeServiceConnection(hub)


@pytest.fixture
def device_client(hub: LoopbackHub) -> FakeDeviceClient:
    return FakeDeviceClient(hub)


@pytest.fixture
def longhaul_run(
    settings: LonghaulSettings, service: FakeServiceConnection
) -> Iterator[LonghaulRun]:
    with LonghaulRun(settings, service=service) as run:
        yield run


@pytest.fixture
def connected_run(
    longhaul_run: LonghaulRun, device_client: FakeDeviceClient
) -> LonghaulRun:
    longhaul_run.connect_device_client(device_client, DEVICE)
    return longhaul_run


@pytest.fixture
def flushing_sleep(hub: LoopbackHub) -> Callable[[float], None]:
    """Real sleep that first waits for every in-flight transport callback."""

    def _sleep(seconds: float) -> None:
        hub.flush()
        time.sleep(seconds)

    return _sleep
