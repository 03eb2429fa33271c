"""Resources owned by one longhaul run.

A ``LonghaulRun`` is created once per harness invocation and owns:

- the run id embedded in every correlation envelope,
- the ``ClientStatistics`` ledger,
- the ``UniqueIdGenerator`` issuing operation ids,
- the device client and the service-side clients opened for the run.

It also hosts the device-side receive paths (cloud-to-device messages and
device methods) and the service-side telemetry receive path, since all of
them need the run id and the ledger.  Those callbacks run on transport
threads; they touch only the ledger, which is internally locked.

Usage::

    with LonghaulRun(service=service_connection) as run:
        run.connect_device_client(client, device)
        verdict = TelemetryTest(run).run(1.0, 600.0)
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from longhaul.config import LonghaulSettings, get_settings
from longhaul.engine.transport import (
    AuthMethod,
    ConnectionStatus,
    ConnectionStatusReason,
    DeviceClient,
    DeviceMethodClient,
    MessageDisposition,
    MessagingClient,
    MethodResponse,
    ProvisionedDevice,
    ServiceConnection,
    TelemetryListener,
)
from longhaul.kernel import correlation
from longhaul.kernel.exceptions import ConfigurationFault
from longhaul.kernel.ids import UniqueIdGenerator
from longhaul.kernel.scheduler import PollResult, wait_for
from longhaul.kernel.statistics import ClientStatistics, EventKind

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)

OPTION_PRODUCT_INFO = "product_info"
OPTION_X509_CERT = "x509certificate"
OPTION_X509_PRIVATE_KEY = "x509privatekey"


class LonghaulRun:
    """One longhaul test run and everything it owns."""

    def __init__(
        self,
        settings: LonghaulSettings | None = None,
        *,
        service: ServiceConnection | None = None,
        test_run_id: str | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings or get_settings()
        self._test_run_id = test_run_id or str(uuid.uuid4())
        self._now = now
        self._statistics = ClientStatistics()
        self._ids = UniqueIdGenerator(lock_timeout=self._settings.id_lock_timeout_seconds)
        self._lock = threading.Lock()

        self._service = service
        self._device_client: DeviceClient | None = None
        self._device: ProvisionedDevice | None = None
        self._messaging_client: MessagingClient | None = None
        self._messenger_open = False
        self._method_client: DeviceMethodClient | None = None
        self._telemetry_listener: TelemetryListener | None = None
        self._closed = False

        log.info("Longhaul run %s created", self._test_run_id)

    # -- read-only accessors -----------------------------------------------

    @property
    def test_run_id(self) -> str:
        return self._test_run_id

    @property
    def settings(self) -> LonghaulSettings:
        return self._settings

    @property
    def statistics(self) -> ClientStatistics:
        return self._statistics

    @property
    def device_client(self) -> DeviceClient | None:
        return self._device_client

    @property
    def device(self) -> ProvisionedDevice | None:
        return self._device

    @property
    def service(self) -> ServiceConnection | None:
        return self._service

    @property
    def messaging_client(self) -> MessagingClient | None:
        return self._messaging_client

    @property
    def device_method_client(self) -> DeviceMethodClient | None:
        return self._method_client

    @property
    def telemetry_listener(self) -> TelemetryListener | None:
        return self._telemetry_listener

    @property
    def messenger_open(self) -> bool:
        with self._lock:
            return self._messenger_open

    @property
    def closed(self) -> bool:
        return self._closed

    def now(self) -> datetime:
        return self._now()

    def next_operation_id(self) -> int:
        """Next operation id for this run; ``0`` means generation failed."""
        return self._ids.next_id()

    # -- prerequisites -----------------------------------------------------

    def require_device(self) -> tuple[DeviceClient, ProvisionedDevice]:
        """Return the connected device client and device, or raise.

        Raises
        ------
        ConfigurationFault
            If no device client has been connected.
        """
        if self._closed:
            raise ConfigurationFault("run", "run has been closed")
        if self._device_client is None or self._device is None:
            raise ConfigurationFault("device_client", "IoT device client not initialized")
        return self._device_client, self._device

    def require_service(self) -> ServiceConnection:
        if self._closed:
            raise ConfigurationFault("run", "run has been closed")
        if self._service is None:
            raise ConfigurationFault("service", "service client not initialized")
        return self._service

    # -- device client -----------------------------------------------------

    def connect_device_client(
        self, client: DeviceClient, device: ProvisionedDevice
    ) -> DeviceClient:
        """Configure *client* for *device* and register the receive paths.

        Raises
        ------
        ConfigurationFault
            If a client is already connected, or the client refuses an
            x509 option or any callback registration.
        """
        if self._device_client is not None:
            raise ConfigurationFault("device_client", "a device client is already connected")

        if device.auth_method is AuthMethod.X509 and not (
            client.set_option(OPTION_X509_CERT, device.certificate)
            and client.set_option(OPTION_X509_PRIVATE_KEY, device.private_key)
        ):
            client.close()
            raise ConfigurationFault(
                "device_client", "could not set the device x509 certificate or private key"
            )

        client.set_option(OPTION_PRODUCT_INFO, self._settings.product_info)

        registrations: list[tuple[str, Callable[[Any], bool], Callable[..., Any]]] = [
            ("connection status", client.set_connection_status_callback, self.on_connection_status),
            ("cloud-to-device message", client.set_message_callback, self.on_c2d_message_received),
            ("device method", client.set_device_method_callback, self.on_device_method_received),
        ]
        for name, register, callback in registrations:
            if not register(callback):
                client.close()
                raise ConfigurationFault(
                    "device_client", f"failed setting the {name} callback"
                )

        self._device_client = client
        self._device = device
        log.info("Device client connected for device %s", device.device_id)
        return client

    # -- receive paths (transport threads) ---------------------------------

    def on_connection_status(
        self, status: ConnectionStatus, reason: ConnectionStatusReason
    ) -> None:
        self._statistics.record_connection_status(
            status, reason, timestamp=self._now()
        )

    def on_c2d_message_received(self, payload: bytes | str) -> MessageDisposition:
        """Record a cloud-to-device arrival; returns the message disposition.

        Messages that do not belong to this run are acknowledged and dropped
        unless ``ack_foreign_messages`` is disabled, in which case they are
        abandoned for redelivery.
        """
        received_at = self._now()
        operation_id = correlation.match(payload, self._test_run_id)
        if operation_id is None:
            if self._settings.ack_foreign_messages:
                return MessageDisposition.ACCEPTED
            return MessageDisposition.ABANDONED

        self._statistics.add_c2d_info(
            EventKind.RECEIVED, operation_id, timestamp=received_at
        )
        return MessageDisposition.ACCEPTED

    def on_device_method_received(
        self, method_name: str, payload: bytes | str
    ) -> MethodResponse:
        """Record a device method arrival and echo its payload back."""
        received_at = self._now()
        if method_name != self._settings.device_method_name:
            log.error("Unexpected device method received (%s)", method_name)
            return MethodResponse(404, '{"error": "unknown method"}')

        operation_id = correlation.match(payload, self._test_run_id)
        if operation_id is None:
            return MethodResponse(400, '{"error": "not a longhaul invocation"}')

        self._statistics.add_device_method_info(
            EventKind.RECEIVED, operation_id, timestamp=received_at
        )
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8")
        return MethodResponse(200, payload)

    def on_telemetry_received(self, payload: bytes | str) -> bool:
        """Record a telemetry arrival seen by the service-side listener."""
        received_at = self._now()
        operation_id = correlation.match(payload, self._test_run_id)
        if operation_id is None:
            return False
        self._statistics.add_telemetry_info(
            EventKind.RECEIVED, operation_id, timestamp=received_at
        )
        return True

    # -- service clients ---------------------------------------------------

    def start_telemetry_listener(self) -> TelemetryListener:
        """Listen for this run's telemetry on the service side.

        Events enqueued up to ``service_event_wait_delta_seconds`` before now
        are included.

        Raises
        ------
        ConfigurationFault
            If already listening, prerequisites are missing, or the listener
            refuses the request.
        """
        _, device = self.require_device()
        service = self.require_service()
        if self._telemetry_listener is not None:
            raise ConfigurationFault("telemetry_listener", "already listening")

        listener = service.create_telemetry_listener(device.device_id)
        window_start = self._now() - timedelta(
            seconds=self._settings.service_event_wait_delta_seconds
        )
        if not listener.listen(window_start, self.on_telemetry_received):
            listener.close()
            raise ConfigurationFault(
                "telemetry_listener", "failed listening for device to cloud messages"
            )

        self._telemetry_listener = listener
        log.info("Listening for telemetry from %s since %s", device.device_id, window_start)
        return listener

    def stop_telemetry_listener(self) -> bool:
        """Stop and release the telemetry listener; ``False`` if none was active."""
        listener = self._telemetry_listener
        if listener is None:
            log.error("Telemetry listener not initialized")
            return False

        if not listener.listen(None, None):
            log.error("Failed stopping listening for device to cloud messages")
        listener.close()
        self._telemetry_listener = None
        return True

    def open_messaging_client(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> MessagingClient:
        """Create the cloud-to-device messenger and wait until it is open.

        An already open messenger is reused.

        Raises
        ------
        ConfigurationFault
            If prerequisites are missing or the messenger refuses to open.
        TimeoutFault
            If the open-complete callback does not fire within
            ``messenger_open_timeout_seconds``.
        """
        self.require_device()
        service = self.require_service()
        if self._messaging_client is not None and self.messenger_open:
            return self._messaging_client
        if self._messaging_client is not None:
            raise ConfigurationFault("messaging_client", "messenger is still opening")

        client = service.create_messaging_client()
        if not client.open(self._on_messenger_open_complete):
            client.close()
            raise ConfigurationFault(
                "messaging_client", "failed opening the cloud-to-device messenger"
            )
        self._messaging_client = client

        def messenger_opened() -> PollResult:
            return PollResult.SUCCESS if self.messenger_open else PollResult.CONTINUE

        wait_for(
            messenger_opened,
            self._settings.messenger_open_timeout_seconds,
            poll_interval=self._settings.poll_interval_seconds,
            description="cloud-to-device messenger open",
            clock=clock,
            sleep=sleep,
        )
        log.info("Cloud-to-device messenger open")
        return client

    def _on_messenger_open_complete(self) -> None:
        with self._lock:
            self._messenger_open = True

    def open_device_method_client(self) -> DeviceMethodClient:
        """Create (or reuse) the service-side device method client."""
        self.require_device()
        service = self.require_service()
        if self._method_client is None:
            self._method_client = service.create_device_method_client()
        return self._method_client

    # -- teardown ----------------------------------------------------------

    def close(self) -> None:
        """Release every client owned by the run.  Idempotent."""
        if self._closed:
            return
        if self._telemetry_listener is not None:
            self.stop_telemetry_listener()
        for name, client in (
            ("messaging client", self._messaging_client),
            ("device method client", self._method_client),
            ("device client", self._device_client),
        ):
            if client is None:
                continue
            try:
                client.close()
            except OSError:
                log.exception("Failed closing %s", name)
        self._messaging_client = None
        self._method_client = None
        self._device_client = None
        with self._lock:
            self._messenger_open = False
        self._closed = True
        log.info("Longhaul run %s closed", self._test_run_id)

    def __enter__(self) -> LonghaulRun:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"LonghaulRun(test_run_id={self._test_run_id!r}, closed={self._closed})"
