"""Interfaces to the transport and service collaborators.

The harness never opens connections itself.  It drives a device-side
client and a service-side connection through the narrow protocols below;
any SDK can be adapted to them.

Threading contract
------------------
Completion callbacks (``on_complete``), message/method callbacks and
connection status callbacks may be invoked on transport-owned threads,
concurrently with the caller and with each other.  Send calls must not
block waiting for delivery.

Failure contract
----------------
A send or invoke attempt that fails locally either returns ``False`` or
raises ``TransientSendFault`` (``OSError`` subclasses such as
``ConnectionError`` are treated the same way).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable


class ConfirmationResult(StrEnum):
    """Result reported by a send completion callback."""

    OK = "OK"
    BECAUSE_DESTROY = "BECAUSE_DESTROY"
    MESSAGE_TIMEOUT = "MESSAGE_TIMEOUT"
    ERROR = "ERROR"


class ConnectionStatus(StrEnum):
    AUTHENTICATED = "AUTHENTICATED"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class ConnectionStatusReason(StrEnum):
    EXPIRED_SAS_TOKEN = "EXPIRED_SAS_TOKEN"
    DEVICE_DISABLED = "DEVICE_DISABLED"
    BAD_CREDENTIAL = "BAD_CREDENTIAL"
    RETRY_EXPIRED = "RETRY_EXPIRED"
    NO_NETWORK = "NO_NETWORK"
    COMMUNICATION_ERROR = "COMMUNICATION_ERROR"
    CONNECTION_OK = "CONNECTION_OK"


class MessageDisposition(StrEnum):
    """Disposition returned to the transport for a cloud-to-device message."""

    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ABANDONED = "ABANDONED"


class AuthMethod(StrEnum):
    SAS = "SAS"
    X509 = "X509"


@dataclass(frozen=True, slots=True)
class ProvisionedDevice:
    """A device identity provisioned for the run by the account collaborator."""

    device_id: str
    connection_string: str
    auth_method: AuthMethod = AuthMethod.SAS
    certificate: str | None = None
    private_key: str | None = None


@dataclass(frozen=True, slots=True)
class MethodResponse:
    status: int
    payload: str


# ── Device side ──────────────────────────────────────────


@runtime_checkable
class DeviceClient(Protocol):
    """Device-side session client."""

    def send_event_async(
        self,
        payload: str,
        on_complete: Callable[[ConfirmationResult], None],
    ) -> bool:
        """Queue a telemetry message; completion is reported via *on_complete*."""
        ...

    def set_option(self, name: str, value: object) -> bool: ...

    def set_connection_status_callback(
        self,
        callback: Callable[[ConnectionStatus, ConnectionStatusReason], None],
    ) -> bool: ...

    def set_message_callback(
        self,
        callback: Callable[[bytes | str], MessageDisposition],
    ) -> bool: ...

    def set_device_method_callback(
        self,
        callback: Callable[[str, bytes | str], MethodResponse],
    ) -> bool: ...

    def close(self) -> None: ...


# ── Service side ─────────────────────────────────────────


@runtime_checkable
class MessagingClient(Protocol):
    """Service-side cloud-to-device messenger."""

    def open(self, on_open_complete: Callable[[], None]) -> bool:
        """Start opening; *on_open_complete* fires once the messenger is usable."""
        ...

    def send_async(
        self,
        device_id: str,
        payload: str,
        on_complete: Callable[[ConfirmationResult], None],
    ) -> bool: ...

    def close(self) -> None: ...


@runtime_checkable
class DeviceMethodClient(Protocol):
    """Service-side direct method invoker."""

    def invoke(
        self,
        device_id: str,
        method_name: str,
        payload: str,
        timeout: int,
    ) -> MethodResponse:
        """Invoke *method_name* on *device_id*; blocks up to *timeout* seconds."""
        ...

    def close(self) -> None: ...


@runtime_checkable
class TelemetryListener(Protocol):
    """Service-side reader of device-to-cloud events."""

    def listen(
        self,
        window_start: datetime | None,
        on_message: Callable[[bytes | str], bool] | None,
    ) -> bool:
        """Start delivering events enqueued after *window_start*.

        ``listen(None, None)`` is the no-op request that stops delivery.
        """
        ...

    def close(self) -> None: ...


@runtime_checkable
class ServiceConnection(Protocol):
    """Authenticated service handle; factory for the service-side clients."""

    def create_messaging_client(self) -> MessagingClient: ...

    def create_device_method_client(self) -> DeviceMethodClient: ...

    def create_telemetry_listener(self, device_id: str) -> TelemetryListener: ...
