"""Engine package for the longhaul harness.

Provides the run resources, transport interfaces and the per-category
orchestrators.
"""

from __future__ import annotations

from .orchestrators import (
    ORCHESTRATORS,
    CloudToDeviceTest,
    DeviceMethodTest,
    LonghaulTest,
    TelemetryTest,
)
from .resources import LonghaulRun
from .transport import (
    AuthMethod,
    ConfirmationResult,
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

__all__ = [
    "ORCHESTRATORS",
    "AuthMethod",
    "CloudToDeviceTest",
    "ConfirmationResult",
    "ConnectionStatus",
    "ConnectionStatusReason",
    "DeviceClient",
    "DeviceMethodClient",
    "DeviceMethodTest",
    "LonghaulRun",
    "LonghaulTest",
    "MessageDisposition",
    "MessagingClient",
    "MethodResponse",
    "ProvisionedDevice",
    "ServiceConnection",
    "TelemetryListener",
    "TelemetryTest",
]
