"""Longhaul harness configuration."""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

from longhaul.kernel.statistics import Category

logger = logging.getLogger(__name__)


class LonghaulSettings(BaseSettings):
    """Environment-driven settings for longhaul runs (``LONGHAUL_*``)."""

    # Loop cadence
    iteration_seconds: float = Field(default=1.0, gt=0)
    total_seconds: float = Field(default=60.0, ge=0)
    drain_iterations: int = Field(default=10, ge=0)  # extra time for the last messages

    # Verdict thresholds (seconds)
    max_telemetry_travel_time: float = Field(default=300.0, gt=0)
    max_c2d_travel_time: float = Field(default=300.0, gt=0)
    max_device_method_travel_time: int = Field(default=300, gt=0)

    # Device methods
    device_method_name: str = "longhaulDeviceMethod"
    device_method_timeout: int = Field(default=300, gt=0)

    # Service side
    service_event_wait_delta_seconds: int = Field(default=60, ge=0)
    messenger_open_timeout_seconds: float = Field(default=30.0, gt=0)
    poll_interval_seconds: float = Field(default=0.1, gt=0)

    # Run resources
    id_lock_timeout_seconds: float = Field(default=5.0, gt=0)
    product_info: str = "Python-LongHaul"
    ack_foreign_messages: bool = True

    model_config = {"env_prefix": "LONGHAUL_", "env_file": ".env", "extra": "ignore"}

    def threshold_for(self, category: Category) -> float:
        """Maximum tolerated travel time for *category*, in seconds."""
        return {
            Category.TELEMETRY: self.max_telemetry_travel_time,
            Category.C2D: self.max_c2d_travel_time,
            Category.DEVICE_METHOD: self.max_device_method_travel_time,
        }[category]

    def drain_seconds(self, iteration_seconds: float) -> float:
        return iteration_seconds * self.drain_iterations


@lru_cache(maxsize=1)
def get_settings() -> LonghaulSettings:
    settings = LonghaulSettings()
    logger.debug(
        "Longhaul config: iteration=%ss total=%ss drain_iterations=%d",
        settings.iteration_seconds,
        settings.total_seconds,
        settings.drain_iterations,
    )
    return settings
