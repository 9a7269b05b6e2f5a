"""Sensor source interfaces."""

from __future__ import annotations

from typing import Protocol

from hapbridge.core.model import SensorDescriptor


class SensorSource(Protocol):
    def list_sensors(self) -> list[SensorDescriptor]:
        """Return the available sensors, temperature sensors first, then fans."""

    def read_temperature(self, identifier: str) -> float | None:
        """Return degrees Celsius, or None when no reading is available this tick."""

    def read_fan_rpm(self, identifier: str) -> int | None:
        """Return the current fan speed in RPM, or None when unavailable."""
