"""Deterministic sensor source driven by configuration values."""

from __future__ import annotations

from collections.abc import Mapping

from hapbridge.core.model import SensorDescriptor, SensorKind


class SimulatedSensorSource:
    """Returns fixed readings; a ``None`` reading simulates an unavailable sensor.

    Readings can be changed at runtime with :meth:`set_temperature` and
    :meth:`set_fan_rpm`.
    """

    def __init__(
        self,
        temperatures: Mapping[str, float | None] | None = None,
        fans: Mapping[str, int | None] | None = None,
    ) -> None:
        self._temperatures: dict[str, float | None] = dict(temperatures or {})
        self._fans: dict[str, int | None] = dict(fans or {})

    def list_sensors(self) -> list[SensorDescriptor]:
        sensors = [SensorDescriptor(SensorKind.TEMPERATURE, name, name) for name in self._temperatures]
        sensors.extend(SensorDescriptor(SensorKind.FAN, ident, f"Fan-{ident}") for ident in self._fans)
        return sensors

    def read_temperature(self, identifier: str) -> float | None:
        return self._temperatures.get(identifier)

    def read_fan_rpm(self, identifier: str) -> int | None:
        return self._fans.get(identifier)

    def set_temperature(self, identifier: str, value: float | None) -> None:
        if identifier not in self._temperatures:
            raise KeyError(identifier)
        self._temperatures[identifier] = value

    def set_fan_rpm(self, identifier: str, value: int | None) -> None:
        if identifier not in self._fans:
            raise KeyError(identifier)
        self._fans[identifier] = value
