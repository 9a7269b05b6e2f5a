"""Sensor source backed by psutil's hardware sensor readers."""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Sequence
from typing import Any

import psutil

from hapbridge.core.model import SensorDescriptor, SensorKind

LOGGER = logging.getLogger(__name__)


def _chip_ids(chip: str, entries: Sequence[Any]) -> list[str]:
    """Identifiers for one chip's entries.

    Unlabelled entries use their index. A label that repeats within the chip,
    such as `Composite` on two NVMe drives, gets `#index` appended.
    """
    counts = Counter(entry.label for entry in entries if entry.label)
    identifiers = []
    for index, entry in enumerate(entries):
        if not entry.label:
            identifiers.append(f"{chip}/{index}")
        elif counts[entry.label] > 1:
            identifiers.append(f"{chip}/{entry.label}#{index}")
        else:
            identifiers.append(f"{chip}/{entry.label}")
    return identifiers


def _entries(reader: Callable[[], dict[str, Sequence[Any]]] | None) -> dict[str, Sequence[Any]]:
    if reader is None:
        return {}
    try:
        return reader() or {}
    except (OSError, RuntimeError) as exc:
        LOGGER.debug("psutil sensor read failed: %s", exc)
        return {}


class PsutilSensorSource:
    """Enumerates chip temperatures and fans reported by psutil.

    Platforms without sensor support report no sensors rather than failing.
    ``include`` restricts enumeration to the given identifiers, in that order.
    """

    def __init__(self, include: Sequence[str] = ()) -> None:
        self.include = tuple(include)
        self._temperatures = getattr(psutil, "sensors_temperatures", None)
        self._fans = getattr(psutil, "sensors_fans", None)

    def list_sensors(self) -> list[SensorDescriptor]:
        temperatures = [
            SensorDescriptor(SensorKind.TEMPERATURE, ident, ident)
            for ident in self._identifiers(self._temperatures)
        ]
        fans = [SensorDescriptor(SensorKind.FAN, ident, f"Fan-{ident}") for ident in self._identifiers(self._fans)]
        sensors = temperatures + fans
        if not self.include:
            return sensors
        by_id = {s.identifier: s for s in sensors}
        missing = [ident for ident in self.include if ident not in by_id]
        if missing:
            LOGGER.warning("Configured sensors not reported by psutil: %s", ", ".join(missing))
        return [by_id[ident] for ident in self.include if ident in by_id]

    def read_temperature(self, identifier: str) -> float | None:
        entry = self._lookup(self._temperatures, identifier)
        if entry is None or entry.current is None:
            return None
        return float(entry.current)

    def read_fan_rpm(self, identifier: str) -> int | None:
        entry = self._lookup(self._fans, identifier)
        if entry is None or entry.current is None:
            return None
        return int(entry.current)

    @staticmethod
    def _identifiers(reader: Callable[[], dict[str, Sequence[Any]]] | None) -> list[str]:
        identifiers: list[str] = []
        for chip, entries in sorted(_entries(reader).items()):
            identifiers.extend(_chip_ids(chip, entries))
        return identifiers

    @staticmethod
    def _lookup(reader: Callable[[], dict[str, Sequence[Any]]] | None, identifier: str) -> Any:
        for chip, entries in _entries(reader).items():
            for candidate, entry in zip(_chip_ids(chip, entries), entries):
                if candidate == identifier:
                    return entry
        return None
