"""Core data models used across the accessory tree, sync loop, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class Format(str, Enum):
    BOOL = "bool"
    FLOAT = "float"
    INT = "int"
    UINT8 = "uint8"
    STRING = "string"


class Permission(str, Enum):
    READ = "pr"
    WRITE = "pw"
    NOTIFY = "ev"


class Category(IntEnum):
    OTHER = 1
    BRIDGE = 2
    FAN = 3
    SENSOR = 10


class ServiceType(str, Enum):
    INFO = "3E"
    FAN = "40"
    TEMPERATURE_SENSOR = "8A"


class RotationDirection(IntEnum):
    CLOCKWISE = 0
    COUNTER_CLOCKWISE = 1


class PairingState(str, Enum):
    NOT_PAIRED = "notPaired"
    PAIRING = "pairing"
    PAIRED = "paired"


class SensorKind(str, Enum):
    TEMPERATURE = "temperature"
    FAN = "fan"


@dataclass(frozen=True)
class CharacteristicSpec:
    kind: str
    type_code: str
    format: Format
    permissions: frozenset[Permission]
    default: object
    min_value: float | None = None
    max_value: float | None = None
    step: float | None = None
    unit: str | None = None
    valid_values: tuple[int, ...] | None = None
    max_length: int | None = None


@dataclass(frozen=True)
class AccessoryInfo:
    name: str
    serial_number: str
    manufacturer: str = "hapbridge"
    model: str = "hapbridge"
    firmware_revision: str = "0.1.0"


@dataclass(frozen=True)
class SensorDescriptor:
    kind: SensorKind
    identifier: str
    name: str


@dataclass(frozen=True)
class TickReport:
    updated: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()
    errors: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BridgeSettings:
    name: str
    serial_number: str
    manufacturer: str
    model: str
    firmware_revision: str
    setup_code: str
    setup_id: str


@dataclass(frozen=True)
class SyncSettings:
    poll_period: float = 1.0
    initial_delay: float = 1.0


@dataclass(frozen=True)
class SensorSettings:
    source: str
    include: tuple[str, ...] = ()
    simulated_temperatures: dict[str, float | None] = field(default_factory=dict)
    simulated_fans: dict[str, int | None] = field(default_factory=dict)


@dataclass(frozen=True)
class BridgeConfig:
    bridge: BridgeSettings
    storage_path: str
    port: int
    sync: SyncSettings
    sensors: SensorSettings
    log_level: str
