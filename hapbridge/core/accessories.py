"""Accessory/service/characteristic tree and its construction."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import Any

from hapbridge.core.errors import ValidationError
from hapbridge.core.model import (
    AccessoryInfo,
    Category,
    CharacteristicSpec,
    Format,
    Permission,
    RotationDirection,
    SensorDescriptor,
    SensorKind,
    ServiceType,
)

LOGGER = logging.getLogger(__name__)

BRIDGE_AID = 1

ChangeListener = Callable[["Characteristic", Any, Any], None]
Notifier = Callable[["Characteristic", Any], None]

_READ = frozenset({Permission.READ})
_READ_NOTIFY = frozenset({Permission.READ, Permission.NOTIFY})
_READ_WRITE_NOTIFY = frozenset({Permission.READ, Permission.WRITE, Permission.NOTIFY})

IDENTIFY = CharacteristicSpec("identify", "14", Format.BOOL, frozenset({Permission.WRITE}), False)
MANUFACTURER = CharacteristicSpec("manufacturer", "20", Format.STRING, _READ, "", max_length=64)
MODEL = CharacteristicSpec("model", "21", Format.STRING, _READ, "", max_length=64)
NAME = CharacteristicSpec("name", "23", Format.STRING, _READ, "", max_length=64)
SERIAL_NUMBER = CharacteristicSpec("serialNumber", "30", Format.STRING, _READ, "", max_length=64)
FIRMWARE_REVISION = CharacteristicSpec("firmwareRevision", "52", Format.STRING, _READ, "", max_length=64)

POWER_STATE = CharacteristicSpec("powerState", "25", Format.BOOL, _READ_WRITE_NOTIFY, False)
ROTATION_DIRECTION = CharacteristicSpec(
    "rotationDirection",
    "28",
    Format.INT,
    _READ_WRITE_NOTIFY,
    int(RotationDirection.CLOCKWISE),
    min_value=0,
    max_value=1,
    step=1,
    valid_values=tuple(int(d) for d in RotationDirection),
)
# Carries raw RPM from the sync loop, so no upper bound is declared.
ROTATION_SPEED = CharacteristicSpec(
    "rotationSpeed",
    "29",
    Format.FLOAT,
    _READ_WRITE_NOTIFY,
    0.0,
    min_value=0,
    step=1,
    unit="percentage",
)
# Only absolute zero bounds hardware readings.
CURRENT_TEMPERATURE = CharacteristicSpec(
    "currentTemperature",
    "11",
    Format.FLOAT,
    _READ_NOTIFY,
    0.0,
    min_value=-270,
    step=0.1,
    unit="celsius",
)

REQUIRED_CHARACTERISTICS: dict[ServiceType, tuple[CharacteristicSpec, ...]] = {
    ServiceType.INFO: (IDENTIFY, MANUFACTURER, MODEL, NAME, SERIAL_NUMBER, FIRMWARE_REVISION),
    ServiceType.FAN: (POWER_STATE, ROTATION_SPEED, ROTATION_DIRECTION),
    ServiceType.TEMPERATURE_SENSOR: (CURRENT_TEMPERATURE,),
}


def _validate(spec: CharacteristicSpec, value: Any) -> Any:
    fmt = spec.format
    if fmt is Format.BOOL:
        if not isinstance(value, bool):
            raise ValidationError(f"{spec.kind} expects a boolean, got {value!r}")
        return value

    if fmt is Format.STRING:
        if not isinstance(value, str):
            raise ValidationError(f"{spec.kind} expects a string, got {value!r}")
        if spec.max_length is not None and len(value) > spec.max_length:
            raise ValidationError(f"{spec.kind} exceeds max length {spec.max_length}")
        return value

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{spec.kind} expects a number, got {value!r}")

    if fmt is Format.FLOAT:
        if not math.isfinite(value):
            raise ValidationError(f"{spec.kind} expects a finite number, got {value!r}")
        coerced: int | float = float(value)
    else:
        if isinstance(value, float):
            if not value.is_integer():
                raise ValidationError(f"{spec.kind} expects an integer, got {value!r}")
            value = int(value)
        coerced = int(value)
        if fmt is Format.UINT8 and not 0 <= coerced <= 255:
            raise ValidationError(f"{spec.kind} must fit in uint8, got {value!r}")

    if spec.min_value is not None and coerced < spec.min_value:
        raise ValidationError(f"{spec.kind} value {value!r} is below minimum {spec.min_value}")
    if spec.max_value is not None and coerced > spec.max_value:
        raise ValidationError(f"{spec.kind} value {value!r} is above maximum {spec.max_value}")
    if spec.valid_values is not None and coerced not in spec.valid_values:
        allowed = ", ".join(str(v) for v in spec.valid_values)
        raise ValidationError(f"{spec.kind} value {value!r} is not one of: {allowed}")
    return coerced


class Characteristic:
    """A typed value cell.

    The value is guarded by a per-characteristic lock. Listeners and the
    subscriber notifier are invoked after the lock is released, so they are
    free to read or write the model again.
    """

    def __init__(self, spec: CharacteristicSpec, value: Any = None) -> None:
        self.spec = spec
        self.aid = 0
        self.iid = 0
        self._lock = threading.Lock()
        self._value = spec.default if value is None else _validate(spec, value)
        self._listeners: list[ChangeListener] = []
        self._subscribers: set[str] = set()
        self._notifier: Notifier | None = None

    def __repr__(self) -> str:
        return f"<Characteristic {self.spec.kind} aid={self.aid} iid={self.iid}>"

    @property
    def kind(self) -> str:
        return self.spec.kind

    @property
    def key(self) -> tuple[int, int]:
        return self.aid, self.iid

    @property
    def writable(self) -> bool:
        return Permission.WRITE in self.spec.permissions

    @property
    def notifiable(self) -> bool:
        return Permission.NOTIFY in self.spec.permissions

    def read(self) -> Any:
        with self._lock:
            return self._value

    def validate(self, value: Any) -> Any:
        """Return ``value`` coerced to the declared format, or raise ValidationError."""
        return _validate(self.spec, value)

    def write(self, value: Any, *, remote: bool = False) -> Any:
        """Validate and store ``value``, returning the previous value.

        Listeners always receive ``(old, new)``, including when nothing
        changed. ``remote`` marks writes originating from a paired controller,
        which must respect the write permission.
        """
        if remote and not self.writable:
            raise ValidationError(f"{self.spec.kind} is not writable")
        coerced = _validate(self.spec, value)

        with self._lock:
            old = self._value
            self._value = coerced
            listeners = tuple(self._listeners)
            notifier = self._notifier if self._subscribers else None

        for listener in listeners:
            try:
                listener(self, old, coerced)
            except Exception:
                LOGGER.exception("Change listener failed for %r", self)
        if notifier is not None:
            try:
                notifier(self, coerced)
            except Exception:
                LOGGER.exception("Notification push failed for %r", self)
        return old

    def add_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.remove(listener)

    def bind_notifier(self, notifier: Notifier | None) -> None:
        with self._lock:
            self._notifier = notifier

    def subscribe(self, controller_id: str) -> bool:
        if not self.notifiable:
            raise ValidationError(f"{self.spec.kind} does not support notifications")
        with self._lock:
            added = controller_id not in self._subscribers
            self._subscribers.add(controller_id)
        return added

    def unsubscribe(self, controller_id: str) -> bool:
        with self._lock:
            removed = controller_id in self._subscribers
            self._subscribers.discard(controller_id)
        return removed

    @property
    def subscribers(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._subscribers)

    def describe(self) -> dict[str, Any]:
        spec = self.spec
        doc: dict[str, Any] = {
            "iid": self.iid,
            "type": spec.type_code,
            "format": spec.format.value,
            "perms": sorted(p.value for p in spec.permissions),
        }
        if Permission.READ in spec.permissions:
            doc["value"] = self.read()
        for key, attr in (("minValue", spec.min_value), ("maxValue", spec.max_value), ("minStep", spec.step)):
            if attr is not None:
                doc[key] = attr
        if spec.unit:
            doc["unit"] = spec.unit
        if spec.valid_values is not None:
            doc["valid-values"] = list(spec.valid_values)
        if spec.max_length is not None:
            doc["maxLen"] = spec.max_length
        return doc


class Service:
    def __init__(self, service_type: ServiceType, characteristics: Sequence[Characteristic]) -> None:
        kinds = [c.kind for c in characteristics]
        required = [spec.kind for spec in REQUIRED_CHARACTERISTICS[service_type]]
        missing = [kind for kind in required if kind not in kinds]
        if missing:
            raise ValidationError(f"Service {service_type.name} is missing characteristics: {', '.join(missing)}")
        if len(set(kinds)) != len(kinds):
            raise ValidationError(f"Service {service_type.name} has duplicate characteristics")
        self.type = service_type
        self.iid = 0
        self.characteristics = tuple(characteristics)
        self._by_kind = {c.kind: c for c in self.characteristics}

    def __repr__(self) -> str:
        return f"<Service {self.type.name} iid={self.iid}>"

    def __getitem__(self, kind: str) -> Characteristic:
        return self._by_kind[kind]

    def get(self, kind: str) -> Characteristic | None:
        return self._by_kind.get(kind)

    def describe(self) -> dict[str, Any]:
        return {
            "iid": self.iid,
            "type": self.type.value,
            "characteristics": [c.describe() for c in self.characteristics],
        }


def info_service(info: AccessoryInfo) -> Service:
    return Service(
        ServiceType.INFO,
        [
            Characteristic(IDENTIFY),
            Characteristic(MANUFACTURER, info.manufacturer),
            Characteristic(MODEL, info.model),
            Characteristic(NAME, info.name),
            Characteristic(SERIAL_NUMBER, info.serial_number),
            Characteristic(FIRMWARE_REVISION, info.firmware_revision),
        ],
    )


def fan_service() -> Service:
    return Service(
        ServiceType.FAN,
        [Characteristic(POWER_STATE), Characteristic(ROTATION_SPEED), Characteristic(ROTATION_DIRECTION)],
    )


def temperature_service() -> Service:
    return Service(ServiceType.TEMPERATURE_SENSOR, [Characteristic(CURRENT_TEMPERATURE)])


class Accessory:
    """Top-level addressable device; category and services are fixed."""

    def __init__(
        self,
        aid: int,
        info: AccessoryInfo,
        category: Category,
        services: Sequence[Service] = (),
    ) -> None:
        if any(s.type is ServiceType.INFO for s in services):
            raise ValidationError("The info service is created by the accessory itself")
        self.aid = aid
        self.info = info
        self.category = category
        self.services = (info_service(info), *services)
        self._identify_handlers: list[Callable[[Accessory], None]] = []

        iid = 1
        for service in self.services:
            service.iid = iid
            iid += 1
            for characteristic in service.characteristics:
                characteristic.aid = aid
                characteristic.iid = iid
                iid += 1

    def __repr__(self) -> str:
        return f"<Accessory {self.info.name!r} aid={self.aid}>"

    @property
    def info_service(self) -> Service:
        return self.services[0]

    def service(self, service_type: ServiceType) -> Service:
        for service in self.services:
            if service.type is service_type:
                return service
        raise KeyError(service_type)

    def characteristics(self) -> Iterator[tuple[Service, Characteristic]]:
        for service in self.services:
            for characteristic in service.characteristics:
                yield service, characteristic

    def on_identify(self, handler: Callable[[Accessory], None]) -> None:
        self._identify_handlers.append(handler)

    def identify(self) -> None:
        for handler in tuple(self._identify_handlers):
            try:
                handler(self)
            except Exception:
                LOGGER.exception("Identify handler failed for %r", self)

    def describe(self) -> dict[str, Any]:
        return {"aid": self.aid, "services": [s.describe() for s in self.services]}


@dataclass(frozen=True)
class SensorBinding:
    descriptor: SensorDescriptor
    accessory: Accessory


class AccessoryTree:
    def __init__(self, bridge: Accessory, accessories: Sequence[Accessory], bindings: Sequence[SensorBinding]) -> None:
        self.bridge = bridge
        self.accessories = tuple(accessories)
        self.bindings = tuple(bindings)
        self._index: dict[tuple[int, int], tuple[Accessory, Service, Characteristic]] = {}
        self._by_aid: dict[int, Accessory] = {}
        for accessory in self.all_accessories():
            self._by_aid[accessory.aid] = accessory
            for service, characteristic in accessory.characteristics():
                self._index[characteristic.key] = (accessory, service, characteristic)

    def all_accessories(self) -> tuple[Accessory, ...]:
        return (self.bridge, *self.accessories)

    def accessory(self, aid: int) -> Accessory:
        try:
            return self._by_aid[aid]
        except KeyError:
            raise KeyError(f"Unknown accessory aid={aid}") from None

    def find(self, aid: int, iid: int) -> tuple[Accessory, Service, Characteristic]:
        try:
            return self._index[(aid, iid)]
        except KeyError:
            raise KeyError(f"Unknown characteristic aid={aid} iid={iid}") from None

    def characteristics(self) -> Iterator[Characteristic]:
        for _, _, characteristic in self._index.values():
            yield characteristic

    def describe(self) -> dict[str, Any]:
        return {"accessories": [a.describe() for a in self.all_accessories()]}


def thermometer(aid: int, info: AccessoryInfo) -> Accessory:
    return Accessory(aid, info, Category.SENSOR, [temperature_service()])


def fan(aid: int, info: AccessoryInfo) -> Accessory:
    return Accessory(aid, info, Category.FAN, [fan_service()])


_FACTORIES: dict[SensorKind, Callable[[int, AccessoryInfo], Accessory]] = {
    SensorKind.TEMPERATURE: thermometer,
    SensorKind.FAN: fan,
}


def _clip(text: str) -> str:
    # Sensor labels come from the platform and may exceed the string limit.
    return text[: NAME.max_length]


def build(bridge_info: AccessoryInfo, sensors: Sequence[SensorDescriptor]) -> AccessoryTree:
    """Build the accessory tree for ``sensors`` in the given order.

    The result only depends on the inputs: the bridge is aid 1 and every
    sensor gets the next aid.
    """
    bridge = Accessory(BRIDGE_AID, bridge_info, Category.BRIDGE)
    accessories: list[Accessory] = []
    bindings: list[SensorBinding] = []
    seen: set[tuple[SensorKind, str]] = set()
    for descriptor in sensors:
        key = (descriptor.kind, descriptor.identifier)
        if key in seen:
            raise ValidationError(f"Duplicate {descriptor.kind.value} sensor '{descriptor.identifier}'")
        seen.add(key)
        info = AccessoryInfo(
            name=_clip(descriptor.name),
            serial_number=_clip(descriptor.identifier),
            manufacturer=bridge_info.manufacturer,
            model=_clip(f"{bridge_info.model} {descriptor.kind.value}"),
            firmware_revision=bridge_info.firmware_revision,
        )
        accessory = _FACTORIES[descriptor.kind](BRIDGE_AID + len(accessories) + 1, info)
        accessories.append(accessory)
        bindings.append(SensorBinding(descriptor=descriptor, accessory=accessory))
    return AccessoryTree(bridge, accessories, bindings)
