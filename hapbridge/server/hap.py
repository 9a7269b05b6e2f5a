"""HomeKit Accessory Protocol server backed by HAP-python.

The accessory tree stays the source of truth. Each model characteristic is
mirrored by a HAP-python characteristic: local writes are pushed to the
mirror, and controller writes arrive through the mirror's setter callback as
remote writes on the model. Pairing and subscription changes reported by the
driver are re-published on ``DeviceEvents``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from functools import partial
from typing import Any

from pyhap.accessory import Accessory as HapAccessory
from pyhap.accessory import Bridge as HapBridge
from pyhap.accessory_driver import AccessoryDriver
from pyhap.characteristic import Characteristic as HapCharacteristic

from hapbridge.core.accessories import Accessory, AccessoryTree, Characteristic, Service
from hapbridge.core.errors import ServerStartError, StorageError
from hapbridge.core.events import DeviceEvents
from hapbridge.core.model import PairingState, ServiceType
from hapbridge.core.storage import FileStorage
from hapbridge.server.setup import validate_setup_code, validate_setup_id

LOGGER = logging.getLogger(__name__)

DEFAULT_PORT = 51826
START_TIMEOUT = 10.0
STOP_TIMEOUT = 5.0

_SERVICE_NAMES = {
    ServiceType.FAN: "Fan",
    ServiceType.TEMPERATURE_SENSOR: "TemperatureSensor",
}
_CHARACTERISTIC_NAMES = {
    "powerState": "On",
    "rotationDirection": "RotationDirection",
    "rotationSpeed": "RotationSpeed",
    "currentTemperature": "CurrentTemperature",
}
# Not part of the loaded service definitions; added explicitly.
_OPTIONAL_CHARACTERISTICS = frozenset({"rotationDirection", "rotationSpeed"})


def _topic(aid: int, iid: int) -> str:
    return f"{aid}.{iid}"


class _Bridge(HapBridge):
    def setup_message(self) -> None:
        # Pairing instructions are rendered by the lifecycle controller.
        pass


class _Driver(AccessoryDriver):
    """Reports pairing and subscription changes back to the owning device."""

    def __init__(self, device: HapDevice, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._device = device

    def pair(self, *args: Any, **kwargs: Any) -> Any:
        result = super().pair(*args, **kwargs)
        self._device.refresh_pairing_state()
        return result

    def unpair(self, *args: Any, **kwargs: Any) -> Any:
        result = super().unpair(*args, **kwargs)
        self._device.refresh_pairing_state()
        return result

    def async_subscribe_client_topic(self, client: Any, topic: str, subscribe: bool = True) -> None:
        was_subscribed = client in self.topics.get(topic, ())
        super().async_subscribe_client_topic(client, topic, subscribe)
        if was_subscribed != subscribe:
            self._device.subscription_changed(topic, subscribe)


class HapDevice:
    def __init__(
        self,
        tree: AccessoryTree,
        storage: FileStorage,
        *,
        setup_code: str,
        setup_id: str,
        port: int = DEFAULT_PORT,
        address: str | None = None,
        events: DeviceEvents | None = None,
        advertiser: Any = None,
    ) -> None:
        self.tree = tree
        self.storage = storage
        self.port = port
        self.events = events or DeviceEvents()
        self._setup_code = validate_setup_code(setup_code)
        self._setup_id = validate_setup_id(setup_id)
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stopped = False
        self._mirrors: dict[tuple[int, int], HapCharacteristic] = {}
        self._topics: dict[str, tuple[int, int]] = {}

        if not storage.load() and storage.path.exists():
            # HAP-python cannot load an empty state file.
            storage.reset()
        self.driver = _Driver(
            self,
            port=port,
            address=address,
            persist_file=str(storage.path),
            pincode=self._setup_code.encode("utf-8"),
            async_zeroconf_instance=advertiser,
        )
        self.driver.state.setup_id = self._setup_id
        self.bridge = self._mirror_tree()
        try:
            self.driver.add_accessory(self.bridge)
        except (KeyError, ValueError) as exc:
            raise StorageError(f"Pairing state {storage} is not usable: {exc}") from exc
        self._pairing_state = PairingState.PAIRED if self.driver.state.paired else PairingState.NOT_PAIRED

        for accessory in tree.all_accessories():
            accessory.on_identify(self._on_identify)
        for characteristic in tree.characteristics():
            characteristic.add_listener(self._on_change)

    @property
    def setup_code(self) -> str:
        return self._setup_code

    @property
    def setup_id(self) -> str:
        return self._setup_id

    def setup_payload(self) -> str:
        return self.bridge.xhm_uri()

    @property
    def is_paired(self) -> bool:
        return bool(self.driver.state.paired)

    @property
    def pairing_state(self) -> PairingState:
        with self._lock:
            return self._pairing_state

    @property
    def stopped(self) -> bool:
        with self._lock:
            return self._stopped

    def mirror_of(self, characteristic: Characteristic) -> HapCharacteristic:
        return self._mirrors[characteristic.key]

    def start(self) -> None:
        with self._lock:
            if self._stopped:
                raise ServerStartError("Server was already stopped")
            if self._thread is not None:
                return
            loop = self.driver.loop
            self._thread = threading.Thread(target=loop.run_forever, name="hapbridge-hap", daemon=True)
            self._thread.start()
            # The driver's loop runs on this thread from now on.
            self.driver.tid = self._thread
        future = asyncio.run_coroutine_threadsafe(self.driver.async_start(), loop)
        try:
            future.result(START_TIMEOUT)
        except Exception as exc:
            with self._lock:
                self._stopped = True
            self._halt_loop()
            raise ServerStartError(f"Could not start HAP server on port {self.port}: {exc}") from exc
        LOGGER.info("Serving %d accessories on port %d", len(self.tree.all_accessories()), self.port)

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            thread = self._thread
        for characteristic in self.tree.characteristics():
            characteristic.remove_listener(self._on_change)
        if thread is None:
            self.driver.loop.close()
            return
        self.driver.stop()
        thread.join(STOP_TIMEOUT)
        if thread.is_alive():
            LOGGER.warning("HAP server on port %d did not stop within %.0f seconds", self.port, STOP_TIMEOUT)
            return
        self.driver.loop.close()
        LOGGER.info("HAP server on port %d stopped", self.port)

    # Driver callbacks.

    def refresh_pairing_state(self) -> None:
        new = PairingState.PAIRED if self.driver.state.paired else PairingState.NOT_PAIRED
        with self._lock:
            old = self._pairing_state
            if old is new:
                return
            self._pairing_state = new
        self.events.pairing_state_changed.fire(old, new)

    def subscription_changed(self, topic: str, subscribed: bool) -> None:
        key = self._topics.get(topic)
        if key is None:
            return
        accessory, service, characteristic = self.tree.find(*key)
        source = self.events.subscribed if subscribed else self.events.unsubscribed
        source.fire(accessory, service, characteristic)

    # Internals.

    def _halt_loop(self) -> None:
        loop = self.driver.loop
        thread = self._thread
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(STOP_TIMEOUT)
        if not loop.is_running():
            loop.close()

    def _mirror_tree(self) -> HapBridge:
        bridge = _Bridge(self.driver, self.tree.bridge.info.name)
        self._mirror_info(bridge, self.tree.bridge)
        for accessory in self.tree.accessories:
            hap = HapAccessory(self.driver, accessory.info.name, aid=accessory.aid)
            hap.category = int(accessory.category)
            self._mirror_info(hap, accessory)
            for service in accessory.services[1:]:
                self._mirror_service(hap, service)
            bridge.add_accessory(hap)
        return bridge

    @staticmethod
    def _mirror_info(hap: HapAccessory, accessory: Accessory) -> None:
        info = accessory.info
        hap.set_info_service(
            firmware_revision=info.firmware_revision,
            manufacturer=info.manufacturer,
            model=info.model,
            serial_number=info.serial_number,
        )
        identify = hap.get_service("AccessoryInformation").get_characteristic("Identify")
        identify.setter_callback = lambda value: accessory.identify()

    def _mirror_service(self, hap: HapAccessory, service: Service) -> None:
        optional = [
            _CHARACTERISTIC_NAMES[c.kind] for c in service.characteristics if c.kind in _OPTIONAL_CHARACTERISTICS
        ]
        hap_service = hap.add_preload_service(_SERVICE_NAMES[service.type], chars=optional or None)
        for characteristic in service.characteristics:
            mirror = hap_service.get_characteristic(_CHARACTERISTIC_NAMES[characteristic.kind])
            self._configure(mirror, characteristic)
            if characteristic.writable:
                mirror.setter_callback = partial(self._remote_write, characteristic)
            self._mirrors[characteristic.key] = mirror
            self._topics[_topic(hap.aid, hap.iid_manager.get_iid(mirror))] = characteristic.key

    @staticmethod
    def _configure(mirror: HapCharacteristic, characteristic: Characteristic) -> None:
        spec = characteristic.spec
        properties: dict[str, Any] = {}
        if spec.min_value is not None:
            properties["minValue"] = spec.min_value
        if spec.max_value is not None:
            properties["maxValue"] = spec.max_value
        else:
            mirror.properties.pop("maxValue", None)
        if spec.step is not None:
            properties["minStep"] = spec.step
        if properties:
            mirror.override_properties(properties=properties)
        value = characteristic.read()
        if value is not None:
            mirror.set_value(value, should_notify=False)

    @staticmethod
    def _remote_write(characteristic: Characteristic, value: Any) -> None:
        characteristic.write(value, remote=True)

    def _on_identify(self, accessory: Accessory) -> None:
        self.events.identify.fire(accessory)

    def _on_change(self, characteristic: Characteristic, old: Any, new: Any) -> None:
        accessory, service, _ = self.tree.find(*characteristic.key)
        self.events.characteristic_changed.fire(characteristic, service, accessory, new)
        mirror = self._mirrors.get(characteristic.key)
        if mirror is not None and mirror.value != new:
            mirror.set_value(new)
