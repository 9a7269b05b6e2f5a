"""In-process device without a network listener.

``LocalDevice`` implements the device contract in memory: a pairing store
and pairing state machine, subscriber bookkeeping and controller reads and
writes driven by direct method calls. Controllers are simulated by calling
those methods; pushed values land in ``outbox``. The networked device is
``hapbridge.server.hap.HapDevice``.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from hapbridge.core.accessories import Accessory, AccessoryTree, Characteristic, Service
from hapbridge.core.errors import PairingError, ServerStartError, StorageError
from hapbridge.core.events import DeviceEvents
from hapbridge.core.model import Category, PairingState
from hapbridge.core.storage import FileStorage
from hapbridge.server.setup import encode_setup_uri, validate_setup_code, validate_setup_id

LOGGER = logging.getLogger(__name__)

_OUTBOX_SIZE = 256


@dataclass(frozen=True)
class Notification:
    controller_id: str
    aid: int
    iid: int
    value: Any


PushHandler = Callable[[Notification], None]


class LocalDevice:
    def __init__(
        self,
        tree: AccessoryTree,
        storage: FileStorage,
        *,
        setup_code: str,
        setup_id: str,
        port: int = 51826,
        events: DeviceEvents | None = None,
        push: PushHandler | None = None,
    ) -> None:
        self.tree = tree
        self.storage = storage
        self.port = port
        self.events = events or DeviceEvents()
        self.outbox: deque[Notification] = deque(maxlen=_OUTBOX_SIZE)
        self._setup_code = validate_setup_code(setup_code)
        self._setup_id = validate_setup_id(setup_id)
        self._push = push
        self._lock = threading.RLock()
        self._started = False
        self._stopped = False

        state = storage.load()
        pairings = state.get("pairings", {})
        if not isinstance(pairings, dict):
            raise StorageError(f"Pairing state {storage} has malformed 'pairings'")
        self._pairings: dict[str, dict[str, Any]] = pairings
        self._pairing_state = PairingState.PAIRED if pairings else PairingState.NOT_PAIRED

        for accessory in tree.all_accessories():
            accessory.on_identify(self._on_identify)
        for characteristic in tree.characteristics():
            characteristic.add_listener(self._on_change)
            characteristic.bind_notifier(self._on_notify)

    @property
    def setup_code(self) -> str:
        return self._setup_code

    @property
    def setup_id(self) -> str:
        return self._setup_id

    @property
    def category(self) -> Category:
        return self.tree.bridge.category

    def setup_payload(self) -> str:
        return encode_setup_uri(self._setup_code, self._setup_id, self.category)

    @property
    def is_paired(self) -> bool:
        with self._lock:
            return bool(self._pairings)

    @property
    def pairing_state(self) -> PairingState:
        with self._lock:
            return self._pairing_state

    @property
    def controllers(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._pairings))

    @property
    def stopped(self) -> bool:
        with self._lock:
            return self._stopped

    def start(self) -> None:
        with self._lock:
            if self._stopped:
                raise ServerStartError("Server was already stopped")
            if self._started:
                return
            try:
                self._persist()
            except StorageError as exc:
                raise ServerStartError(f"Could not start in-process device: {exc}") from exc
            self._started = True
        LOGGER.debug("In-process device started with %d accessories", len(self.tree.all_accessories()))

    def stop(self) -> None:
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
        for characteristic in self.tree.characteristics():
            characteristic.bind_notifier(None)
        LOGGER.debug("In-process device stopped")

    # Controller-facing operations.

    def begin_pairing(self) -> None:
        self._transition(PairingState.PAIRING)

    def pair(self, controller_id: str, public_key: str, *, admin: bool = True) -> None:
        with self._lock:
            self._pairings[controller_id] = {"public_key": public_key, "admin": admin}
            self._persist()
        LOGGER.info("Controller %s paired", controller_id)
        self._transition(PairingState.PAIRED)

    def unpair(self, controller_id: str) -> None:
        with self._lock:
            if controller_id not in self._pairings:
                raise PairingError(f"Controller '{controller_id}' is not paired")
            del self._pairings[controller_id]
            self._persist()
            remaining = bool(self._pairings)
        LOGGER.info("Controller %s removed", controller_id)
        for accessory, service, characteristic in list(self._subscriptions(controller_id)):
            self._unsubscribe(controller_id, accessory, service, characteristic)
        if not remaining:
            self._transition(PairingState.NOT_PAIRED)

    def read_characteristic(self, controller_id: str, aid: int, iid: int) -> Any:
        self._require_paired(controller_id)
        _, _, characteristic = self.tree.find(aid, iid)
        return characteristic.read()

    def write_characteristic(self, controller_id: str, aid: int, iid: int, value: Any) -> None:
        self._require_paired(controller_id)
        accessory, _, characteristic = self.tree.find(aid, iid)
        if characteristic.kind == "identify":
            characteristic.validate(value)
            accessory.identify()
            return
        characteristic.write(value, remote=True)

    def subscribe(self, controller_id: str, aid: int, iid: int) -> None:
        self._require_paired(controller_id)
        accessory, service, characteristic = self.tree.find(aid, iid)
        if characteristic.subscribe(controller_id):
            self.events.subscribed.fire(accessory, service, characteristic)

    def unsubscribe(self, controller_id: str, aid: int, iid: int) -> None:
        self._require_paired(controller_id)
        accessory, service, characteristic = self.tree.find(aid, iid)
        self._unsubscribe(controller_id, accessory, service, characteristic)

    # Internals.

    def _unsubscribe(
        self,
        controller_id: str,
        accessory: Accessory,
        service: Service,
        characteristic: Characteristic,
    ) -> None:
        if characteristic.unsubscribe(controller_id):
            self.events.unsubscribed.fire(accessory, service, characteristic)

    def _subscriptions(self, controller_id: str) -> Iterator[tuple[Accessory, Service, Characteristic]]:
        for characteristic in self.tree.characteristics():
            if controller_id in characteristic.subscribers:
                yield self.tree.find(*characteristic.key)

    def _require_paired(self, controller_id: str) -> None:
        with self._lock:
            if controller_id not in self._pairings:
                raise PairingError(f"Controller '{controller_id}' is not paired")

    def _transition(self, new: PairingState) -> None:
        with self._lock:
            old = self._pairing_state
            if old is new:
                return
            self._pairing_state = new
        self.events.pairing_state_changed.fire(old, new)

    def _persist(self) -> None:
        self.storage.save({"setup_id": self._setup_id, "pairings": self._pairings})

    def _on_identify(self, accessory: Accessory) -> None:
        self.events.identify.fire(accessory)

    def _on_change(self, characteristic: Characteristic, old: Any, new: Any) -> None:
        accessory, service, _ = self.tree.find(*characteristic.key)
        self.events.characteristic_changed.fire(characteristic, service, accessory, new)

    def _on_notify(self, characteristic: Characteristic, value: Any) -> None:
        for controller_id in sorted(characteristic.subscribers):
            notification = Notification(controller_id, characteristic.aid, characteristic.iid, value)
            self.outbox.append(notification)
            if self._push is not None:
                self._push(notification)
