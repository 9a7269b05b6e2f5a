"""Device event observers, pairing instructions, and orderly shutdown."""

from __future__ import annotations

import signal
import threading
import time
from types import FrameType
from typing import Any

from hapbridge.core.accessories import Accessory, Characteristic, Service
from hapbridge.core.context import BridgeContext
from hapbridge.core.model import PairingState
from hapbridge.core.sync import SyncScheduler
from hapbridge.server.base import DeviceServer
from hapbridge.server.setup import render_qr

# Upper bound between a shutdown request and the run loop noticing it.
CHECK_INTERVAL = 0.5


def _name(accessory: Accessory) -> str:
    return accessory.info_service["name"].read() or ""


class DeviceLifecycleController:
    """Observes device events and coordinates shutdown.

    Observers hand their work to the context's dispatcher and return
    immediately; the dispatcher runs it after the triggering write.
    """

    def __init__(self, context: BridgeContext, device: DeviceServer, *, storage_hint: str = "configuration.json") -> None:
        self.context = context
        self.device = device
        self.storage_hint = storage_hint
        self.logger = context.child_logger("lifecycle")
        self.instructions_rendered = 0
        self._stop_lock = threading.Lock()
        self._stopped = False

    def attach(self) -> None:
        events = self.device.events
        events.identify += self.on_identify
        events.characteristic_changed += self.on_characteristic_changed
        events.subscribed += self.on_subscribe
        events.unsubscribed += self.on_unsubscribe
        events.pairing_state_changed += self.on_pairing_state_changed

    def detach(self) -> None:
        events = self.device.events
        events.identify -= self.on_identify
        events.characteristic_changed -= self.on_characteristic_changed
        events.subscribed -= self.on_subscribe
        events.unsubscribed -= self.on_unsubscribe
        events.pairing_state_changed -= self.on_pairing_state_changed

    # Observers.

    def on_identify(self, accessory: Accessory) -> None:
        self.context.dispatcher.submit(self._log, "Requested identification of accessory %s", _name(accessory))

    def on_characteristic_changed(
        self,
        characteristic: Characteristic,
        service: Service,
        accessory: Accessory,
        new_value: Any,
    ) -> None:
        self.context.dispatcher.submit(
            self._debug,
            "Characteristic %s in service %s of accessory %s did change: %r",
            characteristic.kind,
            service.type.name,
            _name(accessory),
            new_value,
        )

    def on_subscribe(self, accessory: Accessory, service: Service, characteristic: Characteristic) -> None:
        self.context.dispatcher.submit(
            self._log,
            "Characteristic %s in service %s of accessory %s got a subscriber",
            characteristic.kind,
            service.type.name,
            _name(accessory),
        )

    def on_unsubscribe(self, accessory: Accessory, service: Service, characteristic: Characteristic) -> None:
        self.context.dispatcher.submit(
            self._log,
            "Characteristic %s in service %s of accessory %s lost a subscriber",
            characteristic.kind,
            service.type.name,
            _name(accessory),
        )

    def on_pairing_state_changed(self, old: PairingState, new: PairingState) -> None:
        self.context.dispatcher.submit(self._log, "Pairing state changed from %s to %s", old.value, new.value)
        if new is PairingState.NOT_PAIRED:
            # Pairing status is queried when the job runs, not now.
            self.context.dispatcher.submit(self.render_pairing_instructions)

    def _log(self, message: str, *args: Any) -> None:
        self.logger.info(message, *args)

    def _debug(self, message: str, *args: Any) -> None:
        self.logger.debug(message, *args)

    def render_pairing_instructions(self) -> None:
        echo = self.context.echo
        self.instructions_rendered += 1
        echo("")
        if self.device.is_paired:
            echo(
                "The device is paired, either unpair using your controller "
                f"or remove the pairing file `{self.storage_hint}`."
            )
        else:
            echo("Scan the following QR code using your controller to pair this device:")
            echo("")
            echo(render_qr(self.device.setup_payload()))
            echo(f"Setup code: {self.device.setup_code}")
        echo("")

    # Shutdown.

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.request_shutdown)
        signal.signal(signal.SIGTERM, self.request_shutdown)

    def request_shutdown(self, signum: int | None = None, frame: FrameType | None = None) -> None:
        self.logger.info("Shutting down...")
        self.context.shutdown.set()

    def serve(self, scheduler: SyncScheduler | None = None, *, duration: float | None = None) -> None:
        """Run until shutdown is requested or ``duration`` seconds pass, then stop everything."""
        token = self.context.shutdown
        deadline = None if duration is None else time.monotonic() + duration
        self.context.dispatcher.start()
        if scheduler is not None:
            scheduler.start()
        try:
            while not token.is_set():
                timeout = CHECK_INTERVAL
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    timeout = min(timeout, remaining)
                token.wait(timeout)
        finally:
            self.shutdown(scheduler)

    def shutdown(self, scheduler: SyncScheduler | None = None) -> bool:
        """Stop the scheduler, drain queued work and stop the device once.

        Returns False when shutdown already happened.
        """
        with self._stop_lock:
            if self._stopped:
                return False
            self._stopped = True
        self.context.shutdown.set()
        if scheduler is not None:
            scheduler.join()
        self.context.dispatcher.close()
        self.device.stop()
        self.logger.info("Stopped")
        return True
