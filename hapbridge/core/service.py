"""Service layer used by the CLI and the public API."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import typer

from hapbridge.core.accessories import AccessoryTree, build
from hapbridge.core.config_loader import load_config
from hapbridge.core.context import BridgeContext
from hapbridge.core.errors import SensorError
from hapbridge.core.lifecycle import DeviceLifecycleController
from hapbridge.core.model import AccessoryInfo, BridgeConfig, SensorDescriptor, TickReport
from hapbridge.core.storage import FileStorage
from hapbridge.core.sync import SyncScheduler
from hapbridge.server.base import DeviceServer
from hapbridge.server.hap import HapDevice
from hapbridge.sources.base import SensorSource
from hapbridge.sources.psutil_source import PsutilSensorSource
from hapbridge.sources.simulated import SimulatedSensorSource

TEST_DURATION = 10.0

DeviceFactory = Callable[..., DeviceServer]


def build_sensor_source(config: BridgeConfig) -> SensorSource:
    settings = config.sensors
    if settings.source == "psutil":
        return PsutilSensorSource(include=settings.include)
    if settings.source == "simulated":
        return SimulatedSensorSource(
            temperatures=settings.simulated_temperatures,
            fans=settings.simulated_fans,
        )
    raise SensorError(f"Unsupported sensor source '{settings.source}'")


class BridgeService:
    """Composes the accessory tree, sync loop, device and lifecycle controller.

    Construction loads configuration and pairing state; either failing is
    fatal and raises before anything is served.
    """

    def __init__(
        self,
        *,
        config_path: Path | str | None = None,
        sensors: SensorSource | None = None,
        storage: FileStorage | None = None,
        recreate: bool = False,
        echo: Callable[[str], None] = typer.echo,
        device_factory: DeviceFactory | None = None,
    ) -> None:
        loaded = load_config(config_path)
        self.config = loaded.config
        self.load_warnings = loaded.warnings

        self.storage = storage or FileStorage(Path(self.config.storage_path))
        if recreate:
            self.storage.reset()

        self.sensors = sensors or build_sensor_source(self.config)
        self.context = BridgeContext(sensors=self.sensors, echo=echo)
        self.tree: AccessoryTree = build(self._bridge_info(), self.sensors.list_sensors())
        factory = device_factory or HapDevice
        self.device = factory(
            self.tree,
            self.storage,
            setup_code=self.config.bridge.setup_code,
            setup_id=self.config.bridge.setup_id,
            port=self.config.port,
        )
        self.scheduler = SyncScheduler(
            self.context,
            self.tree,
            poll_period=self.config.sync.poll_period,
            initial_delay=self.config.sync.initial_delay,
        )
        self.controller = DeviceLifecycleController(
            self.context,
            self.device,
            storage_hint=str(self.storage.path),
        )
        self.controller.attach()

    def _bridge_info(self) -> AccessoryInfo:
        bridge = self.config.bridge
        return AccessoryInfo(
            name=bridge.name,
            serial_number=bridge.serial_number,
            manufacturer=bridge.manufacturer,
            model=bridge.model,
            firmware_revision=bridge.firmware_revision,
        )

    def list_sensors(self) -> list[SensorDescriptor]:
        return [binding.descriptor for binding in self.tree.bindings]

    def setup_uri(self) -> str:
        return self.device.setup_payload()

    def tick(self) -> TickReport:
        """Run one sync pass now.

        Observer work queued by the pass runs before returning unless the
        dispatcher worker is already serving it.
        """
        report = self.scheduler.tick()
        self.context.dispatcher.run_pending()
        return report

    def run(self, *, duration: float | None = None, install_signals: bool = True) -> None:
        """Serve until interrupted, or for ``duration`` seconds when given."""
        if install_signals:
            self.controller.install_signal_handlers()
        self.device.start()
        self.controller.render_pairing_instructions()
        self.controller.serve(self.scheduler, duration=duration)

    def request_shutdown(self) -> None:
        self.controller.request_shutdown()
