"""Public entry points for running a sensor bridge from other Python code.

``Bridge`` composes configuration, sensors, the accessory tree and a device
server; the names re-exported here are the types its callers handle.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import typer

from hapbridge.core.accessories import Accessory, AccessoryTree, Characteristic, Service
from hapbridge.core.errors import (
    ConfigLoadError,
    ConfigValidationError,
    HapBridgeError,
    PairingError,
    SensorError,
    ServerStartError,
    StorageError,
    ValidationError,
)
from hapbridge.core.model import (
    AccessoryInfo,
    BridgeConfig,
    PairingState,
    RotationDirection,
    SensorDescriptor,
    SensorKind,
    TickReport,
)
from hapbridge.core.service import BridgeService, DeviceFactory
from hapbridge.core.storage import FileStorage
from hapbridge.server.base import DeviceServer
from hapbridge.server.hap import HapDevice
from hapbridge.server.local import LocalDevice, Notification
from hapbridge.sources.base import SensorSource

__all__ = [
    "HapBridgeError",
    "ConfigLoadError",
    "ConfigValidationError",
    "PairingError",
    "SensorError",
    "ServerStartError",
    "StorageError",
    "ValidationError",
    "Accessory",
    "AccessoryInfo",
    "AccessoryTree",
    "BridgeConfig",
    "Characteristic",
    "DeviceServer",
    "FileStorage",
    "HapDevice",
    "LocalDevice",
    "Notification",
    "PairingState",
    "RotationDirection",
    "SensorDescriptor",
    "SensorKind",
    "SensorSource",
    "Service",
    "TickReport",
    "Bridge",
]


class Bridge:
    """Public facade over a fully composed bridge.

    A `Bridge` wraps configuration loading, accessory construction, the
    sync loop and the device server. Pass ``device_factory=LocalDevice`` to
    run without a network listener.
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
        self._service = BridgeService(
            config_path=config_path,
            sensors=sensors,
            storage=storage,
            recreate=recreate,
            echo=echo,
            device_factory=device_factory,
        )

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def config(self) -> BridgeConfig:
        return self._service.config

    @property
    def accessories(self) -> AccessoryTree:
        return self._service.tree

    @property
    def device(self) -> DeviceServer:
        return self._service.device

    def setup_uri(self) -> str:
        return self._service.setup_uri()

    def tick(self) -> TickReport:
        return self._service.tick()

    def serve(self, *, duration: float | None = None, install_signals: bool = False) -> None:
        self._service.run(duration=duration, install_signals=install_signals)

    def request_shutdown(self) -> None:
        self._service.request_shutdown()
