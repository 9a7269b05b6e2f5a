from __future__ import annotations

import time
from dataclasses import replace
from pathlib import Path

import pytest

from hapbridge.core import service as service_module
from hapbridge.core.errors import SensorError, StorageError
from hapbridge.core.model import ServiceType
from hapbridge.core.service import BridgeService, build_sensor_source
from hapbridge.server.local import LocalDevice


def _config(tmp_path: Path) -> Path:
    path = tmp_path / "bridge.yaml"
    path.write_text(
        f"""
bridge:
  setup_code: "031-45-154"
storage:
  path: {tmp_path / "configuration.json"}
sync:
  poll_period: 0.05
  initial_delay: 0.05
sensors:
  source: simulated
  simulated:
    temperatures:
      CPU: 61.0
      GPU: null
    fans:
      "0": 1800
""",
        encoding="utf-8",
    )
    return path


def _service(config: Path, **kwargs) -> BridgeService:
    kwargs.setdefault("echo", lambda line: None)
    return BridgeService(config_path=config, device_factory=LocalDevice, **kwargs)


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))


def test_service_builds_tree_from_configured_source(tmp_path: Path) -> None:
    service = _service(_config(tmp_path))
    names = [a.info.name for a in service.tree.accessories]
    assert names == ["CPU", "GPU", "Fan-0"]
    assert service.setup_uri().startswith("X-HM://")


def test_networked_device_is_the_default(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    built = []

    def recording_factory(tree, storage, **kwargs):
        built.append(kwargs)
        return LocalDevice(tree, storage, **kwargs)

    monkeypatch.setattr(service_module, "HapDevice", recording_factory)
    BridgeService(config_path=_config(tmp_path), echo=lambda line: None)

    assert built == [{"setup_code": "031-45-154", "setup_id": "HB01", "port": 51826}]


def test_single_tick_syncs_available_readings(tmp_path: Path) -> None:
    service = _service(_config(tmp_path))
    report = service.tick()

    cpu, gpu, fan = service.tree.accessories
    assert cpu.service(ServiceType.TEMPERATURE_SENSOR)["currentTemperature"].read() == 61.0
    assert gpu.service(ServiceType.TEMPERATURE_SENSOR)["currentTemperature"].read() == 0.0
    assert fan.service(ServiceType.FAN)["rotationSpeed"].read() == 1800
    assert report.skipped == ("temperature:GPU",)


def test_manual_ticks_do_not_accumulate_observer_work(tmp_path: Path) -> None:
    service = _service(_config(tmp_path))
    for _ in range(200):
        service.tick()
    assert service.context.dispatcher.pending == 0


def test_bounded_run_renders_once_and_stops_once(tmp_path: Path) -> None:
    lines: list[str] = []
    service = _service(_config(tmp_path), echo=lines.append)
    ticks_at_stop = []
    original_stop = service.device.stop

    def counting_stop() -> None:
        ticks_at_stop.append(service.scheduler.tick_count)
        original_stop()

    service.device.stop = counting_stop

    # Initial delay plus ten poll periods.
    service.run(duration=0.55, install_signals=False)

    assert service.controller.instructions_rendered == 1
    assert sum("Scan the following QR code" in line for line in lines) == 1
    assert len(ticks_at_stop) == 1
    assert 8 <= ticks_at_stop[0] <= 11
    assert (tmp_path / "configuration.json").exists()

    time.sleep(0.2)
    assert service.scheduler.tick_count == ticks_at_stop[0]


def test_recreate_drops_existing_pairings(tmp_path: Path) -> None:
    config = _config(tmp_path)
    _service(config).device.pair("controller-1", "abcd")

    assert _service(config).device.is_paired
    assert not _service(config, recreate=True).device.is_paired


def test_corrupt_pairing_state_is_fatal(tmp_path: Path) -> None:
    (tmp_path / "configuration.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(StorageError):
        _service(_config(tmp_path))


def test_unsupported_source_rejected(tmp_path: Path) -> None:
    service = _service(_config(tmp_path))
    config = replace(service.config, sensors=replace(service.config.sensors, source="smc"))
    with pytest.raises(SensorError):
        build_sensor_source(config)
