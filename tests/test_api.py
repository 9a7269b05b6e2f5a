from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from hapbridge.api import Bridge, FileStorage, LocalDevice, PairingState, SensorKind
from hapbridge.sources.simulated import SimulatedSensorSource


@pytest.fixture
def bridge(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Bridge:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    config = tmp_path / "bridge.yaml"
    config.write_text(
        'bridge:\n  setup_code: "031-45-154"\nsync:\n  poll_period: 0.02\n  initial_delay: 0\n',
        encoding="utf-8",
    )
    return Bridge(
        config_path=config,
        sensors=SimulatedSensorSource(temperatures={"CPU": 44.0}, fans={"0": 0}),
        storage=FileStorage(tmp_path / "configuration.json"),
        echo=lambda line: None,
        device_factory=LocalDevice,
    )


def test_public_bridge_exposes_tree_and_setup(bridge: Bridge) -> None:
    kinds = [binding.descriptor.kind for binding in bridge.accessories.bindings]
    assert kinds == [SensorKind.TEMPERATURE, SensorKind.FAN]
    assert bridge.setup_uri().startswith("X-HM://")
    assert bridge.device.pairing_state is PairingState.NOT_PAIRED
    assert bridge.load_warnings == ()


def test_public_bridge_tick(bridge: Bridge) -> None:
    report = bridge.tick()
    assert report.updated == ("temperature:CPU", "fan:0")
    fan = bridge.accessories.accessories[1]
    assert fan.services[1]["powerState"].read() is False


def test_public_bridge_tick_runs_observers_before_returning(
    bridge: Bridge, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.DEBUG, logger="hapbridge"):
        for _ in range(3):
            bridge.tick()

    changes = [r for r in caplog.records if "did change" in r.getMessage()]
    # One temperature and two fan characteristics per tick.
    assert len(changes) == 9


def test_public_bridge_serve_until_shutdown(bridge: Bridge) -> None:
    server = threading.Thread(target=bridge.serve)
    server.start()
    bridge.request_shutdown()
    server.join(5)
    assert not server.is_alive()
    assert bridge.device.stopped
