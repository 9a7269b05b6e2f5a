from __future__ import annotations

from pathlib import Path

import pytest

from hapbridge.core.config_loader import load_config
from hapbridge.core.errors import ConfigLoadError, ConfigValidationError


def _write_config(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))


def test_load_packaged_defaults() -> None:
    loaded = load_config()
    config = loaded.config
    assert config.bridge.name == "Bridge"
    assert config.bridge.setup_code == "123-44-321"
    assert config.sync.poll_period == 1.0
    assert config.sync.initial_delay == 1.0
    assert config.sensors.source == "psutil"
    assert config.sensors.simulated_fans == {"0": 1200}
    assert any("default setup code" in warning for warning in loaded.warnings)


def test_user_config_overrides_section_keys(tmp_path: Path) -> None:
    _write_config(
        tmp_path / "cfg" / "hapbridge" / "config.yaml",
        """
bridge:
  name: Study Mac
  setup_code: "031-45-154"
sync:
  poll_period: 5
""",
    )

    loaded = load_config()
    assert loaded.config.bridge.name == "Study Mac"
    assert loaded.config.bridge.serial_number == "00001"
    assert loaded.config.sync.poll_period == 5.0
    assert loaded.config.sync.initial_delay == 1.0
    assert loaded.warnings == ()
    assert len(loaded.sources) == 2


def test_explicit_config_wins_over_user_config(tmp_path: Path) -> None:
    _write_config(tmp_path / "cfg" / "hapbridge" / "config.yaml", "server:\n  port: 9000\n")
    explicit = tmp_path / "run.yaml"
    _write_config(explicit, "server:\n  port: 51826\nsensors:\n  source: simulated\n")

    loaded = load_config(explicit)
    assert loaded.config.port == 51826
    assert loaded.config.sensors.source == "simulated"
    assert any(w.startswith("server.port from ") and w.endswith(f"overridden by {explicit}") for w in loaded.warnings)
    assert not any(w.startswith("sensors.") for w in loaded.warnings)


def test_missing_explicit_config_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError):
        load_config(tmp_path / "nope.yaml")


def test_trivial_setup_code_rejected(tmp_path: Path) -> None:
    explicit = tmp_path / "run.yaml"
    _write_config(explicit, 'bridge:\n  setup_code: "111-11-111"\n')
    with pytest.raises(ConfigValidationError):
        load_config(explicit)


def test_schema_violation_names_the_path(tmp_path: Path) -> None:
    explicit = tmp_path / "run.yaml"
    _write_config(explicit, "sync:\n  poll_period: 0\n")
    with pytest.raises(ConfigValidationError) as exc:
        load_config(explicit)
    assert "sync.poll_period" in str(exc.value)


def test_unknown_sensor_source_rejected(tmp_path: Path) -> None:
    explicit = tmp_path / "run.yaml"
    _write_config(explicit, "sensors:\n  source: smc\n")
    with pytest.raises(ConfigValidationError):
        load_config(explicit)


def test_duplicate_yaml_keys_rejected(tmp_path: Path) -> None:
    explicit = tmp_path / "run.yaml"
    _write_config(
        explicit,
        """
server:
  port: 8000
  port: 8001
""",
    )
    with pytest.raises(ConfigValidationError):
        load_config(explicit)


def test_simulated_readings_allow_unavailable(tmp_path: Path) -> None:
    explicit = tmp_path / "run.yaml"
    _write_config(
        explicit,
        """
sensors:
  source: simulated
  simulated:
    temperatures:
      CPU: 52
      GPU: null
    fans:
      left: 1500
""",
    )
    config = load_config(explicit).config
    assert config.sensors.simulated_temperatures == {"CPU": 52.0, "GPU": None}
    assert config.sensors.simulated_fans == {"left": 1500}
