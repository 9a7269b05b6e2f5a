"""Configuration loading and validation for YAML-based hapbridge settings."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from hapbridge.core.errors import ConfigLoadError, ConfigValidationError
from hapbridge.core.model import BridgeConfig, BridgeSettings, SensorSettings, SyncSettings
from hapbridge.server.setup import validate_setup_code, validate_setup_id

LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedConfig:
    config: BridgeConfig
    sources: tuple[str, ...]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("hapbridge.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def user_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "hapbridge/config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for section, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(section), dict):
            merged[section] = {**merged[section], **value}
        else:
            merged[section] = value
    return merged


def _override_warnings(earlier: dict[str, Any], later: dict[str, Any], earlier_source: str, later_source: str) -> list[str]:
    warnings = []
    for section, values in later.items():
        previous = earlier.get(section)
        if not isinstance(values, dict) or not isinstance(previous, dict):
            continue
        for key, value in values.items():
            if key in previous and previous[key] != value:
                warnings.append(f"{section}.{key} from {earlier_source} is overridden by {later_source}")
    return warnings


def _optional_number_map(raw: dict[Any, Any], convert: type) -> dict[str, Any]:
    return {str(key): None if value is None else convert(value) for key, value in raw.items()}


def _build_config(doc: dict[str, Any], source: str) -> BridgeConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    bridge = doc["bridge"]
    sensors = doc["sensors"]
    simulated = sensors.get("simulated", {})
    sync = doc["sync"]
    return BridgeConfig(
        bridge=BridgeSettings(
            name=bridge["name"],
            serial_number=bridge["serial_number"],
            manufacturer=bridge.get("manufacturer", "hapbridge"),
            model=bridge.get("model", "hapbridge"),
            firmware_revision=bridge.get("firmware_revision", "0.1.0"),
            setup_code=validate_setup_code(bridge["setup_code"]),
            setup_id=validate_setup_id(bridge["setup_id"]),
        ),
        storage_path=doc["storage"]["path"],
        port=int(doc["server"]["port"]),
        sync=SyncSettings(
            poll_period=float(sync.get("poll_period", 1.0)),
            initial_delay=float(sync.get("initial_delay", 1.0)),
        ),
        sensors=SensorSettings(
            source=sensors["source"],
            include=tuple(str(s) for s in sensors.get("include", [])),
            simulated_temperatures=_optional_number_map(simulated.get("temperatures", {}), float),
            simulated_fans=_optional_number_map(simulated.get("fans", {}), int),
        ),
        log_level=doc["logging"].get("level", "info"),
    )


def load_config(path: Path | str | None = None) -> LoadedConfig:
    """Load the packaged defaults, then the user file, then ``path``.

    Each later source overrides earlier ones section by section.
    """
    warnings: list[str] = []
    packaged = resources.files("hapbridge.config").joinpath("default.yaml")
    doc = _read_yaml(packaged)
    default_code = doc["bridge"]["setup_code"]
    sources = [str(packaged)]

    user_path = user_config_path()
    user_doc: dict[str, Any] = {}
    if user_path.is_file():
        user_doc = _read_yaml(user_path)
        doc = _merge(doc, user_doc)
        sources.append(str(user_path))

    if path is not None:
        explicit = Path(path)
        if not explicit.is_file():
            raise ConfigLoadError(f"Config file {explicit} does not exist")
        explicit_doc = _read_yaml(explicit)
        for warning in _override_warnings(user_doc, explicit_doc, str(user_path), str(explicit)):
            LOGGER.warning(warning)
            warnings.append(warning)
        doc = _merge(doc, explicit_doc)
        sources.append(str(explicit))

    config = _build_config(doc, " + ".join(sources))
    if config.bridge.setup_code == default_code:
        warning = "Using the packaged default setup code; set bridge.setup_code in your config"
        LOGGER.warning(warning)
        warnings.append(warning)

    return LoadedConfig(
        config=config,
        sources=tuple(sources),
        warnings=tuple(warnings),
    )
