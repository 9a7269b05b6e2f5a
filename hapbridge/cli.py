"""Typer CLI entrypoint."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer

from hapbridge.core.errors import HapBridgeError
from hapbridge.core.model import SensorKind
from hapbridge.core.service import TEST_DURATION, BridgeService

app = typer.Typer(help="Expose hardware sensors and fans as HomeKit accessories")

_CONFIG_OPTION = typer.Option(None, "--config", help="Path to a YAML config file")


def _configure_logging(level: str, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service(config: Path | None, *, recreate: bool = False) -> BridgeService:
    service = BridgeService(config_path=config, recreate=recreate)
    for warning in service.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return service


@app.command("run")
def run_bridge(
    config: Path | None = _CONFIG_OPTION,
    recreate: bool = typer.Option(False, "--recreate", help="Drop all pairings and keys before starting"),
    test: bool = typer.Option(False, "--test", help=f"Stop after {TEST_DURATION:g} seconds"),
    duration: float | None = typer.Option(None, "--duration", min=0.0, help="Stop after SECONDS"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at debug level"),
) -> None:
    """Serve the bridge until interrupted."""
    try:
        service = _build_service(config, recreate=recreate)
        _configure_logging(service.config.log_level, verbose)
        if test and duration is None:
            duration = TEST_DURATION
        typer.echo("Initializing the server...")
        if duration is not None:
            typer.echo(f"Running for {duration:g} seconds...")
        service.run(duration=duration)
    except HapBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("accessories")
def list_accessories(
    config: Path | None = _CONFIG_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the HAP accessory database"),
) -> None:
    """List accessories, services and characteristics."""
    try:
        service = _build_service(config)
        if as_json:
            typer.echo(json.dumps(service.tree.describe(), indent=2))
            return
        for accessory in service.tree.all_accessories():
            typer.echo(f"{accessory.aid}: {accessory.info.name} ({accessory.category.name.lower()})")
            for svc in accessory.services:
                typer.echo(f"  {svc.type.name.lower()}")
                for characteristic in svc.characteristics:
                    if characteristic.kind == "identify":
                        continue
                    typer.echo(f"    {characteristic.kind} [{characteristic.iid}] = {characteristic.read()!r}")
    except HapBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("sensors")
def list_sensors(config: Path | None = _CONFIG_OPTION) -> None:
    """List sensors and take a single reading from each."""
    try:
        service = _build_service(config)
        sensors = service.list_sensors()
        if not sensors:
            typer.echo("No sensors found")
            return
        for sensor in sensors:
            if sensor.kind is SensorKind.TEMPERATURE:
                reading = service.sensors.read_temperature(sensor.identifier)
                shown = "unavailable" if reading is None else f"{reading:.1f} C"
            else:
                rpm = service.sensors.read_fan_rpm(sensor.identifier)
                shown = "unavailable" if rpm is None else f"{rpm} rpm"
            typer.echo(f"{sensor.kind.value} {sensor.identifier}: {shown}")
    except HapBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("setup-code")
def show_setup_code(config: Path | None = _CONFIG_OPTION) -> None:
    """Print the setup code and setup URI."""
    try:
        service = _build_service(config)
        typer.echo(f"Setup code: {service.device.setup_code}")
        typer.echo(f"Setup URI: {service.setup_uri()}")
        if service.device.is_paired:
            typer.echo("Paired controllers: " + ", ".join(service.device.controllers))
    except HapBridgeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
