from __future__ import annotations

import threading
import time

import pytest

from hapbridge.core.accessories import build
from hapbridge.core.context import BridgeContext
from hapbridge.core.events import DeviceEvents
from hapbridge.core.lifecycle import DeviceLifecycleController
from hapbridge.core.model import AccessoryInfo, ServiceType
from hapbridge.core.sync import SyncScheduler
from hapbridge.sources.simulated import SimulatedSensorSource


class FakeDevice:
    def __init__(self) -> None:
        self.events = DeviceEvents()
        self.setup_code = "123-44-321"
        self.is_paired = True
        self.stop_calls = 0

    def setup_payload(self) -> str:
        return "X-HM://0023OA51DHB01"

    def stop(self) -> None:
        self.stop_calls += 1


class FlakySource(SimulatedSensorSource):
    def read_temperature(self, identifier: str) -> float | None:
        if identifier == "CPU":
            raise OSError("sensor bus error")
        return super().read_temperature(identifier)


def _setup(source: SimulatedSensorSource, **kwargs):
    context = BridgeContext(sensors=source, echo=lambda line: None)
    tree = build(AccessoryInfo(name="Bridge", serial_number="00001"), source.list_sensors())
    scheduler = SyncScheduler(context, tree, **kwargs)
    return context, tree, scheduler


def _temperature(tree, index: int):
    return tree.accessories[index].service(ServiceType.TEMPERATURE_SENSOR)["currentTemperature"]


def _fan(tree, index: int):
    return tree.accessories[index].service(ServiceType.FAN)


@pytest.mark.parametrize("rpm", [0, 1, 850, 2400])
def test_fan_reading_sets_power_and_raw_speed(rpm: int) -> None:
    source = SimulatedSensorSource(fans={"0": rpm})
    _, tree, scheduler = _setup(source)

    report = scheduler.tick()

    fan = _fan(tree, 0)
    assert fan["powerState"].read() is (rpm > 0)
    assert fan["rotationSpeed"].read() == rpm
    assert report.updated == ("fan:0",)


def test_missing_readings_leave_previous_values() -> None:
    source = SimulatedSensorSource(temperatures={"CPU": 51.5}, fans={"0": 1200})
    _, tree, scheduler = _setup(source)
    scheduler.tick()

    source.set_temperature("CPU", None)
    source.set_fan_rpm("0", None)
    report = scheduler.tick()

    assert _temperature(tree, 0).read() == 51.5
    assert _fan(tree, 1)["powerState"].read() is True
    assert _fan(tree, 1)["rotationSpeed"].read() == 1200
    assert set(report.skipped) == {"temperature:CPU", "fan:0"}
    assert report.updated == ()


def test_failing_sensor_does_not_block_others() -> None:
    source = FlakySource(temperatures={"CPU": 60.0, "GPU": 48.0}, fans={"0": 900})
    _, tree, scheduler = _setup(source)

    report = scheduler.tick()

    assert "temperature:CPU" in report.errors
    assert _temperature(tree, 0).read() == 0.0
    assert _temperature(tree, 1).read() == 48.0
    assert _fan(tree, 2)["rotationSpeed"].read() == 900


def test_rejected_fan_reading_changes_nothing() -> None:
    source = SimulatedSensorSource(fans={"0": 700})
    _, tree, scheduler = _setup(source)
    scheduler.tick()

    source.set_fan_rpm("0", -5)
    report = scheduler.tick()

    assert "fan:0" in report.errors
    assert _fan(tree, 0)["powerState"].read() is True
    assert _fan(tree, 0)["rotationSpeed"].read() == 700


@pytest.mark.parametrize("reading", [101.0, -5.0])
def test_every_returned_temperature_is_written(reading: float) -> None:
    source = SimulatedSensorSource(temperatures={"CPU": 40.0})
    _, tree, scheduler = _setup(source)
    scheduler.tick()

    source.set_temperature("CPU", reading)
    report = scheduler.tick()

    assert report.errors == {}
    assert report.updated == ("temperature:CPU",)
    assert _temperature(tree, 0).read() == reading


def test_invalid_periods_rejected() -> None:
    source = SimulatedSensorSource()
    with pytest.raises(ValueError):
        _setup(source, poll_period=0)
    with pytest.raises(ValueError):
        _setup(source, initial_delay=-1)


def test_bounded_run_ticks_once_per_period_then_stops_once() -> None:
    source = SimulatedSensorSource(temperatures={"CPU": 45.0})
    context, tree, scheduler = _setup(source, poll_period=0.05, initial_delay=0.05)
    ticks_at_stop: list[int] = []

    class RecordingDevice(FakeDevice):
        def stop(self) -> None:
            ticks_at_stop.append(scheduler.tick_count)
            super().stop()

    device = RecordingDevice()
    controller = DeviceLifecycleController(context, device)

    # Initial delay plus ten poll periods, scaled down from one-second units.
    controller.serve(scheduler, duration=0.55)

    assert 8 <= scheduler.tick_count <= 11
    assert device.stop_calls == 1
    assert ticks_at_stop == [scheduler.tick_count]
    assert _temperature(tree, 0).read() == 45.0

    time.sleep(0.2)
    assert scheduler.tick_count == ticks_at_stop[0]
    assert not scheduler.running


def test_interrupt_mid_tick_completes_tick_and_stops_once() -> None:
    entered = threading.Event()
    release = threading.Event()

    class BlockingSource(SimulatedSensorSource):
        reads = 0

        def read_temperature(self, identifier: str) -> float | None:
            BlockingSource.reads += 1
            entered.set()
            release.wait(5)
            return super().read_temperature(identifier)

    source = BlockingSource(temperatures={"CPU": 50.0})
    context, tree, scheduler = _setup(source, poll_period=0.01, initial_delay=0)
    device = FakeDevice()
    controller = DeviceLifecycleController(context, device)

    runner = threading.Thread(target=controller.serve, args=(scheduler,), kwargs={"duration": 5})
    runner.start()
    assert entered.wait(5)

    controller.request_shutdown()
    release.set()
    runner.join(5)

    assert not runner.is_alive()
    assert _temperature(tree, 0).read() == 50.0
    assert BlockingSource.reads == 1
    assert scheduler.tick_count == 1
    assert device.stop_calls == 1
