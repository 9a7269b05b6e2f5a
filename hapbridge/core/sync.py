"""Periodic hardware-to-accessory synchronization."""

from __future__ import annotations

import threading

from hapbridge.core.accessories import AccessoryTree, SensorBinding
from hapbridge.core.context import BridgeContext
from hapbridge.core.model import SensorKind, ServiceType, TickReport

DEFAULT_POLL_PERIOD = 1.0
DEFAULT_INITIAL_DELAY = 1.0


def _label(binding: SensorBinding) -> str:
    return f"{binding.descriptor.kind.value}:{binding.descriptor.identifier}"


class SyncScheduler:
    """Copies sensor readings into the accessory tree once per poll period.

    A timer thread submits ticks to the context's dispatcher until the
    context's shutdown token is set. A missing reading never overwrites the
    previous value.
    """

    def __init__(
        self,
        context: BridgeContext,
        tree: AccessoryTree,
        *,
        poll_period: float = DEFAULT_POLL_PERIOD,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
    ) -> None:
        if poll_period <= 0:
            raise ValueError("poll_period must be positive")
        if initial_delay < 0:
            raise ValueError("initial_delay must not be negative")
        self.context = context
        self.tree = tree
        self.poll_period = poll_period
        self.initial_delay = initial_delay
        self.logger = context.child_logger("sync")
        self.tick_count = 0
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="hapbridge-sync", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        token = self.context.shutdown
        if token.wait(self.initial_delay):
            return
        while True:
            if not self.context.dispatcher.submit(self._scheduled_tick):
                return
            if token.wait(self.poll_period):
                return

    def _scheduled_tick(self) -> None:
        # Ticks still queued when shutdown was requested are dropped.
        if self.context.shutdown.is_set():
            return
        self.tick()

    def tick(self) -> TickReport:
        updated: list[str] = []
        skipped: list[str] = []
        errors: dict[str, str] = {}

        for binding in self.tree.bindings:
            label = _label(binding)
            try:
                if binding.descriptor.kind is SensorKind.TEMPERATURE:
                    changed = self._sync_temperature(binding)
                else:
                    changed = self._sync_fan(binding)
            except Exception as exc:
                self.logger.warning("Sync of %s failed: %s", label, exc)
                errors[label] = str(exc)
                continue
            (updated if changed else skipped).append(label)

        self.tick_count += 1
        report = TickReport(updated=tuple(updated), skipped=tuple(skipped), errors=errors)
        self.logger.debug(
            "Tick %d: %d updated, %d unavailable, %d failed",
            self.tick_count,
            len(report.updated),
            len(report.skipped),
            len(report.errors),
        )
        return report

    def _sync_temperature(self, binding: SensorBinding) -> bool:
        reading = self.context.sensors.read_temperature(binding.descriptor.identifier)
        if reading is None:
            return False
        service = binding.accessory.service(ServiceType.TEMPERATURE_SENSOR)
        service["currentTemperature"].write(float(reading))
        return True

    def _sync_fan(self, binding: SensorBinding) -> bool:
        rpm = self.context.sensors.read_fan_rpm(binding.descriptor.identifier)
        if rpm is None:
            return False
        service = binding.accessory.service(ServiceType.FAN)
        speed = service["rotationSpeed"]
        # Raw RPM goes into the percentage-declared speed; no normalization.
        value = speed.validate(rpm)
        service["powerState"].write(rpm > 0)
        speed.write(value)
        return True
