"""Process-scoped context shared by the sync loop and lifecycle controller."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

import typer

from hapbridge.core.dispatch import SerialDispatcher
from hapbridge.sources.base import SensorSource


@dataclass
class BridgeContext:
    sensors: SensorSource
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("hapbridge"))
    dispatcher: SerialDispatcher = field(default_factory=SerialDispatcher)
    shutdown: threading.Event = field(default_factory=threading.Event)
    echo: Callable[[str], None] = typer.echo

    def child_logger(self, suffix: str) -> logging.Logger:
        return self.logger.getChild(suffix)
