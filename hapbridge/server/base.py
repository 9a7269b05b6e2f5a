"""Accessory server interfaces."""

from __future__ import annotations

from typing import Protocol

from hapbridge.core.events import DeviceEvents


class DeviceServer(Protocol):
    events: DeviceEvents

    @property
    def setup_code(self) -> str: ...

    @property
    def is_paired(self) -> bool: ...

    def setup_payload(self) -> str:
        """Return the setup URI encoded in the pairing QR code."""

    def start(self) -> None:
        """Begin serving; failures raise ServerStartError."""

    def stop(self) -> None:
        """Stop serving. Calling it again must be a no-op."""
