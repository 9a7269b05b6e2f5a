"""JSON file holding pairings and key material."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from hapbridge.core.errors import StorageError

LOGGER = logging.getLogger(__name__)


class FileStorage:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def __str__(self) -> str:
        return str(self.path)

    def load(self) -> dict[str, Any]:
        """Return the stored document; a missing or empty file yields ``{}``."""
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(f"Could not read pairing state {self.path}: {exc}") from exc

        if not content.strip():
            return {}
        try:
            loaded = json.loads(content)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Pairing state {self.path} is not valid JSON: {exc}") from exc
        if not isinstance(loaded, dict):
            raise StorageError(f"Pairing state {self.path} must contain an object at root")
        return loaded

    def save(self, data: dict[str, Any]) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StorageError(f"Could not write pairing state {self.path}: {exc}") from exc

    def reset(self) -> None:
        """Drop all pairings and keys by removing the file."""
        LOGGER.info("Dropping all pairings, keys in %s", self.path)
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Could not reset pairing state {self.path}: {exc}") from exc
