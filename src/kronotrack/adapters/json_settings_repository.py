"""JSON file repository for participant settings."""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from kronotrack.services.settings import SettingsRepository

logger = logging.getLogger(__name__)


@dataclass
class JsonFileSettingsRepository(SettingsRepository):
    """Stores settings as one JSON object, rewritten on every change."""

    path: Path
    _values: dict[str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self._values = self._read()

    def get(self, key: str) -> str | None:
        """Return the stored value for a key."""
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        """Store a value and flush to disk."""
        if self._values.get(key) == value:
            return
        self._values[key] = value
        self._write()

    def delete(self, key: str) -> None:
        """Remove a key and flush to disk."""
        if key not in self._values:
            return
        del self._values[key]
        self._write()

    def _read(self) -> dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Settings file %s is corrupt; starting empty", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Settings file %s is not an object; starting empty", self.path
            )
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(self._values, handle, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
