from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from src.flowbatch.domain.repositories import PreferencesRepository

logger = logging.getLogger(__name__)

OUTPUT_DIRECTORY_KEY = "batch_output_directory"


class JsonPreferencesStore(PreferencesRepository):
    """Keeps user preferences in a small JSON document."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable preferences file", extra={"path": str(self._path)})
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get_output_directory(self) -> str | None:
        value = self._read().get(OUTPUT_DIRECTORY_KEY)
        return value if isinstance(value, str) and value else None

    def set_output_directory(self, directory: str) -> None:
        data = self._read()
        data[OUTPUT_DIRECTORY_KEY] = directory
        self._write(data)
        logger.info("Saved output directory", extra={"directory": directory})
