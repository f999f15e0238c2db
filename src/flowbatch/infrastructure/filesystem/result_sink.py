from __future__ import annotations

import asyncio
from pathlib import Path

from src.flowbatch.domain.repositories import ResultSinkRepository


class LocalResultSink(ResultSinkRepository):
    """Writes results as UTF-8 text files, overwriting existing ones."""

    async def write_text(self, directory: str, filename: str, content: str) -> Path:
        path = Path(directory) / filename
        await asyncio.to_thread(self._write, path, content)
        return path

    @staticmethod
    def _write(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
