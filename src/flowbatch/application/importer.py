from __future__ import annotations

import asyncio
import csv
import io
import logging
from pathlib import Path

from src.flowbatch.domain.models.batch_summary import ImportResult
from src.flowbatch.domain.models.batch_task import BatchTask

logger = logging.getLogger(__name__)

_HEADER_MARKERS = ("input", "flow")


def parse_rows(text: str) -> list[list[str]]:
    rows = []
    for row in csv.reader(io.StringIO(text)):
        cells = [cell.strip() for cell in row]
        if not any(cells):
            continue
        rows.append(cells)
    return rows


def has_header_row(rows: list[list[str]]) -> bool:
    if not rows or not rows[0]:
        return False
    first = rows[0][0].lower()
    return any(marker in first for marker in _HEADER_MARKERS)


def import_csv_text(
    text: str,
    *,
    require_filename: bool,
    merge_columns: bool = False,
) -> ImportResult:
    """
    Build tasks from CSV text: column 0 is the input, column 1 the filename.

    The filename column is only read when ``require_filename`` is set; rows
    without one are then skipped and counted. When a header row is present,
    every column is kept in ``row_data`` and ``merge_columns`` turns the whole
    row into the task input.
    """
    rows = parse_rows(text)
    header = has_header_row(rows) and len(rows) > 1
    columns = rows[0] if header else []
    data_rows = rows[1:] if header else rows
    logger.debug(
        "Parsed CSV rows",
        extra={"rows": len(rows), "data_rows": len(data_rows), "has_header": header},
    )

    result = ImportResult(total_rows=len(data_rows), has_header=header)
    for row in data_rows:
        text_input = row[0] if row else ""
        filename = row[1] if require_filename and len(row) > 1 else None
        if require_filename and not filename:
            logger.warning("Skipping row with missing filename", extra={"input": text_input})
            result.skipped += 1
            continue

        row_data = {
            column: row[index] if index < len(row) else ""
            for index, column in enumerate(columns)
            if column
        }
        task = BatchTask.from_input(text_input, filename=filename, row_data=row_data)
        if merge_columns and row_data:
            task.flow_input["input"] = task.format_row_data_as_input()
        result.tasks.append(task)

    logger.info(
        "Imported %d tasks from CSV", len(result.tasks),
        extra={"total_rows": result.total_rows, "skipped": result.skipped},
    )
    return result


async def import_csv_file(
    path: str | Path,
    *,
    require_filename: bool,
    merge_columns: bool = False,
) -> ImportResult:
    text = await asyncio.to_thread(Path(path).read_text, encoding="utf-8-sig")
    return import_csv_text(text, require_filename=require_filename, merge_columns=merge_columns)
