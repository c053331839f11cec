"""JSON and CSV exception reports."""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Iterable

from smartrecon.reconcile.models import ExceptionRecord

CSV_COLUMNS = [
    "exception_id",
    "type",
    "severity",
    "status",
    "field_name",
    "source_value",
    "target_value",
    "description",
    "ai_suggestion",
    "source_record",
    "target_record",
]


def _csv_row(exception: ExceptionRecord) -> dict[str, str]:
    data = exception.model_dump(mode="json")
    row = {column: data.get(column) for column in CSV_COLUMNS}
    for column in ("source_record", "target_record"):
        value = row[column]
        row[column] = json.dumps(value, sort_keys=True) if value is not None else ""
    return {key: "" if value is None else str(value) for key, value in row.items()}


def write_csv_report(path: Path, exceptions: Iterable[ExceptionRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        writer.writerows(_csv_row(exception) for exception in exceptions)


def write_json_report(path: Path, exceptions: Iterable[ExceptionRecord]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [exception.model_dump(mode="json") for exception in exceptions]
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)


__all__ = ["CSV_COLUMNS", "write_csv_report", "write_json_report"]
