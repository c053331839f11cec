"""Parser collaborator contract and a CSV implementation."""

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Protocol, Sequence, runtime_checkable

import structlog

from smartrecon.errors import ParseError
from smartrecon.reconcile.values import Record

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class ParsedTable:
    """Headers plus rows of raw cells, in file order."""

    headers: List[str]
    rows: List[Sequence[Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def records(self) -> list[Record]:
        return [Record.from_row(self.headers, row) for row in self.rows]


@runtime_checkable
class Parser(Protocol):
    """Turn a stored file into a :class:`ParsedTable`."""

    def parse(self, path: Path) -> ParsedTable:
        """Parse *path*; failures surface as :class:`ParseError`."""


class CsvParser:
    """Parse delimited text files.

    Cells are trimmed and empty cells stay empty strings, so only a missing
    column reads as null.  Blank lines are skipped.
    """

    def __init__(self, *, delimiter: str = ",", encoding: str = "utf-8-sig") -> None:
        self.delimiter = delimiter
        self.encoding = encoding

    def parse(self, path: Path) -> ParsedTable:
        try:
            with path.open(newline="", encoding=self.encoding) as handle:
                reader = csv.reader(handle, delimiter=self.delimiter)
                headers = [header.strip() for header in next(reader, [])]
                rows = [[cell.strip() for cell in row] for row in reader if row]
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise ParseError(
                f"Failed to parse '{path}': {exc}", context={"path": str(path)}
            ) from exc

        log.debug("parse.csv.complete", path=str(path), rows=len(rows))
        return ParsedTable(headers=headers, rows=rows)


__all__ = ["CsvParser", "ParsedTable", "Parser"]
