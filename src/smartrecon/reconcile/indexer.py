"""Composite-key indexing of parsed records."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from smartrecon.config import ReconcileSettings
from smartrecon.reconcile.rules import FieldMapping
from smartrecon.reconcile.values import Record

RecordIndex = Dict[str, List[Record]]


def build_key(
    record: Record,
    key_mappings: Sequence[FieldMapping],
    *,
    source: bool,
    separator: str = "|",
    null_sentinel: str = "null",
) -> str:
    """Concatenate the key-field values of *record* in mapping order.

    Every component is followed by *separator*.  Absent values contribute
    *null_sentinel*, which means a literal ``"null"`` string collides with a
    missing key.
    """

    parts: list[str] = []
    for mapping in key_mappings:
        value = record.value(mapping.field_for(source=source))
        parts.append(null_sentinel if value.is_null else value.text())
        parts.append(separator)
    return "".join(parts)


def build_index(
    records: Iterable[Record],
    key_mappings: Sequence[FieldMapping],
    *,
    source: bool,
    settings: ReconcileSettings | None = None,
) -> RecordIndex:
    """Bucket *records* by key, preserving first-seen key and record order."""

    settings = settings or ReconcileSettings()
    index: RecordIndex = {}
    for record in records:
        key = build_key(
            record,
            key_mappings,
            source=source,
            separator=settings.key_separator,
            null_sentinel=settings.null_key_sentinel,
        )
        index.setdefault(key, []).append(record)
    return index


__all__ = ["RecordIndex", "build_index", "build_key"]
