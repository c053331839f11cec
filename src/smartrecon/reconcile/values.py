"""Typed field values and immutable records exchanged with the engine.

Parsed rows arrive as loosely typed cells.  They are wrapped once, on the way
in, into one of the value classes below so that the comparator can ask every
value for its string form or numeric reading without inspecting Python types.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, ClassVar, Iterable, Iterator, Mapping, Sequence, Union

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def coerce_number(text: str) -> float | None:
    """Best-effort numeric reading of *text* after stripping non-numeric noise.

    ``"$1,200.50"`` reads as ``1200.5``; anything that still fails to parse
    returns ``None``.
    """

    cleaned = _NON_NUMERIC.sub("", text)
    try:
        return float(cleaned)
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class StringVal:
    value: str

    is_null: ClassVar[bool] = False

    def text(self) -> str:
        return self.value

    def number(self) -> float | None:
        return coerce_number(self.value)

    def json_value(self) -> Any:
        return self.value


@dataclass(frozen=True, slots=True)
class NumberVal:
    value: int | float

    is_null: ClassVar[bool] = False

    def text(self) -> str:
        return str(self.value)

    def number(self) -> float | None:
        return float(self.value)

    def json_value(self) -> Any:
        return self.value


@dataclass(frozen=True, slots=True)
class BoolVal:
    value: bool

    is_null: ClassVar[bool] = False

    def text(self) -> str:
        return "true" if self.value else "false"

    def number(self) -> float | None:
        return coerce_number(self.text())

    def json_value(self) -> Any:
        return self.value


@dataclass(frozen=True, slots=True)
class TemporalVal:
    value: date | datetime | time

    is_null: ClassVar[bool] = False

    def text(self) -> str:
        return self.value.isoformat()

    def number(self) -> float | None:
        return coerce_number(self.text())

    def json_value(self) -> Any:
        return self.text()


@dataclass(frozen=True, slots=True)
class NullVal:
    """Absent or empty cell."""

    is_null: ClassVar[bool] = True

    def text(self) -> str:
        return ""

    def number(self) -> float | None:
        return None

    def json_value(self) -> Any:
        return None


NULL = NullVal()

FieldValue = Union[StringVal, NumberVal, BoolVal, TemporalVal, NullVal]
_VALUE_TYPES = (StringVal, NumberVal, BoolVal, TemporalVal, NullVal)


def value_of(raw: Any) -> FieldValue:
    """Wrap a raw cell into its tagged value."""

    if isinstance(raw, _VALUE_TYPES):
        return raw
    if raw is None:
        return NULL
    # bool before int: bool is an int subclass.
    if isinstance(raw, bool):
        return BoolVal(raw)
    if isinstance(raw, (int, float)):
        return NumberVal(raw)
    if isinstance(raw, Decimal):
        return NumberVal(float(raw))
    if isinstance(raw, (date, datetime, time)):
        return TemporalVal(raw)
    if isinstance(raw, str):
        return StringVal(raw)
    return StringVal(str(raw))


def display(value: FieldValue) -> str | None:
    """String form used on exception records; ``None`` for nulls."""

    return None if value.is_null else value.text()


class Record(Mapping[str, FieldValue]):
    """Ordered, immutable mapping from field name to :data:`FieldValue`."""

    __slots__ = ("_fields",)

    def __init__(
        self, fields: Mapping[str, Any] | Iterable[tuple[str, Any]] = ()
    ) -> None:
        items = fields.items() if isinstance(fields, Mapping) else fields
        self._fields: dict[str, FieldValue] = {
            str(name): value_of(raw) for name, raw in items
        }

    @classmethod
    def from_row(cls, headers: Sequence[str], row: Sequence[Any]) -> "Record":
        """Zip *headers* with *row*, ignoring cells beyond the shorter side."""

        return cls(zip(headers, row))

    def __getitem__(self, name: str) -> FieldValue:
        return self._fields[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"Record({self.to_dict()!r})"

    def value(self, name: str) -> FieldValue:
        """Return the value for *name*, or :data:`NULL` when absent."""

        return self._fields.get(name, NULL)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe snapshot of the record."""

        return {name: value.json_value() for name, value in self._fields.items()}


__all__ = [
    "BoolVal",
    "FieldValue",
    "NULL",
    "NullVal",
    "NumberVal",
    "Record",
    "StringVal",
    "TemporalVal",
    "coerce_number",
    "display",
    "value_of",
]
