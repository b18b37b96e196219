"""Typed, field-named result sets returned by the database boundary."""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Sequence

from structbi.values import Value


class Row:
    __slots__ = ("_columns", "_values")

    def __init__(self, columns: Sequence[str], values: Sequence[Any]) -> None:
        self._columns = tuple(columns)
        self._values = tuple(Value.of(v) for v in values)

    def field(self, name: str) -> Value:
        try:
            return self._values[self._columns.index(name)]
        except ValueError:
            return Value.empty()

    def field_at(self, index: int) -> Value:
        if 0 <= index < len(self._values):
            return self._values[index]
        return Value.empty()

    def as_dict(self) -> dict:
        return {name: value.to_python() for name, value in zip(self._columns, self._values)}

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Row({self.as_dict()!r})"


class ResultSet:
    def __init__(self, columns: Iterable[str] = (), rows: Iterable[Sequence[Any]] = (), rowcount: int = -1) -> None:
        self.columns = list(columns)
        self.rows = [Row(self.columns, r) for r in rows]
        self.rowcount = rowcount

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __bool__(self) -> bool:
        return bool(self.rows)

    def first(self) -> Value:
        """First field of the first row, empty when there are no rows."""
        return self.extract(0, 0)

    def extract(self, row: int, column: int | str) -> Value:
        if row < 0 or row >= len(self.rows):
            return Value.empty()
        if isinstance(column, str):
            return self.rows[row].field(column)
        return self.rows[row].field_at(column)

    def to_json(self) -> list[dict]:
        return [r.as_dict() for r in self.rows]
