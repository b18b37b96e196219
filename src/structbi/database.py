"""Database boundary contract and SQL dialects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from structbi.results import ResultSet


@dataclass(frozen=True)
class Dialect:
    name: str
    serial_pk: str
    schemas: bool
    column_types: dict
    alters_columns: bool = False

    def column_sql_type(self, column_type: str, length: int | None = None) -> str:
        sql_type = self.column_types.get(column_type, self.column_types["text"])
        if column_type == "text" and length and length > 0:
            return f"VARCHAR({int(length)})"
        return sql_type


POSTGRES = Dialect(
    name="postgres",
    serial_pk="SERIAL PRIMARY KEY",
    schemas=True,
    column_types={
        "text": "TEXT",
        "integer": "BIGINT",
        "decimal": "NUMERIC",
        "boolean": "BOOLEAN",
        "date": "DATE",
        "datetime": "TIMESTAMP",
        "image": "TEXT",
        "file": "TEXT",
        "link": "INTEGER",
    },
    alters_columns=True,
)

SQLITE = Dialect(
    name="sqlite",
    serial_pk="INTEGER PRIMARY KEY AUTOINCREMENT",
    schemas=False,
    column_types={
        "text": "TEXT",
        "integer": "INTEGER",
        "decimal": "REAL",
        "boolean": "BOOLEAN",
        "date": "DATE",
        "datetime": "DATETIME",
        "image": "TEXT",
        "file": "TEXT",
        "link": "INTEGER",
    },
)


class Database(Protocol):
    dialect: Dialect

    def run(self, sql: str, params: Sequence[Any] = (), query_name: str | None = None) -> ResultSet:
        """Execute one statement with ``?`` placeholders.

        Raises ``structbi.errors.DatabaseError`` on failure. Each call is committed
        on its own; there is no cross-statement transaction.
        """
        ...


def count_placeholders(sql: str) -> int:
    """Count ``?`` markers outside quoted literals and identifiers."""
    count = 0
    quote: str | None = None
    for ch in sql:
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "?":
            count += 1
    return count
