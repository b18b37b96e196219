"""Statement builders for dynamic form tables.

These are the only places where identifiers are interpolated into SQL text.
Every builder accepts numeric ids (forms, columns, spaces) and identifiers that
pass ``IDENTIFIER_RE``; anything else raises ``ValueError`` before any text is
produced. Values never go through here, they are always bound with ``?``.
"""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from structbi.conditions import IDENTIFIER_RE
from structbi.database import Dialect


MAX_IDENTIFIER_LENGTH = 64


def _id(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric id: {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.isascii() and value.isdigit():
        number = int(value)
    else:
        raise ValueError(f"Not a numeric id: {value!r}")
    if number <= 0:
        raise ValueError(f"Not a numeric id: {value!r}")
    return number


def quote_alias(identifier: str) -> str:
    if not isinstance(identifier, str) or len(identifier) > MAX_IDENTIFIER_LENGTH or not IDENTIFIER_RE.match(identifier):
        raise ValueError(f"Unsafe identifier: {identifier!r}")
    return f'"{identifier}"'


def space_schema(id_space: Any) -> str:
    return f"_structbi_space_{_id(id_space)}"


def physical_column(column_id: Any) -> str:
    return f"_structbi_column_{_id(column_id)}"


def physical_table(dialect: Dialect, id_space: Any, form_id: Any) -> str:
    table = f"_structbi_form_{_id(form_id)}"
    if dialect.schemas:
        return f"{space_schema(id_space)}.{table}"
    return table


def table_alias(form_id: Any) -> str:
    return f"_{_id(form_id)}"


def link_alias(column_id: Any) -> str:
    return f"_link_{_id(column_id)}"


# ---- DDL ----


def create_space(dialect: Dialect, id_space: Any) -> str | None:
    if not dialect.schemas:
        return None
    return f"CREATE SCHEMA IF NOT EXISTS {space_schema(id_space)}"


def create_table(dialect: Dialect, id_space: Any, form_id: Any, pk_column_id: Any) -> str:
    return (
        f"CREATE TABLE {physical_table(dialect, id_space, form_id)} ("
        f"{physical_column(pk_column_id)} {dialect.serial_pk}, "
        "created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP"
        ")"
    )


def drop_table(dialect: Dialect, id_space: Any, form_id: Any) -> str:
    return f"DROP TABLE IF EXISTS {physical_table(dialect, id_space, form_id)}"


def add_column(dialect: Dialect, id_space: Any, form_id: Any, column_id: Any, column_type: str, length: int | None = None) -> str:
    if column_type not in dialect.column_types:
        raise ValueError(f"Unknown column type: {column_type!r}")
    sql_type = dialect.column_sql_type(column_type, _length(length))
    return f"ALTER TABLE {physical_table(dialect, id_space, form_id)} ADD COLUMN {physical_column(column_id)} {sql_type}"


def drop_column(dialect: Dialect, id_space: Any, form_id: Any, column_id: Any) -> str:
    return f"ALTER TABLE {physical_table(dialect, id_space, form_id)} DROP COLUMN {physical_column(column_id)}"


def alter_column_length(dialect: Dialect, id_space: Any, form_id: Any, column_id: Any, length: int | None = None) -> str | None:
    if not dialect.alters_columns:
        return None
    sql_type = dialect.column_sql_type("text", _length(length))
    return (
        f"ALTER TABLE {physical_table(dialect, id_space, form_id)} "
        f"ALTER COLUMN {physical_column(column_id)} TYPE {sql_type}"
    )


def _length(length: Any) -> int | None:
    if length in (None, "", 0):
        return None
    return _id(length)


# ---- projection ----


def projection_item(source_alias: str, column_id: Any, identifier: str) -> str:
    return f"{source_alias}.{physical_column(column_id)} AS {quote_alias(identifier)}"


def link_join(dialect: Dialect, id_space: Any, form_id: Any, column_id: Any, link_to: Any, link_pk_id: Any) -> str:
    alias = link_alias(column_id)
    return (
        f"LEFT JOIN {physical_table(dialect, id_space, link_to)} AS {alias} "
        f"ON {alias}.{physical_column(link_pk_id)} = {table_alias(form_id)}.{physical_column(column_id)}"
    )


# ---- DML ----


def select_records(
    dialect: Dialect,
    id_space: Any,
    form_id: Any,
    select_list: Sequence[str],
    joins: Iterable[str] = (),
    pk_column_id: Any | None = None,
    order_column_id: Any | None = None,
) -> str:
    """SELECT over the form table; ``pk_column_id`` adds a ``WHERE pk = ?`` filter."""
    if not select_list:
        raise ValueError("Empty select list")
    alias = table_alias(form_id)
    sql = f"SELECT {', '.join(select_list)} FROM {physical_table(dialect, id_space, form_id)} AS {alias}"
    joins = list(joins)
    if joins:
        sql += " " + " ".join(joins)
    if pk_column_id is not None:
        sql += f" WHERE {alias}.{physical_column(pk_column_id)} = ?"
    elif order_column_id is not None:
        sql += f" ORDER BY {alias}.{physical_column(order_column_id)}"
    return sql


def select_fields(dialect: Dialect, id_space: Any, form_id: Any, column_ids: Sequence[Any], pk_column_id: Any) -> str:
    if not column_ids:
        raise ValueError("Empty column list")
    fields = ", ".join(f"{physical_column(c)} AS \"c{_id(c)}\"" for c in column_ids)
    return f"SELECT {fields} FROM {physical_table(dialect, id_space, form_id)} WHERE {physical_column(pk_column_id)} = ?"


def select_column_values(dialect: Dialect, id_space: Any, form_id: Any, column_id: Any) -> str:
    column = physical_column(column_id)
    return f"SELECT {column} AS \"value\" FROM {physical_table(dialect, id_space, form_id)} WHERE {column} IS NOT NULL"


def record_exists(dialect: Dialect, id_space: Any, form_id: Any, pk_column_id: Any) -> str:
    return f"SELECT 1 AS found FROM {physical_table(dialect, id_space, form_id)} WHERE {physical_column(pk_column_id)} = ?"


def insert_record(dialect: Dialect, id_space: Any, form_id: Any, column_ids: Sequence[Any], pk_column_id: Any) -> str:
    if not column_ids:
        raise ValueError("Empty column list")
    columns = ", ".join(physical_column(c) for c in column_ids)
    values = ", ".join("?" for _ in column_ids)
    return (
        f"INSERT INTO {physical_table(dialect, id_space, form_id)} ({columns}) VALUES ({values}) "
        f"RETURNING {physical_column(pk_column_id)} AS \"id\""
    )


def update_record(dialect: Dialect, id_space: Any, form_id: Any, column_ids: Sequence[Any], pk_column_id: Any) -> str:
    if not column_ids:
        raise ValueError("Empty column list")
    assignments = ", ".join(f"{physical_column(c)} = ?" for c in column_ids)
    return (
        f"UPDATE {physical_table(dialect, id_space, form_id)} SET {assignments} "
        f"WHERE {physical_column(pk_column_id)} = ?"
    )


def delete_record(dialect: Dialect, id_space: Any, form_id: Any, pk_column_id: Any) -> str:
    return f"DELETE FROM {physical_table(dialect, id_space, form_id)} WHERE {physical_column(pk_column_id)} = ?"
