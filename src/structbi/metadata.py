"""Metadata tables describing every dynamic form table."""

from __future__ import annotations

import logging
from typing import List

from structbi.database import Database, Dialect
from structbi.schema import COLUMN_TYPES


_logger = logging.getLogger("structbi.schema")

COLUMN_TYPE_NAMES = {
    "text": "Text",
    "integer": "Integer",
    "decimal": "Decimal",
    "boolean": "Yes/No",
    "date": "Date",
    "datetime": "Date and time",
    "image": "Image",
    "file": "File",
    "link": "Link to form",
}


def metadata_ddl(dialect: Dialect) -> List[str]:
    pk = dialect.serial_pk
    return [
        (
            "CREATE TABLE IF NOT EXISTS forms ("
            f"id {pk}, "
            "identifier VARCHAR(64) NOT NULL, "
            "name VARCHAR(100) NOT NULL, "
            "state VARCHAR(30) NOT NULL, "
            "privacy VARCHAR(30) NOT NULL, "
            "description TEXT, "
            "id_space INTEGER NOT NULL, "
            "created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP"
            ")"
        ),
        "CREATE INDEX IF NOT EXISTS idx_forms_space_identifier ON forms (id_space, identifier)",
        (
            "CREATE TABLE IF NOT EXISTS forms_columns_types ("
            f"id {pk}, "
            "identifier VARCHAR(30) NOT NULL, "
            "name VARCHAR(60) NOT NULL"
            ")"
        ),
        (
            "CREATE TABLE IF NOT EXISTS forms_columns ("
            f"id {pk}, "
            "identifier VARCHAR(64) NOT NULL, "
            "name VARCHAR(100) NOT NULL, "
            "length INTEGER, "
            "required BOOLEAN NOT NULL DEFAULT FALSE, "
            "default_value TEXT, "
            "description TEXT, "
            "id_column_type INTEGER NOT NULL, "
            "link_to INTEGER, "
            "id_form INTEGER NOT NULL, "
            "created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP"
            ")"
        ),
        "CREATE INDEX IF NOT EXISTS idx_forms_columns_form ON forms_columns (id_form)",
    ]


SEED_TYPE_SQL = (
    "INSERT INTO forms_columns_types (identifier, name) "
    "SELECT ?, ? WHERE NOT EXISTS (SELECT 1 FROM forms_columns_types WHERE identifier = ?)"
)


def ensure_metadata(db: Database) -> None:
    """Create the metadata tables and seed column types; safe to run repeatedly."""
    for statement in metadata_ddl(db.dialect):
        db.run(statement, query_name="metadata.ddl")
    for identifier in COLUMN_TYPES:
        db.run(SEED_TYPE_SQL, [identifier, COLUMN_TYPE_NAMES[identifier], identifier], query_name="metadata.seed_type")
    _logger.info("metadata_ready dialect=%s", db.dialect.name)
