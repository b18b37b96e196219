"""Dynamic schema resolution: form/column metadata to physical names."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Tuple

from structbi import sql
from structbi.action import Action
from structbi.conditions import IDENTIFIER_RE
from structbi.database import Database
from structbi.errors import InternalError, NotFoundError, ValidationError
from structbi.messages import t
from structbi.parameters import ParamSource
from structbi.results import Row
from structbi.values import Value


_logger = logging.getLogger("structbi.schema")

PRIMARY_KEY_IDENTIFIER = "id"
FILE_TYPES = ("image", "file")
COLUMN_TYPES = ("text", "integer", "decimal", "boolean", "date", "datetime", "image", "file", "link")
MIN_IDENTIFIER_LENGTH = 3
MAX_IDENTIFIER_LENGTH = 64

FORM_LOOKUP_SQL = (
    "SELECT f.id, f.identifier, f.id_space, fc.id AS column_id "
    "FROM forms f "
    "JOIN forms_columns fc ON fc.id_form = f.id AND fc.identifier = 'id' "
    "WHERE f.identifier = ? AND f.id_space = ?"
)

FORM_LOOKUP_BY_ID_SQL = (
    "SELECT f.id, f.identifier, f.id_space, fc.id AS column_id "
    "FROM forms f "
    "JOIN forms_columns fc ON fc.id_form = f.id AND fc.identifier = 'id' "
    "WHERE f.id = ? AND f.id_space = ?"
)

COLUMNS_SQL = (
    "SELECT fc.id, fc.id_form, fc.identifier, fc.name, fc.length, fc.required, fc.default_value, "
    "fc.description, fc.link_to, fct.identifier AS column_type "
    "FROM forms_columns fc "
    "JOIN forms_columns_types fct ON fct.id = fc.id_column_type "
    "WHERE fc.id_form = ? "
    "ORDER BY fc.id"
)

LINK_COLUMNS_SQL = "SELECT id FROM forms_columns WHERE id_form = ? ORDER BY id"


def is_valid_identifier(value: Any) -> bool:
    return (
        isinstance(value, str)
        and MIN_IDENTIFIER_LENGTH <= len(value) <= MAX_IDENTIFIER_LENGTH
        and bool(IDENTIFIER_RE.match(value))
    )


@dataclass(frozen=True)
class FormRef:
    id: int
    identifier: str
    id_space: int
    pk_column_id: int

    @classmethod
    def from_row(cls, row: Row) -> "FormRef":
        form_id = row.field("id")
        column_id = row.field("column_id")
        if form_id.is_null() or column_id.is_null():
            raise InternalError.opaque("FORM_METADATA_INCOMPLETE", "form row without id or primary key column")
        return cls(
            id=int(form_id.to_string()),
            identifier=row.field("identifier").to_string(),
            id_space=int(row.field("id_space").to_string()),
            pk_column_id=int(column_id.to_string()),
        )


@dataclass(frozen=True)
class ColumnMeta:
    id: int
    id_form: int
    identifier: str
    name: str
    column_type: str
    length: int | None = None
    required: bool = False
    default_value: str = ""
    link_to: int | None = None
    description: str = ""

    @property
    def physical_name(self) -> str:
        return sql.physical_column(self.id)

    @property
    def is_primary(self) -> bool:
        return self.identifier == PRIMARY_KEY_IDENTIFIER

    @property
    def is_file(self) -> bool:
        return self.column_type in FILE_TYPES

    @property
    def is_link(self) -> bool:
        return self.link_to is not None

    @property
    def default(self) -> Value:
        return Value.of(self.default_value) if self.default_value else Value.empty()

    @classmethod
    def from_row(cls, row: Row) -> "ColumnMeta | None":
        column_id = row.field("id")
        identifier = row.field("identifier")
        if column_id.is_null() or identifier.is_null():
            return None
        length = row.field("length")
        link_to = row.field("link_to")
        return cls(
            id=int(column_id.to_string()),
            id_form=int(row.field("id_form").to_string() or 0),
            identifier=identifier.to_string(),
            name=row.field("name").to_string(),
            column_type=row.field("column_type").to_string() or "text",
            length=int(length.to_string()) if not length.is_empty() else None,
            required=row.field("required").to_string() in ("1", "true", "True"),
            default_value=row.field("default_value").to_string(),
            link_to=int(link_to.to_string()) if not link_to.is_empty() else None,
            description=row.field("description").to_string(),
        )


def columns_from_rows(rows: Iterable[Row]) -> List[ColumnMeta]:
    columns = []
    for row in rows:
        column = ColumnMeta.from_row(row)
        if column is not None:
            columns.append(column)
    return columns


@dataclass(frozen=True)
class Projection:
    table: str
    alias: str
    select_list: Tuple[str, ...]
    joins: Tuple[str, ...]

    def select_sql(self, dialect, form: FormRef, by_pk: bool = False) -> str:
        return sql.select_records(
            dialect,
            form.id_space,
            form.id,
            self.select_list,
            self.joins,
            pk_column_id=form.pk_column_id if by_pk else None,
            order_column_id=None if by_pk else form.pk_column_id,
        )


class SchemaResolver:
    """Resolves forms and columns for one space and synthesizes projections."""

    def __init__(self, db: Database, id_space: int) -> None:
        self.db = db
        self.id_space = id_space

    @property
    def dialect(self):
        return self.db.dialect

    def _lookup(self, identifier: str, statement: str, value: Any) -> Action:
        action = Action(identifier, statement, final=False)
        action.add_parameter("key", default=value, required=True)
        action.add_parameter("id_space", source=ParamSource.STATIC, default=self.id_space)
        return action

    def resolve_form(self, identifier: str | None = None, form_id: int | None = None) -> FormRef:
        if form_id is not None:
            action = self._lookup("resolve_form_by_id", FORM_LOOKUP_BY_ID_SQL, form_id)
        else:
            if not is_valid_identifier(identifier):
                raise ValidationError("FORM_IDENTIFIER_INVALID", t("form.identifier_charset"), "form-identifier")
            action = self._lookup("resolve_form", FORM_LOOKUP_SQL, identifier)
        if not action.work(self.db):
            raise action.error
        if not action.results:
            raise NotFoundError("FORM_NOT_FOUND", t("form.not_found"), "form-identifier")
        return FormRef.from_row(action.results.rows[0])

    def resolve_physical_table(self, identifier: str | None = None, form_id: int | None = None) -> str:
        form = self.resolve_form(identifier=identifier, form_id=form_id)
        return self.physical_table(form.id)

    def physical_table(self, form_id: int) -> str:
        return sql.physical_table(self.dialect, self.id_space, form_id)

    def resolve_columns(self, form_id: int) -> List[ColumnMeta]:
        action = Action("resolve_columns", COLUMNS_SQL, final=False)
        action.add_parameter("id_form", default=form_id, required=True)
        if not action.work(self.db):
            raise action.error
        return columns_from_rows(action.results)

    def link_display(self, link_to: int) -> Tuple[int, int]:
        """Primary key and display column ids of a linked form.

        The display column is the second declared column; the first one is always
        the synthetic primary key.
        """
        action = Action("resolve_link", LINK_COLUMNS_SQL, final=False)
        action.add_parameter("id_form", default=link_to, required=True)
        if not action.work(self.db):
            raise action.error
        if len(action.results) < 2:
            raise InternalError.opaque(
                "LINKED_FORM_INCOMPLETE",
                f"linked form {link_to} has {len(action.results)} columns, at least 2 are required",
            )
        pk_id = action.results.extract(0, "id")
        display_id = action.results.extract(1, "id")
        return int(pk_id.to_string()), int(display_id.to_string())

    def build_projection(self, form: FormRef, columns: Iterable[ColumnMeta]) -> Projection:
        alias = sql.table_alias(form.id)
        items: List[str] = []
        joins: List[str] = []
        for column in columns:
            if column.is_link:
                link_pk_id, display_id = self.link_display(column.link_to)
                items.append(sql.projection_item(sql.link_alias(column.id), display_id, column.identifier))
                joins.append(sql.link_join(self.dialect, self.id_space, form.id, column.id, column.link_to, link_pk_id))
            else:
                items.append(sql.projection_item(alias, column.id, column.identifier))
        _logger.debug("projection form_id=%s columns=%s joins=%s", form.id, len(items), len(joins))
        return Projection(self.physical_table(form.id), alias, tuple(items), tuple(joins))
