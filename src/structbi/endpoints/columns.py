"""Form column endpoints: metadata rows plus the physical column they describe."""

from __future__ import annotations

import logging
from typing import List

from structbi import sql
from structbi.endpoints.common import declare_form_lookup, form_of, partial_state, record_id, run_all
from structbi.errors import IntegrityError, InternalError, StructbiError, ValidationError
from structbi.files import FileCorrelator
from structbi.function import CustomHandler, Function, HTTPMethod, RequestContext
from structbi.messages import t
from structbi.parameters import ParamSource
from structbi.schema import (
    COLUMN_TYPES,
    MAX_IDENTIFIER_LENGTH,
    MIN_IDENTIFIER_LENGTH,
    PRIMARY_KEY_IDENTIFIER,
    ColumnMeta,
    FormRef,
)


_logger = logging.getLogger("structbi.schema")

COLUMN_FIELDS = (
    "fc.id, fc.id_form, fc.identifier, fc.name, fc.length, fc.required, fc.default_value, "
    "fc.description, fc.link_to, fct.identifier AS column_type"
)
COLUMNS_OF_FORM_SQL = (
    f"SELECT {COLUMN_FIELDS} "
    "FROM forms_columns fc "
    "JOIN forms_columns_types fct ON fct.id = fc.id_column_type "
    "JOIN forms f ON f.id = fc.id_form "
    "WHERE f.identifier = ? AND f.id_space = ? AND fc.identifier <> 'id'"
)
COLUMN_BY_ID_SQL = (
    f"SELECT {COLUMN_FIELDS} "
    "FROM forms_columns fc "
    "JOIN forms_columns_types fct ON fct.id = fc.id_column_type "
    "WHERE fc.id = ? AND fc.id_form = ?"
)
COLUMN_INSERT_SQL = (
    "INSERT INTO forms_columns (identifier, name, length, required, default_value, description, "
    "id_column_type, link_to, id_form) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
)
COLUMN_UPDATE_SQL = (
    "UPDATE forms_columns SET identifier = ?, name = ?, length = ?, required = ?, default_value = ?, "
    "description = ? WHERE id = ? AND id_form = ?"
)
LINK_TARGET_SQL = "SELECT id FROM forms WHERE id = ? AND id_space = ?"
FORM_COLUMN_IDS_SQL = "SELECT id FROM forms_columns WHERE id_form = ? ORDER BY id"
LINKED_BY_SQL = "SELECT id FROM forms_columns WHERE link_to = ? AND id_form <> ?"


def _identifier(action):
    return (
        action.add_parameter("identifier", required=True, required_key="form.identifier_empty")
        .add_condition("is-string", "form.identifier_not_string")
        .add_condition("not-in", "column.reserved", choices=(PRIMARY_KEY_IDENTIFIER,))
        .add_condition("min-length", "form.identifier_short", length=MIN_IDENTIFIER_LENGTH)
        .add_condition("max-length", "form.identifier_long", length=MAX_IDENTIFIER_LENGTH)
        .add_condition("charset", "form.identifier_charset")
    )


def _column_fields(action, column_type: str) -> None:
    """Identifier, name, length, required, default_value, description, in statement order."""
    _identifier(action)
    action.add_parameter("name", required=True, required_key="form.name_empty").add_condition(
        "is-string", "form.name_not_string"
    )
    action.add_parameter("length").add_condition("integer").add_condition("min-value", minimum=1)
    action.add_parameter("required", default=False).add_condition("column-type", column_type="boolean")
    default = action.add_parameter("default_value")
    if column_type in COLUMN_TYPES and column_type not in ("image", "file", "link"):
        default.add_condition("column-type", column_type=column_type)
    action.add_parameter("description")


def _static(action, name: str, value) -> None:
    action.add_parameter(name, default=value, source=ParamSource.STATIC)


def _lookup_column(ctx: RequestContext, form: FormRef, column_id: int) -> ColumnMeta | None:
    lookup = ctx.add_action("a2", COLUMN_BY_ID_SQL, final=False)
    _static(lookup, "id", column_id)
    _static(lookup, "id_form", form.id)
    lookup.add_condition("has-rows", "column.not_found", not_found=True)
    if not ctx.run(lookup):
        ctx.error_response(lookup.error)
        return None
    column = ColumnMeta.from_row(lookup.results.rows[0])
    if column is None or column.is_primary:
        ctx.error_response(ValidationError("COLUMN_PRIMARY_KEY", t("column.primary_key"), "id"))
        return None
    return column


def _column_ids(ctx: RequestContext, identifier: str, form_id: int) -> List[int] | None:
    action = ctx.add_action(identifier, FORM_COLUMN_IDS_SQL, final=False)
    _static(action, "id_form", form_id)
    if not ctx.run(action):
        ctx.error_response(action.error)
        return None
    return [int(row.field("id").to_string()) for row in action.results]


def read_types() -> Function:
    function = Function("/api/forms/columns/types/read", HTTPMethod.GET)
    function.add_action("a1", "SELECT id, identifier, name FROM forms_columns_types ORDER BY id")
    return function


def read_columns() -> Function:
    function = Function("/api/forms/columns/read", HTTPMethod.GET)
    action = function.add_action("a1", COLUMNS_OF_FORM_SQL + " ORDER BY fc.id")
    action.add_parameter("form-identifier", required=True, required_key="form.identifier_empty")
    action.add_parameter("id_space", source=ParamSource.CONTEXT)
    return function


def read_column() -> Function:
    function = Function("/api/forms/columns/read/id", HTTPMethod.GET)
    action = function.add_action("a1", COLUMNS_OF_FORM_SQL + " AND fc.id = ?")
    action.add_parameter("form-identifier", required=True, required_key="form.identifier_empty")
    action.add_parameter("id_space", source=ParamSource.CONTEXT)
    action.add_parameter("id", required=True, required_key="record.id_empty").add_condition("integer")
    return function


def _link_target(ctx: RequestContext) -> int | None:
    """Validate ``link_to``: a form of the same space with at least one column besides the id."""
    target = ctx.add_action("a3_1", LINK_TARGET_SQL, final=False)
    target.add_parameter("link_to", required=True, required_key="column.link_required").add_condition("integer")
    target.add_parameter("id_space", source=ParamSource.CONTEXT)
    target.add_condition("has-rows", "column.link_not_found")
    if not ctx.run(target):
        ctx.error_response(target.error)
        return None
    link_to = target.parameter("link_to").value.to_python()
    column_ids = _column_ids(ctx, "a3_2", link_to)
    if column_ids is None:
        return None
    if len(column_ids) < 2:
        ctx.error_response(ValidationError("LINK_TARGET_INCOMPLETE", t("column.link_incomplete"), "link_to"))
        return None
    return link_to


def _add_column(ctx: RequestContext) -> None:
    if not run_all(ctx, "a1", "a2", "a3"):
        return
    form = form_of(ctx)
    column_type = ctx.get_action("a3").parameter("column_type").value.to_string()
    type_id = ctx.get_action("a3").results.first()

    link_to = None
    if column_type == "link":
        link_to = _link_target(ctx)
        if link_to is None:
            return

    insert = ctx.add_action("a4", COLUMN_INSERT_SQL, final=False)
    _column_fields(insert, column_type)
    _static(insert, "id_column_type", type_id)
    _static(insert, "link_to", link_to)
    _static(insert, "id_form", form.id)
    if not ctx.run(insert):
        ctx.error_response(insert.error)
        return

    created = ctx.add_action("a5", "SELECT id FROM forms_columns WHERE id_form = ? AND identifier = ?", final=False)
    _static(created, "id_form", form.id)
    _static(created, "identifier", insert.parameter("identifier").value)
    if not ctx.run(created) or not created.results:
        partial_state(ctx, "columns.add", "a5", "inserted column row was not found", form_id=form.id)
        return
    column_id = created.results.first().to_python()
    length = insert.parameter("length").value.to_python() if column_type == "text" else None

    try:
        statement = sql.add_column(ctx.db.dialect, ctx.id_space, form.id, column_id, column_type, length)
    except ValueError as exc:
        partial_state(ctx, "columns.add", "a6", str(exc), form_id=form.id, column_id=column_id)
        return
    ddl = ctx.add_action("a6", statement, final=False)
    if not ctx.run(ddl):
        partial_state(ctx, "columns.add", "a6", "physical column was not added", form_id=form.id, column_id=column_id)
        return

    _logger.info("column_created form_id=%s column_id=%s type=%s", form.id, column_id, column_type)
    ctx.json_response(200, t("ok"), id=column_id)


def add_column() -> Function:
    function = Function("/api/forms/columns/add", HTTPMethod.POST, CustomHandler("columns.add", _add_column))
    declare_form_lookup(function)

    unique = function.add_action(
        "a2",
        "SELECT fc.id FROM forms_columns fc JOIN forms f ON f.id = fc.id_form "
        "WHERE fc.identifier = ? AND f.identifier = ? AND f.id_space = ?",
        final=False,
    )
    _identifier(unique)
    unique.add_parameter("form-identifier", required=True)
    unique.add_parameter("id_space", source=ParamSource.CONTEXT)
    unique.add_condition("no-rows", "column.exists")

    column_type = function.add_action("a3", "SELECT id FROM forms_columns_types WHERE identifier = ?", final=False)
    column_type.add_parameter("column_type", required=True, required_key="column.type_unknown").add_condition(
        "one-of", "column.type_unknown", choices=COLUMN_TYPES
    )
    column_type.add_condition("has-rows", "column.type_unknown")
    return function


def _modify_column(ctx: RequestContext) -> None:
    if not run_all(ctx, "a1"):
        return
    form = form_of(ctx)
    column_id = record_id(ctx)
    if column_id is None:
        return
    column = _lookup_column(ctx, form, column_id)
    if column is None:
        return

    unique = ctx.add_action(
        "a3", "SELECT id FROM forms_columns WHERE identifier = ? AND id_form = ? AND id <> ?", final=False
    )
    _identifier(unique)
    _static(unique, "id_form", form.id)
    _static(unique, "id", column.id)
    unique.add_condition("no-rows", "column.exists")

    update = ctx.add_action("a4", COLUMN_UPDATE_SQL)
    _column_fields(update, column.column_type)
    _static(update, "id", column.id)
    _static(update, "id_form", form.id)
    if not run_all(ctx, "a3", "a4"):
        return

    length = update.parameter("length").value.to_python()
    if column.column_type == "text" and length != column.length:
        statement = sql.alter_column_length(ctx.db.dialect, ctx.id_space, form.id, column.id, length)
        if statement:
            ddl = ctx.add_action("a5", statement, final=False)
            if not ctx.run(ddl):
                partial_state(ctx, "columns.modify", "a5", "column length was not changed", column_id=column.id)
                return

    _logger.info("column_modified form_id=%s column_id=%s", form.id, column.id)
    ctx.json_response(200, t("ok"), affected=max(update.results.rowcount, 0))


def modify_column() -> Function:
    function = Function("/api/forms/columns/modify", HTTPMethod.PUT, CustomHandler("columns.modify", _modify_column))
    declare_form_lookup(function)
    return function


def _purge_column_files(ctx: RequestContext, form: FormRef, column: ColumnMeta) -> bool:
    """Delete every stored file of a file/image column; any failure aborts."""
    paths = ctx.add_action("a3", sql.select_column_values(ctx.db.dialect, ctx.id_space, form.id, column.id), final=False)
    if not ctx.run(paths):
        ctx.error_response(paths.error)
        return False
    if not paths.results:
        return True
    if ctx.storage is None:
        ctx.error_response(InternalError.opaque("FILE_STORAGE_MISSING", "no file storage configured", column.identifier))
        return False
    correlator = FileCorrelator(ctx.storage, ctx.id_space, form.id)
    for row in paths.results:
        correlator.queue_delete(row.field("value").to_string())
    try:
        correlator.flush_deletes()
    except StructbiError as exc:
        ctx.error_response(exc)
        return False
    return True


def _delete_column(ctx: RequestContext) -> None:
    if not run_all(ctx, "a1"):
        return
    form = form_of(ctx)
    column_id = record_id(ctx)
    if column_id is None:
        return
    column = _lookup_column(ctx, form, column_id)
    if column is None:
        return

    # linked forms display the second column; keep at least one besides the id
    linked = ctx.add_action("a2_1", LINKED_BY_SQL, final=False)
    _static(linked, "link_to", form.id)
    _static(linked, "id_form", form.id)
    if not ctx.run(linked):
        ctx.error_response(linked.error)
        return
    if linked.results:
        remaining = _column_ids(ctx, "a2_2", form.id)
        if remaining is None:
            return
        if len(remaining) <= 2:
            ctx.error_response(IntegrityError("FORM_LINKED", t("form.linked"), "id"))
            return

    if column.is_file and not _purge_column_files(ctx, form, column):
        return

    drop = ctx.add_action("a4", sql.drop_column(ctx.db.dialect, ctx.id_space, form.id, column.id), final=False)
    if not ctx.run(drop):
        ctx.error_response(drop.error)
        return
    remove = ctx.add_action("a5", "DELETE FROM forms_columns WHERE id = ? AND id_form = ?", final=False)
    _static(remove, "id", column.id)
    _static(remove, "id_form", form.id)
    if not ctx.run(remove):
        partial_state(ctx, "columns.delete", "a5", "column metadata was not removed", column_id=column.id)
        return

    _logger.info("column_deleted form_id=%s column_id=%s", form.id, column.id)
    ctx.json_response(200, t("ok"), affected=1)


def delete_column() -> Function:
    function = Function("/api/forms/columns/delete", HTTPMethod.DELETE, CustomHandler("columns.delete", _delete_column))
    declare_form_lookup(function)
    return function


def declare() -> List[Function]:
    return [read_types(), read_columns(), read_column(), add_column(), modify_column(), delete_column()]
