"""Form metadata endpoints: list, read, create, modify, delete."""

from __future__ import annotations

import logging
from typing import List

from structbi import sql
from structbi.endpoints.common import partial_state, run_all
from structbi.errors import StructbiError
from structbi.files import compose_base_dir
from structbi.function import CustomHandler, Function, HTTPMethod, RequestContext
from structbi.messages import t
from structbi.parameters import ParamSource
from structbi.schema import FORM_LOOKUP_BY_ID_SQL, MAX_IDENTIFIER_LENGTH, MIN_IDENTIFIER_LENGTH, FormRef


_logger = logging.getLogger("structbi.schema")

FORM_FIELDS = "id, identifier, name, state, privacy, description, id_space, created_at"

PK_COLUMN_INSERT_SQL = (
    "INSERT INTO forms_columns (identifier, name, length, required, default_value, description, "
    "id_column_type, link_to, id_form) "
    "SELECT 'id', 'ID', NULL, TRUE, '', '', fct.id, NULL, ? "
    "FROM forms_columns_types fct WHERE fct.identifier = 'integer'"
)
PK_COLUMN_LOOKUP_SQL = "SELECT id FROM forms_columns WHERE id_form = ? AND identifier = 'id'"
LINKED_BY_SQL = "SELECT id FROM forms_columns WHERE link_to = ? AND id_form <> ?"


def _identifier(action, name: str = "identifier"):
    return (
        action.add_parameter(name, required=True, required_key="form.identifier_empty")
        .add_condition("is-string", "form.identifier_not_string")
        .add_condition("min-length", "form.identifier_short", length=MIN_IDENTIFIER_LENGTH)
        .add_condition("max-length", "form.identifier_long", length=MAX_IDENTIFIER_LENGTH)
        .add_condition("charset", "form.identifier_charset")
    )


def _form_id(action):
    return action.add_parameter("id", required=True, required_key="form.id_empty").add_condition("integer")


def _form_fields(action) -> None:
    _identifier(action)
    action.add_parameter("name", required=True, required_key="form.name_empty").add_condition(
        "is-string", "form.name_not_string"
    ).add_condition("min-length", "form.name_short", length=3)
    action.add_parameter("state", required=True, required_key="form.state_empty")
    action.add_parameter("privacy", required=True, required_key="form.privacy_empty")
    action.add_parameter("description")


def read_forms() -> Function:
    function = Function("/api/forms/read", HTTPMethod.GET)
    action = function.add_action("a1", f"SELECT {FORM_FIELDS} FROM forms WHERE id_space = ? ORDER BY id")
    action.add_parameter("id_space", source=ParamSource.CONTEXT)
    return function


def read_form() -> Function:
    function = Function("/api/forms/read/id", HTTPMethod.GET)
    action = function.add_action("a1", f"SELECT {FORM_FIELDS} FROM forms WHERE id = ? AND id_space = ?")
    _form_id(action)
    action.add_parameter("id_space", source=ParamSource.CONTEXT)
    return function


def _add_form(ctx: RequestContext) -> None:
    if not run_all(ctx, "a1", "a2", "a3"):
        return
    form_id = ctx.get_action("a3").results.first()
    if form_id.is_null():
        partial_state(ctx, "forms.add", "a3", "inserted form row was not found")
        return

    pk_insert = ctx.add_action("a4", PK_COLUMN_INSERT_SQL, final=False)
    pk_insert.add_parameter("id_form", default=form_id, source=ParamSource.STATIC)
    pk_lookup = ctx.add_action("a5", PK_COLUMN_LOOKUP_SQL, final=False)
    pk_lookup.add_parameter("id_form", default=form_id, source=ParamSource.STATIC)
    for action in (pk_insert, pk_lookup):
        if not ctx.run(action) or (action is pk_lookup and not action.results):
            partial_state(ctx, "forms.add", action.identifier, "primary key column was not created", form_id=form_id)
            return

    dialect = ctx.db.dialect
    statements: List[str] = [
        s
        for s in (
            sql.create_space(dialect, ctx.id_space),
            sql.create_table(dialect, ctx.id_space, form_id.to_string(), pk_lookup.results.first().to_string()),
        )
        if s
    ]
    for index, statement in enumerate(statements):
        ddl = ctx.add_action(f"a6_{index}", statement, final=False)
        if not ctx.run(ddl):
            partial_state(ctx, "forms.add", ddl.identifier, "form table was not created", form_id=form_id)
            return

    _logger.info("form_created id_space=%s form_id=%s", ctx.id_space, form_id)
    ctx.json_response(200, t("ok"), id=form_id.to_python())


def add_form() -> Function:
    function = Function("/api/forms/add", HTTPMethod.POST, CustomHandler("forms.add", _add_form))
    unique = function.add_action("a1", "SELECT id FROM forms WHERE identifier = ? AND id_space = ?", final=False)
    _identifier(unique)
    unique.add_parameter("id_space", source=ParamSource.CONTEXT)
    unique.add_condition("no-rows", "form.exists")

    insert = function.add_action(
        "a2",
        "INSERT INTO forms (identifier, name, state, privacy, description, id_space) VALUES (?, ?, ?, ?, ?, ?)",
        final=False,
    )
    _form_fields(insert)
    insert.add_parameter("id_space", source=ParamSource.CONTEXT)

    created = function.add_action("a3", "SELECT id FROM forms WHERE identifier = ? AND id_space = ?", final=False)
    created.add_parameter("identifier", required=True)
    created.add_parameter("id_space", source=ParamSource.CONTEXT)
    return function


def modify_form() -> Function:
    function = Function("/api/forms/modify", HTTPMethod.PUT)
    exists = function.add_action("a1", "SELECT id FROM forms WHERE id = ? AND id_space = ?", final=False)
    _form_id(exists)
    exists.add_parameter("id_space", source=ParamSource.CONTEXT)
    exists.add_condition("has-rows", "form.not_found", not_found=True)

    unique = function.add_action(
        "a2", "SELECT id FROM forms WHERE identifier = ? AND id <> ? AND id_space = ?", final=False
    )
    _identifier(unique)
    _form_id(unique)
    unique.add_parameter("id_space", source=ParamSource.CONTEXT)
    unique.add_condition("no-rows", "form.exists")

    update = function.add_action(
        "a3",
        "UPDATE forms SET identifier = ?, name = ?, state = ?, privacy = ?, description = ? "
        "WHERE id = ? AND id_space = ?",
    )
    _form_fields(update)
    _form_id(update)
    update.add_parameter("id_space", source=ParamSource.CONTEXT)
    return function


def _delete_form(ctx: RequestContext) -> None:
    if not run_all(ctx, "a1"):
        return
    form = FormRef.from_row(ctx.get_action("a1").results.rows[0])

    linked = ctx.add_action("a2", LINKED_BY_SQL, final=False)
    linked.add_parameter("link_to", default=form.id, source=ParamSource.STATIC)
    linked.add_parameter("id_form", default=form.id, source=ParamSource.STATIC)
    linked.add_condition("no-rows", "form.linked")
    if not ctx.run(linked):
        ctx.error_response(linked.error)
        return

    drop = ctx.add_action("a3", sql.drop_table(ctx.db.dialect, ctx.id_space, form.id), final=False)
    if not ctx.run(drop):
        ctx.error_response(drop.error)
        return

    steps = [
        ("a4", "DELETE FROM forms_columns WHERE id_form = ?", ("id_form",)),
        ("a5", "DELETE FROM forms WHERE id = ? AND id_space = ?", ("id", "id_space")),
    ]
    for identifier, statement, names in steps:
        action = ctx.add_action(identifier, statement, final=False)
        for name in names:
            value = ctx.id_space if name == "id_space" else form.id
            action.add_parameter(name, default=value, source=ParamSource.STATIC)
        if not ctx.run(action):
            partial_state(ctx, "forms.delete", identifier, "form metadata was not removed", form_id=form.id)
            return

    if ctx.storage is not None:
        base_dir = compose_base_dir(ctx.storage.root, ctx.id_space, form.id)
        try:
            ctx.storage.purge(base_dir)
        except (OSError, StructbiError):
            _logger.exception("form_files_purge_failed id_space=%s form_id=%s", ctx.id_space, form.id)

    _logger.info("form_deleted id_space=%s form_id=%s", ctx.id_space, form.id)
    ctx.json_response(200, t("ok"), affected=1)


def delete_form() -> Function:
    function = Function("/api/forms/delete", HTTPMethod.DELETE, CustomHandler("forms.delete", _delete_form))
    lookup = function.add_action("a1", FORM_LOOKUP_BY_ID_SQL, final=False)
    _form_id(lookup)
    lookup.add_parameter("id_space", source=ParamSource.CONTEXT)
    lookup.add_condition("has-rows", "form.not_found", not_found=True)
    return function


def declare() -> List[Function]:
    return [read_forms(), read_form(), add_form(), modify_form(), delete_form()]
