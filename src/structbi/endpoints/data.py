"""Form data endpoints.

Records live in the physical table of their form, so every statement here is
synthesized at request time from the form's column metadata: the declared
actions resolve the form (``a1``) and its columns (``a2``), and the handlers
append the record statements with resolved table and column names.
"""

from __future__ import annotations

import dataclasses
import logging
import mimetypes
import posixpath
from typing import Dict, List

from structbi import sql
from structbi.conditions import PARAM_INVALID, PARAM_REQUIRED
from structbi.endpoints.common import (
    declare_columns_lookup,
    declare_form_lookup,
    form_of,
    partial_state,
    record_id,
    run_all,
)
from structbi.errors import ConfigurationError, InternalError, StructbiError, ValidationError
from structbi.files import FileCorrelator, UploadedFile, compose_base_dir, is_safe_relative_path
from structbi.function import CustomHandler, Function, HTTPMethod, RequestContext
from structbi.messages import t
from structbi.parameters import ParamSource
from structbi.schema import ColumnMeta, FormRef, SchemaResolver, columns_from_rows
from structbi.values import Value


_logger = logging.getLogger("structbi.actions")


def _columns(ctx: RequestContext) -> List[ColumnMeta]:
    return columns_from_rows(ctx.get_action("a2").results)


def _columns_meta(columns: List[ColumnMeta]) -> List[dict]:
    return [dataclasses.asdict(column) for column in columns]


def _static(action, name: str, value) -> None:
    action.add_parameter(name, default=value, source=ParamSource.STATIC)


def _no_storage(path: str | None = None) -> InternalError:
    return InternalError.opaque("FILE_STORAGE_MISSING", "no file storage configured", path)


def _data_function(path: str, method: HTTPMethod, handler_id: str, handler) -> Function:
    function = Function(path, method, CustomHandler(handler_id, handler))
    declare_form_lookup(function)
    declare_columns_lookup(function)
    return function


# ---- read ----


def _select(ctx: RequestContext, by_pk: bool) -> None:
    if not run_all(ctx, "a1", "a2"):
        return
    form = form_of(ctx)
    columns = _columns(ctx)
    row_id = None
    if by_pk:
        row_id = record_id(ctx)
        if row_id is None:
            return
    try:
        projection = SchemaResolver(ctx.db, ctx.id_space).build_projection(form, columns)
    except StructbiError as exc:
        ctx.error_response(exc)
        return

    select = ctx.add_action("a3", projection.select_sql(ctx.db.dialect, form, by_pk=by_pk))
    if by_pk:
        _static(select, "id", row_id)
    if not ctx.run(select):
        ctx.error_response(select.error)
        return
    ctx.compound_response(
        200,
        {"message": select.message, "data": select.json_result(), "columns_meta": _columns_meta(columns)},
    )


def _read_records(ctx: RequestContext) -> None:
    _select(ctx, by_pk=False)


def _read_record(ctx: RequestContext) -> None:
    _select(ctx, by_pk=True)


def _read_file(ctx: RequestContext) -> None:
    lookup = ctx.get_action("a1")
    if not ctx.run(lookup):
        ctx.html_response(lookup.error.status, lookup.error.message)
        return
    form = form_of(ctx)
    filepath = ctx.param("filepath").to_string()
    if not is_safe_relative_path(filepath):
        _logger.info("file_read_rejected form_id=%s path=%r", form.id, filepath)
        ctx.html_response(404, t("file.not_found"))
        return
    if ctx.storage is None:
        ctx.html_response(404, t("file.not_found"))
        return
    base_dir = compose_base_dir(ctx.storage.root, ctx.id_space, form.id)
    if not ctx.storage.exists(base_dir, filepath):
        ctx.html_response(404, t("file.not_found"))
        return
    media_type, _ = mimetypes.guess_type(filepath)
    ctx.file_response(base_dir, filepath, media_type or "application/octet-stream", posixpath.basename(filepath))


# ---- write ----


def _stored_paths(ctx: RequestContext, form: FormRef, columns: List[ColumnMeta], row_id: int) -> Dict[int, str] | None:
    """Current stored path of each file column for one record; empty when the record is gone."""
    fetch = ctx.add_action(
        "a2_1",
        sql.select_fields(ctx.db.dialect, ctx.id_space, form.id, [c.id for c in columns], form.pk_column_id),
        final=False,
    )
    _static(fetch, "id", row_id)
    if not ctx.run(fetch):
        ctx.error_response(fetch.error)
        return None
    if not fetch.results:
        return {}
    row = fetch.results.rows[0]
    return {c.id: row.field(f"c{c.id}").to_string() for c in columns}


def _link_exists(ctx: RequestContext, resolver: SchemaResolver, column: ColumnMeta, value: Value) -> bool:
    try:
        target = resolver.resolve_form(form_id=column.link_to)
    except StructbiError as exc:
        ctx.error_response(exc)
        return False
    check = ctx.add_action(
        f"a2_link_{column.id}",
        sql.record_exists(ctx.db.dialect, ctx.id_space, target.id, target.pk_column_id),
        final=False,
    )
    _static(check, column.identifier, value)
    check.add_condition("has-rows", "record.link_missing", value=value.to_string(), column=column.identifier)
    if not ctx.run(check):
        ctx.error_response(check.error)
        return False
    return True


def _write_record(ctx: RequestContext, modify: bool) -> None:
    op = "data.modify" if modify else "data.add"
    if not run_all(ctx, "a1", "a2"):
        return
    form = form_of(ctx)
    columns = [c for c in _columns(ctx) if not c.is_primary]
    row_id = None
    if modify:
        row_id = record_id(ctx)
        if row_id is None:
            return

    write = ctx.add_action("a3")
    included: List[ColumnMeta] = []
    uploads: Dict[int, UploadedFile] = {}
    for column in columns:
        if column.is_file:
            upload = FileCorrelator.match(column.identifier, ctx.files)
            if upload is None:
                if column.required and not modify:
                    ctx.error_response(
                        ValidationError(PARAM_REQUIRED, t("param.required", name=column.identifier), column.identifier)
                    )
                    return
                continue
            uploads[column.id] = upload
            write.add_parameter(column.identifier, source=ParamSource.STATIC)
        else:
            write.add_parameter(column.identifier, default=column.default, required=column.required).add_condition(
                "column-type", column_type=column.column_type, length=column.length
            )
        included.append(column)

    if not columns:
        ctx.error_response(ConfigurationError("FORM_HAS_NO_COLUMNS", t("form.no_columns"), form.identifier))
        return
    if not included:
        ctx.error_response(ValidationError("RECORD_NOTHING_TO_UPDATE", t("record.nothing_to_update"), form.identifier))
        return

    # scalar values are validated before any file is touched
    ctx.bind(write)
    for param in write.parameters:
        if param.source == ParamSource.REQUEST and not param.evaluate():
            ctx.error_response(ValidationError(param.error_code or PARAM_INVALID, param.error or "", param.name))
            return

    resolver = SchemaResolver(ctx.db, ctx.id_space)
    for column in included:
        if column.is_link:
            value = write.parameter(column.identifier).value
            if not value.is_null() and not _link_exists(ctx, resolver, column, value):
                return

    correlator: FileCorrelator | None = None
    if uploads:
        if ctx.storage is None:
            ctx.error_response(_no_storage(op))
            return
        correlator = FileCorrelator(ctx.storage, ctx.id_space, form.id)
        try:
            correlator.validate(uploads.values())
        except StructbiError as exc:
            ctx.error_response(exc)
            return
        stored: Dict[int, str] = {}
        if modify:
            stored = _stored_paths(ctx, form, [c for c in included if c.id in uploads], row_id)
            if stored is None:
                return
        try:
            for column in included:
                upload = uploads.get(column.id)
                if upload is None:
                    continue
                if modify:
                    old_path = stored.get(column.id, "")
                    path = correlator.replace(old_path, upload, column.identifier)
                else:
                    path = correlator.save(upload)
                write.parameter(column.identifier).fix(path)
        except StructbiError as exc:
            correlator.discard_saved()
            if correlator.deleted:
                partial_state(ctx, op, "files", exc.code, form_id=form.id, record_id=row_id)
            else:
                ctx.error_response(exc)
            return

    column_ids = [c.id for c in included]
    dialect = ctx.db.dialect
    if modify:
        write.sql = sql.update_record(dialect, ctx.id_space, form.id, column_ids, form.pk_column_id)
        _static(write, "id", row_id)
    else:
        write.sql = sql.insert_record(dialect, ctx.id_space, form.id, column_ids, form.pk_column_id)

    if not ctx.run(write):
        if correlator is not None:
            correlator.discard_saved()
        if correlator is not None and correlator.deleted:
            partial_state(ctx, op, "a3", write.error.code, form_id=form.id, record_id=row_id)
        else:
            ctx.error_response(write.error)
        return

    if not modify:
        new_id = write.results.first()
        _logger.info("record_created form_id=%s record_id=%s files=%s", form.id, new_id, len(uploads))
        ctx.json_response(200, t("ok"), id=new_id.to_python())
        return

    affected = max(write.results.rowcount, 0)
    if affected == 0 and correlator is not None:
        correlator.discard_saved()
    _logger.info("record_modified form_id=%s record_id=%s affected=%s", form.id, row_id, affected)
    ctx.json_response(200, t("ok") if affected else t("no_rows_affected"), affected=affected)


def _add_record(ctx: RequestContext) -> None:
    _write_record(ctx, modify=False)


def _modify_record(ctx: RequestContext) -> None:
    _write_record(ctx, modify=True)


def _delete_record(ctx: RequestContext) -> None:
    if not run_all(ctx, "a1", "a2"):
        return
    form = form_of(ctx)
    row_id = record_id(ctx)
    if row_id is None:
        return

    removed_files = 0
    file_columns = [c for c in _columns(ctx) if c.is_file]
    if file_columns:
        stored = _stored_paths(ctx, form, file_columns, row_id)
        if stored is None:
            return
        paths = [p for p in stored.values() if p]
        if paths:
            if ctx.storage is None:
                ctx.error_response(_no_storage("data.delete"))
                return
            correlator = FileCorrelator(ctx.storage, ctx.id_space, form.id)
            for path in paths:
                correlator.queue_delete(path)
            try:
                correlator.flush_deletes()
            except StructbiError as exc:
                ctx.error_response(exc)
                return
            removed_files = len(paths)

    remove = ctx.add_action("a3", sql.delete_record(ctx.db.dialect, ctx.id_space, form.id, form.pk_column_id))
    _static(remove, "id", row_id)
    if not ctx.run(remove):
        if removed_files:
            partial_state(ctx, "data.delete", "a3", remove.error.code, form_id=form.id, record_id=row_id)
        else:
            ctx.error_response(remove.error)
        return

    affected = max(remove.results.rowcount, 0)
    _logger.info("record_deleted form_id=%s record_id=%s affected=%s files=%s", form.id, row_id, affected, removed_files)
    ctx.json_response(200, t("ok") if affected else t("no_rows_affected"), affected=affected)


def declare() -> List[Function]:
    file_read = Function("/api/forms/data/file/read", HTTPMethod.GET, CustomHandler("data.file_read", _read_file))
    declare_form_lookup(file_read)
    return [
        _data_function("/api/forms/data/read", HTTPMethod.GET, "data.read", _read_records),
        _data_function("/api/forms/data/read/id", HTTPMethod.GET, "data.read_id", _read_record),
        file_read,
        _data_function("/api/forms/data/add", HTTPMethod.POST, "data.add", _add_record),
        _data_function("/api/forms/data/modify", HTTPMethod.PUT, "data.modify", _modify_record),
        _data_function("/api/forms/data/delete", HTTPMethod.DELETE, "data.delete", _delete_record),
    ]
