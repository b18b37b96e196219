from __future__ import annotations

import logging

from structbi.conditions import PARAM_INVALID
from structbi.errors import InternalError, ValidationError
from structbi.function import Function, RequestContext
from structbi.messages import t
from structbi.parameters import Parameter, ParamSource
from structbi.schema import FORM_LOOKUP_SQL, FormRef


_logger = logging.getLogger("structbi.functions")

COLUMNS_BY_FORM_SQL = (
    "SELECT fc.id, fc.id_form, fc.identifier, fc.name, fc.length, fc.required, fc.default_value, "
    "fc.description, fc.link_to, fct.identifier AS column_type "
    "FROM forms_columns fc "
    "JOIN forms_columns_types fct ON fct.id = fc.id_column_type "
    "JOIN forms f ON f.id = fc.id_form "
    "WHERE f.identifier = ? AND f.id_space = ? "
    "ORDER BY fc.id"
)


def declare_form_lookup(function: Function, identifier: str = "a1") -> None:
    """Resolve ``form-identifier`` inside the caller's space or answer 404."""
    action = function.add_action(identifier, FORM_LOOKUP_SQL, final=False)
    action.add_parameter("form-identifier", required=True, required_key="form.identifier_empty").add_condition(
        "charset", "form.identifier_charset"
    )
    action.add_parameter("id_space", source=ParamSource.CONTEXT)
    action.add_condition("has-rows", "form.not_found", not_found=True)


def declare_columns_lookup(function: Function, identifier: str = "a2") -> None:
    action = function.add_action(identifier, COLUMNS_BY_FORM_SQL, final=False)
    action.add_parameter("form-identifier", required=True, required_key="form.identifier_empty")
    action.add_parameter("id_space", source=ParamSource.CONTEXT)


def run_all(ctx: RequestContext, *identifiers: str) -> bool:
    """Run actions in order; the first failure becomes the response."""
    for identifier in identifiers:
        action = ctx.get_action(identifier)
        if not ctx.run(action):
            ctx.error_response(action.error)
            return False
    return True


def form_of(ctx: RequestContext, identifier: str = "a1") -> FormRef:
    return FormRef.from_row(ctx.get_action(identifier).results.rows[0])


def record_id(ctx: RequestContext, name: str = "id") -> int | None:
    """Validate the record id request parameter; responds and returns None on failure."""
    param = Parameter(name, required=True, required_key="record.id_empty").add_condition("integer")
    param.value = ctx.param(name)
    if not param.evaluate():
        ctx.error_response(ValidationError(param.error_code or PARAM_INVALID, param.error or "", name))
        return None
    number = param.value.to_python()
    if number <= 0:
        ctx.error_response(ValidationError(PARAM_INVALID, t("param.invalid", name=name), name))
        return None
    return number


def partial_state(ctx: RequestContext, op: str, step: str, reason: str, **ids) -> None:
    """Report a multi-step operation that failed after earlier steps were committed."""
    extra = " ".join(f"{k}={v}" for k, v in ids.items())
    _logger.error("partial_state op=%s step=%s %s", op, step, extra)
    ctx.error_response(InternalError.opaque(f"{op.upper().replace('.', '_')}_PARTIAL", reason, step, {"partial_state": True}))
