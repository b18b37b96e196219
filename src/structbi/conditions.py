"""Named validators attached to parameters and actions.

A condition wraps a predicate built by a registered validator factory. Parameter
predicates receive the ``Parameter`` being bound and may replace its value;
action predicates receive the ``Action`` after its statement ran. A predicate
returning False must leave an error on its target; ``Condition.check`` fills in
the condition's message when the predicate did not.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict

from structbi.messages import t
from structbi.values import Value, ValueKind


Predicate = Callable[[Any], bool]

PARAM_REQUIRED = "PARAM_REQUIRED"
PARAM_TYPE_MISMATCH = "PARAM_TYPE_MISMATCH"
PARAM_INVALID = "PARAM_INVALID"

IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_TRUE = {"1", "true", "yes", "on", "si", "sí"}
_FALSE = {"0", "false", "no", "off"}


class ConditionKind(str, Enum):
    ERROR = "error"


@dataclass(frozen=True)
class Condition:
    identifier: str
    predicate: Predicate
    kind: ConditionKind = ConditionKind.ERROR
    message_key: str | None = None

    def check(self, target) -> bool:
        if self.predicate(target):
            return True
        if not target.has_error():
            key = self.message_key or "param.invalid"
            target.reject(PARAM_INVALID, t(key, name=getattr(target, "name", getattr(target, "identifier", ""))))
        return False


VALIDATORS: Dict[str, Callable[..., Predicate]] = {}


def validator(name: str):
    def register(factory: Callable[..., Predicate]) -> Callable[..., Predicate]:
        VALIDATORS[name] = factory
        return factory

    return register


def condition(name: str, message_key: str | None = None, **options) -> Condition:
    try:
        factory = VALIDATORS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown validator: {name}") from exc
    return Condition(name, factory(message_key=message_key, **options), message_key=message_key)


def _msg(param, key: str | None, fallback: str, **params) -> str:
    return t(key or fallback, name=param.name, **params)


# ---- parameter validators ----


@validator("not-empty")
def _not_empty(message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_empty():
            return param.reject(PARAM_REQUIRED, _msg(param, message_key, "param.required"))
        return True

    return check


@validator("is-string")
def _is_string(message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_null() or param.value.kind == ValueKind.STRING:
            return True
        return param.reject(PARAM_TYPE_MISMATCH, _msg(param, message_key, "param.type_mismatch", expected="string"))

    return check


@validator("min-length")
def _min_length(length: int, message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_null():
            return True
        if len(param.value.to_string()) < length:
            return param.reject(PARAM_INVALID, _msg(param, message_key, "param.invalid"))
        return True

    return check


@validator("max-length")
def _max_length(length: int, message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if len(param.value.to_string()) > length:
            return param.reject(PARAM_INVALID, _msg(param, message_key, "param.too_long", length=length))
        return True

    return check


@validator("charset")
def _charset(pattern: re.Pattern = IDENTIFIER_RE, message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_null():
            return True
        if not pattern.match(param.value.to_string()):
            return param.reject(PARAM_INVALID, _msg(param, message_key, "param.invalid"))
        return True

    return check


@validator("one-of")
def _one_of(choices: tuple, message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_null():
            return True
        if param.value.to_string() not in choices:
            return param.reject(PARAM_INVALID, _msg(param, message_key, "param.invalid"))
        return True

    return check


@validator("not-in")
def _not_in(choices: tuple, message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.to_string() in choices:
            return param.reject(PARAM_INVALID, _msg(param, message_key, "param.invalid"))
        return True

    return check


@validator("integer")
def _integer(message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_null():
            return True
        coerced = coerce_value("integer", param.value)
        if coerced is None:
            return param.reject(PARAM_TYPE_MISMATCH, _msg(param, message_key, "param.type_mismatch", expected="integer"))
        param.set_value(coerced)
        return True

    return check


@validator("min-value")
def _min_value(minimum: int, message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_null():
            return True
        if param.value.kind not in (ValueKind.INTEGER, ValueKind.DECIMAL) or param.value.payload < minimum:
            return param.reject(PARAM_INVALID, _msg(param, message_key, "param.invalid"))
        return True

    return check


@validator("column-type")
def _column_type(column_type: str, length: int | None = None, message_key: str | None = None) -> Predicate:
    def check(param) -> bool:
        if param.value.is_null():
            return True
        coerced = coerce_value(column_type, param.value)
        if coerced is None:
            return param.reject(PARAM_TYPE_MISMATCH, _msg(param, message_key, "param.type_mismatch", expected=column_type))
        if column_type == "text" and length and length > 0 and len(coerced.to_string()) > length:
            return param.reject(PARAM_INVALID, t("param.too_long", name=param.name, length=length))
        param.set_value(coerced)
        return True

    return check


# ---- action validators ----


@validator("no-rows")
def _no_rows(message_key: str | None = None) -> Predicate:
    def check(action) -> bool:
        if action.results is not None and len(action.results) > 0:
            action.reject("ROW_EXISTS", t(message_key or "param.invalid", name=action.identifier))
            return False
        return True

    return check


@validator("has-rows")
def _has_rows(message_key: str | None = None, not_found: bool = False, **params) -> Predicate:
    def check(action) -> bool:
        if action.results is None or len(action.results) == 0:
            message = t(message_key or "param.invalid", name=action.identifier, **params)
            if not_found:
                action.reject_not_found("ROW_NOT_FOUND", message)
            else:
                action.reject("ROW_MISSING", message)
            return False
        return True

    return check


def coerce_value(column_type: str, value: Value) -> Value | None:
    """Convert a bound value to the column's storage type, None when it does not fit."""
    kind = value.kind
    if kind == ValueKind.STRUCTURED:
        return None
    if column_type in ("integer", "link"):
        if kind == ValueKind.INTEGER:
            return value
        if kind == ValueKind.DECIMAL and value.payload.is_integer():
            return Value.of(int(value.payload))
        if kind == ValueKind.STRING and _INT_RE.match(value.payload.strip()):
            return Value.of(int(value.payload.strip()))
        return None
    if column_type == "decimal":
        if kind in (ValueKind.INTEGER, ValueKind.DECIMAL):
            return Value.of(float(value.payload))
        if kind == ValueKind.STRING:
            try:
                number = float(value.payload.strip())
            except ValueError:
                return None
            if not math.isfinite(number):
                return None
            return Value.of(number)
        return None
    if column_type == "boolean":
        if kind == ValueKind.BOOLEAN:
            return value
        if kind == ValueKind.INTEGER and value.payload in (0, 1):
            return Value.of(bool(value.payload))
        text = value.to_string().strip().lower()
        if text in _TRUE:
            return Value.of(True)
        if text in _FALSE:
            return Value.of(False)
        return None
    if column_type == "date":
        if kind != ValueKind.STRING:
            return None
        try:
            date.fromisoformat(value.payload.strip())
        except ValueError:
            return None
        return Value.of(value.payload.strip())
    if column_type == "datetime":
        if kind != ValueKind.STRING:
            return None
        try:
            datetime.fromisoformat(value.payload.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return Value.of(value.payload.strip())
    if kind == ValueKind.BOOLEAN:
        return None
    return Value.of(value.to_string())
