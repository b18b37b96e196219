"""One parameterized SQL statement with its parameters and conditions."""

from __future__ import annotations

import logging
from typing import Any, List

from structbi.conditions import PARAM_INVALID, Condition, condition
from structbi.database import Database, count_placeholders
from structbi.errors import DatabaseError, IntegrityError, InternalError, NotFoundError, StructbiError, ValidationError
from structbi.messages import t
from structbi.parameters import ParamSource, Parameter
from structbi.results import ResultSet


_logger = logging.getLogger("structbi.actions")


class Action:
    def __init__(self, identifier: str, sql: str = "", final: bool = True) -> None:
        self.identifier = identifier
        self.sql = sql
        self.final = final
        self.parameters: List[Parameter] = []
        self.conditions: List[Condition] = []
        self.results: ResultSet | None = None
        self.error: StructbiError | None = None
        self.custom_error = ""
        self.status = 0
        self.message = ""

    def add_parameter(
        self,
        name: str,
        default: Any = None,
        required: bool = False,
        source: ParamSource = ParamSource.REQUEST,
        required_key: str | None = None,
    ) -> Parameter:
        if self.parameter(name) is not None:
            raise ValueError(f"Duplicate parameter {name} in action {self.identifier}")
        param = Parameter(name, default=default, required=required, source=source, required_key=required_key)
        self.parameters.append(param)
        return param

    def add_condition(self, name: str, message_key: str | None = None, **options) -> "Action":
        self.conditions.append(condition(name, message_key=message_key, **options))
        return self

    def parameter(self, name: str) -> Parameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def clone(self) -> "Action":
        copy = Action(self.identifier, self.sql, self.final)
        copy.parameters = [p.clone() for p in self.parameters]
        copy.conditions = list(self.conditions)
        return copy

    def has_error(self) -> bool:
        return self.error is not None

    def reject(self, code: str, message: str) -> bool:
        self.error = IntegrityError(code, message, self.identifier)
        self.custom_error = message
        return False

    def reject_not_found(self, code: str, message: str) -> bool:
        self.error = NotFoundError(code, message, self.identifier)
        self.custom_error = message
        return False

    def _fail(self, error: StructbiError) -> bool:
        self.error = error
        self.custom_error = error.message
        return False

    def work(self, db: Database) -> bool:
        self.results = None
        self.error = None
        self.custom_error = ""
        self.status = 0
        self.message = ""

        for param in self.parameters:
            if not param.evaluate():
                _logger.info("action_param_rejected action=%s param=%s code=%s", self.identifier, param.name, param.error_code)
                return self._fail(ValidationError(param.error_code or PARAM_INVALID, param.error or "", param.name))

        if not self.sql.strip():
            return self._fail(InternalError.opaque("ACTION_SQL_MISSING", "action has no statement", self.identifier))
        expected = count_placeholders(self.sql)
        if expected != len(self.parameters):
            return self._fail(
                InternalError.opaque(
                    "ACTION_PARAMS_MISMATCH",
                    f"statement expects {expected} parameters, action has {len(self.parameters)}",
                    self.identifier,
                )
            )

        try:
            self.results = db.run(self.sql, [p.bound() for p in self.parameters], query_name=self.identifier)
        except DatabaseError as exc:
            return self._fail(InternalError.opaque("ACTION_SQL_FAILED", str(exc), self.identifier))

        for cond in self.conditions:
            if not cond.check(self):
                _logger.info("action_condition_rejected action=%s condition=%s", self.identifier, cond.identifier)
                return False

        self.status = 200
        self.message = t("ok")
        return True

    def json_result(self) -> list[dict]:
        return self.results.to_json() if self.results is not None else []

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Action({self.identifier!r}, final={self.final})"
