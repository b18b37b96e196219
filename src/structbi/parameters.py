"""Named, typed inputs bound to an action's statement."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List

from structbi.conditions import PARAM_REQUIRED, Condition, condition
from structbi.messages import t
from structbi.values import Value, ValueKind


class ParamSource(str, Enum):
    REQUEST = "request"
    CONTEXT = "context"
    STATIC = "static"


@dataclass
class Parameter:
    name: str
    default: Value = field(default_factory=Value.empty)
    required: bool = False
    source: ParamSource = ParamSource.REQUEST
    conditions: List[Condition] = field(default_factory=list)
    required_key: str | None = None
    value: Value = field(default_factory=Value.empty)
    error: str | None = None
    error_code: str | None = None

    def __post_init__(self) -> None:
        self.default = Value.of(self.default)
        if self.source == ParamSource.STATIC:
            self.value = self.default

    @classmethod
    def from_context(cls, name: str) -> "Parameter":
        return cls(name, source=ParamSource.CONTEXT)

    @classmethod
    def static(cls, name: str, value: Any) -> "Parameter":
        return cls(name, default=Value.of(value), source=ParamSource.STATIC)

    def add_condition(self, name: str, message_key: str | None = None, **options) -> "Parameter":
        self.conditions.append(condition(name, message_key=message_key, **options))
        return self

    def set_value(self, raw: Any) -> None:
        self.value = Value.of(raw)

    def fix(self, raw: Any) -> None:
        """Pin the value of a parameter resolved while handling a request."""
        self.default = Value.of(raw)
        self.value = self.default

    def has_error(self) -> bool:
        return bool(self.error)

    def reject(self, code: str, message: str) -> bool:
        self.error_code = code
        self.error = message
        return False

    def reset(self) -> None:
        self.value = self.default if self.source == ParamSource.STATIC else Value.empty()
        self.error = None
        self.error_code = None

    def clone(self) -> "Parameter":
        return Parameter(
            self.name,
            default=self.default,
            required=self.required,
            source=self.source,
            conditions=list(self.conditions),
            required_key=self.required_key,
        )

    def evaluate(self) -> bool:
        """Resolve defaults, enforce ``required``, then run conditions in order."""
        self.error = None
        self.error_code = None
        if self.value.is_empty():
            if not self.default.is_empty():
                self.value = self.default
            elif self.required:
                return self.reject(PARAM_REQUIRED, t(self.required_key or "param.required", name=self.name))
            else:
                self.value = Value.empty()
        for cond in self.conditions:
            if not cond.check(self):
                return False
        return True

    def bound(self) -> Any:
        if self.value.kind == ValueKind.STRUCTURED:
            return json.dumps(self.value.payload, default=str)
        return self.value.to_python()
