"""Tagged scalar values used for parameters and result fields."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any


class ValueKind(str, Enum):
    EMPTY = "empty"
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    STRUCTURED = "structured"


class ValueTypeError(TypeError):
    def __init__(self, expected: ValueKind, actual: ValueKind) -> None:
        super().__init__(f"expected {expected.value}, got {actual.value}")
        self.expected = expected
        self.actual = actual


_PAYLOAD_TYPES = {
    ValueKind.EMPTY: (type(None),),
    ValueKind.STRING: (str,),
    ValueKind.INTEGER: (int,),
    ValueKind.DECIMAL: (float,),
    ValueKind.BOOLEAN: (bool,),
    ValueKind.STRUCTURED: (dict, list),
}


@dataclass(frozen=True)
class Value:
    kind: ValueKind = ValueKind.EMPTY
    payload: Any = None

    def __post_init__(self) -> None:
        allowed = _PAYLOAD_TYPES[self.kind]
        if not isinstance(self.payload, allowed):
            raise ValueTypeError(self.kind, Value.of(self.payload).kind)
        if self.kind == ValueKind.INTEGER and isinstance(self.payload, bool):
            raise ValueTypeError(ValueKind.INTEGER, ValueKind.BOOLEAN)

    @classmethod
    def empty(cls) -> "Value":
        return cls()

    @classmethod
    def of(cls, raw: Any) -> "Value":
        if isinstance(raw, Value):
            return raw
        if raw is None:
            return cls()
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, raw)
        if isinstance(raw, int):
            return cls(ValueKind.INTEGER, raw)
        if isinstance(raw, float):
            if not math.isfinite(raw):
                return cls(ValueKind.STRING, str(raw))
            return cls(ValueKind.DECIMAL, raw)
        if isinstance(raw, Decimal):
            return cls(ValueKind.DECIMAL, float(raw))
        if isinstance(raw, str):
            return cls(ValueKind.STRING, raw)
        if isinstance(raw, (datetime, date, time)):
            return cls(ValueKind.STRING, raw.isoformat())
        if isinstance(raw, (bytes, bytearray, memoryview)):
            return cls(ValueKind.STRING, bytes(raw).decode("utf-8", errors="replace"))
        if isinstance(raw, (dict, list)):
            return cls(ValueKind.STRUCTURED, raw)
        if isinstance(raw, tuple):
            return cls(ValueKind.STRUCTURED, list(raw))
        return cls(ValueKind.STRING, str(raw))

    def is_null(self) -> bool:
        return self.kind == ValueKind.EMPTY

    def is_empty(self) -> bool:
        if self.kind == ValueKind.EMPTY:
            return True
        return self.kind == ValueKind.STRING and self.payload == ""

    def to_string(self) -> str:
        if self.kind == ValueKind.EMPTY:
            return ""
        if self.kind == ValueKind.BOOLEAN:
            return "1" if self.payload else "0"
        if self.kind == ValueKind.DECIMAL and self.payload.is_integer():
            return str(int(self.payload)) if abs(self.payload) < 1e15 else repr(self.payload)
        if self.kind == ValueKind.STRUCTURED:
            return repr(self.payload)
        return str(self.payload)

    def _expect(self, kind: ValueKind) -> Any:
        if self.kind != kind:
            raise ValueTypeError(kind, self.kind)
        return self.payload

    def as_str(self) -> str:
        return self._expect(ValueKind.STRING)

    def as_int(self) -> int:
        return self._expect(ValueKind.INTEGER)

    def as_float(self) -> float:
        if self.kind == ValueKind.INTEGER:
            return float(self.payload)
        return self._expect(ValueKind.DECIMAL)

    def as_bool(self) -> bool:
        return self._expect(ValueKind.BOOLEAN)

    def to_python(self) -> Any:
        return self.payload

    def __str__(self) -> str:
        return self.to_string()
