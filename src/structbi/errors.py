"""Error taxonomy shared by actions, functions and the service layer."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import ClassVar


_logger = logging.getLogger("structbi")


@dataclass
class StructbiError(Exception):
    code: str
    message: str
    path: str | None = None
    detail: dict | None = None

    status: ClassVar[int] = 400
    kind: ClassVar[str] = "error"

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def as_issue(self) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path, "detail": self.detail}


class ValidationError(StructbiError):
    status = 400
    kind = "validation"


class IntegrityError(StructbiError):
    status = 400
    kind = "integrity"


class ConfigurationError(StructbiError):
    status = 400
    kind = "configuration"


class NotFoundError(StructbiError):
    status = 404
    kind = "not_found"


class InternalError(StructbiError):
    status = 500
    kind = "internal"

    @classmethod
    def opaque(cls, code: str, reason: str, path: str | None = None, detail: dict | None = None) -> "InternalError":
        ref = uuid.uuid4().hex[:10]
        _logger.error("internal_error ref=%s code=%s path=%s reason=%s detail=%s", ref, code, path, reason, detail)
        info = {"ref": ref}
        if detail and detail.get("partial_state"):
            info["partial_state"] = True
        return cls(code, f"Internal error (ref {ref})", path, info)


class DatabaseError(Exception):
    """Raised by database adapters when a statement fails."""


class ContractViolation(RuntimeError):
    """A custom handler broke the single-terminal-response contract."""
