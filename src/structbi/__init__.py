"""Dynamic forms engine: metadata-driven tables, action pipelines and file columns."""

from structbi.action import Action
from structbi.database import POSTGRES, SQLITE, Database, Dialect
from structbi.errors import (
    ConfigurationError,
    ContractViolation,
    DatabaseError,
    IntegrityError,
    InternalError,
    NotFoundError,
    StructbiError,
    ValidationError,
)
from structbi.function import Function, FunctionRegistry, HTTPMethod, RequestContext, Response, ResponseKind
from structbi.parameters import Parameter, ParamSource
from structbi.results import ResultSet, Row
from structbi.values import Value, ValueKind

__version__ = "0.1.0"

__all__ = [
    "Action",
    "ConfigurationError",
    "ContractViolation",
    "Database",
    "DatabaseError",
    "Dialect",
    "Function",
    "FunctionRegistry",
    "HTTPMethod",
    "IntegrityError",
    "InternalError",
    "NotFoundError",
    "POSTGRES",
    "ParamSource",
    "Parameter",
    "RequestContext",
    "Response",
    "ResponseKind",
    "ResultSet",
    "Row",
    "SQLITE",
    "StructbiError",
    "ValidationError",
    "Value",
    "ValueKind",
]
