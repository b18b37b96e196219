"""Endpoints: an ordered action pipeline bound to an HTTP method and path.

Functions are declared once at startup and never mutated while serving. Each
request gets a ``RequestContext`` holding clones of the declared actions plus
any actions appended while handling it, so bound values and result sets never
leak between requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Sequence, Tuple, Union

from structbi.action import Action
from structbi.database import Database
from structbi.errors import ContractViolation, StructbiError
from structbi.messages import t
from structbi.parameters import ParamSource
from structbi.values import Value


_logger = logging.getLogger("structbi.functions")


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class ResponseKind(str, Enum):
    JSON = "json"
    COMPOUND = "compound"
    HTML = "html"
    FILE = "file"


@dataclass
class Response:
    kind: ResponseKind
    status: int
    body: Any = None
    path: str | None = None
    media_type: str | None = None
    filename: str | None = None
    base_dir: str | None = None


@dataclass(frozen=True)
class DefaultPipeline:
    pass


@dataclass(frozen=True)
class CustomHandler:
    handler_id: str
    handler: Callable[["RequestContext"], None]


Strategy = Union[DefaultPipeline, CustomHandler]


def envelope(status: int, message: str, errors: list | None = None, **extra) -> dict:
    body = {"ok": status < 400, "status": status, "message": message}
    body.update(extra)
    body["errors"] = errors or []
    body["warnings"] = []
    return body


class RequestContext:
    def __init__(
        self,
        db: Database,
        id_space: int,
        params: Dict[str, Any] | None = None,
        files: Sequence[Any] = (),
        storage: Any = None,
    ) -> None:
        self.db = db
        self.id_space = id_space
        self.params: Dict[str, Value] = {k: Value.of(v) for k, v in (params or {}).items()}
        self.files = list(files)
        self.storage = storage
        self.actions: List[Action] = []
        self.response: Response | None = None

    def param(self, name: str) -> Value:
        return self.params.get(name, Value.empty())

    def context_value(self, name: str) -> Any:
        if name == "id_space":
            return self.id_space
        raise KeyError(f"Unknown context value: {name}")

    def get_action(self, identifier: str) -> Action:
        for action in self.actions:
            if action.identifier == identifier:
                return action
        raise ContractViolation(f"Action {identifier} is not declared for this function")

    def add_action(self, identifier: str, sql: str = "", final: bool = True) -> Action:
        action = Action(identifier, sql, final)
        self.actions.append(action)
        return action

    def bind(self, action: Action) -> None:
        for param in action.parameters:
            if param.source == ParamSource.REQUEST:
                param.value = self.param(param.name)
            elif param.source == ParamSource.CONTEXT:
                param.set_value(self.context_value(param.name))
            else:
                param.value = param.default

    def run(self, action: Action | str) -> bool:
        if isinstance(action, str):
            action = self.get_action(action)
        self.bind(action)
        return action.work(self.db)

    # ---- terminal responses ----

    def _respond(self, response: Response) -> None:
        if self.response is not None:
            raise ContractViolation("A terminal response was already sent for this request")
        self.response = response

    def json_response(self, status: int, message: str, **extra) -> None:
        self._respond(Response(ResponseKind.JSON, status, envelope(status, message, **extra)))

    def error_response(self, error: StructbiError, status: int | None = None) -> None:
        code = status or error.status
        self._respond(Response(ResponseKind.JSON, code, envelope(code, error.message, errors=[error.as_issue()])))

    def compound_response(self, status: int, payload: dict) -> None:
        message = payload.pop("message", t("ok"))
        self._respond(Response(ResponseKind.COMPOUND, status, envelope(status, message, **payload)))

    def html_response(self, status: int, message: str) -> None:
        """Plain page response; the service layer renders ``message`` into HTML."""
        self._respond(Response(ResponseKind.HTML, status, message, media_type="text/html"))

    def file_response(
        self, base_dir: str, path: str, media_type: str | None = None, filename: str | None = None
    ) -> None:
        self._respond(
            Response(ResponseKind.FILE, 200, None, path=path, media_type=media_type, filename=filename, base_dir=base_dir)
        )


class Function:
    def __init__(self, path: str, method: HTTPMethod, strategy: Strategy | None = None) -> None:
        self.path = path
        self.method = HTTPMethod(method)
        self.strategy: Strategy = strategy or DefaultPipeline()
        self.actions: List[Action] = []

    @property
    def key(self) -> Tuple[str, str]:
        return (self.method.value, self.path)

    def add_action(self, identifier: str, sql: str = "", final: bool = True) -> Action:
        action = Action(identifier, sql, final)
        self.actions.append(action)
        return action

    def handle(self, ctx: RequestContext) -> Response:
        ctx.actions = [a.clone() for a in self.actions]
        if isinstance(self.strategy, CustomHandler):
            self.strategy.handler(ctx)
        else:
            self._run_default(ctx)
        if ctx.response is None:
            raise ContractViolation(f"{self.method.value} {self.path} finished without a response")
        return ctx.response

    def _run_default(self, ctx: RequestContext) -> None:
        if not ctx.actions:
            ctx.json_response(400, "No actions found.")
            return
        terminal: Action | None = None
        for action in ctx.actions:
            if not ctx.run(action):
                _logger.info("function_failed path=%s action=%s code=%s", self.path, action.identifier, action.error.code)
                ctx.error_response(action.error)
                return
            if action.final:
                terminal = action
        if terminal is None:
            ctx.json_response(200, t("ok"))
            return
        payload = {"message": terminal.message, "data": terminal.json_result()}
        if terminal.results is not None and not terminal.results.columns:
            payload["affected"] = max(terminal.results.rowcount, 0)
        ctx.compound_response(200, payload)


class FunctionRegistry:
    def __init__(self) -> None:
        self._functions: Dict[Tuple[str, str], Function] = {}

    def add(self, function: Function) -> Function:
        if function.key in self._functions:
            raise ValueError(f"Route already declared: {function.method.value} {function.path}")
        self._functions[function.key] = function
        return function

    def resolve(self, method: str, path: str) -> Function | None:
        return self._functions.get((method.upper(), path))

    def __iter__(self) -> Iterator[Function]:
        return iter(self._functions.values())

    def __len__(self) -> int:
        return len(self._functions)
