"""Space scoping middleware: every API request runs inside one space."""

from __future__ import annotations

import contextvars
import logging
import os
import re
import time
from typing import Optional

from jose import jwt
from jose.exceptions import JWTError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


_logger = logging.getLogger("structbi.auth")
_SPACE_ID: contextvars.ContextVar[int | None] = contextvars.ContextVar("structbi_space_id", default=None)
_LOCAL_ORIGIN_RE = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_PUBLIC_PATHS = {"/health"}


def get_space_id() -> int | None:
    return _SPACE_ID.get()


def auth_disabled() -> bool:
    return os.getenv("STRUCTBI_DISABLE_AUTH", "").strip().lower() in ("1", "true", "yes")


def _attach_local_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and _LOCAL_ORIGIN_RE.match(origin):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


def _get_bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None


def parse_space_id(raw) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw > 0 else None
    if isinstance(raw, str) and raw.strip().isdigit():
        value = int(raw.strip())
        return value if value > 0 else None
    return None


def verify_token(token: str, secret: str, audience: Optional[str] = None) -> dict:
    options = {"verify_aud": audience is not None}
    return jwt.decode(token, secret, algorithms=["HS256"], audience=audience, options=options)


def _error(request: Request, status: int, code: str, message: str, path: str, detail: dict | None = None) -> JSONResponse:
    return _attach_local_cors(
        request,
        JSONResponse(
            {
                "ok": False,
                "status": status,
                "message": message,
                "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
                "warnings": [],
            },
            status_code=status,
        ),
    )


class SpaceContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, secret: Optional[str] = None, audience: Optional[str] = None) -> None:
        super().__init__(app)
        self._secret = secret
        self._audience = audience

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        if request.method == "OPTIONS" or request.url.path in _PUBLIC_PATHS:
            return await call_next(request)

        if auth_disabled():
            raw = request.headers.get("X-Space-Id")
            source = "header"
        else:
            token = _get_bearer_token(request)
            if not token:
                _logger.warning("auth_missing_token path=%s", request.url.path)
                return _error(request, 401, "AUTH_MISSING_TOKEN", "Missing bearer token", "Authorization")
            try:
                claims = verify_token(token, self._secret or "", self._audience)
            except JWTError as exc:
                _logger.warning("auth_invalid_token path=%s audience=%s error=%s", request.url.path, self._audience, exc)
                return _error(
                    request, 401, "AUTH_INVALID_TOKEN", "Invalid bearer token", "Authorization", {"error": str(exc)}
                )
            raw = claims.get("id_space")
            source = "token"
            request.state.user = {"id": claims.get("sub"), "claims": claims}

        space_id = parse_space_id(raw)
        if space_id is None:
            _logger.warning("space_missing path=%s source=%s", request.url.path, source)
            return _error(request, 400, "SPACE_REQUIRED", "A valid space id is required", "id_space")

        request.state.id_space = space_id
        request.state.auth_ms = (time.perf_counter() - start) * 1000
        token_ref = _SPACE_ID.set(space_id)
        try:
            return await call_next(request)
        finally:
            _SPACE_ID.reset(token_ref)
